"""
lzma_decoder.py

Распаковка LZMA записей IRO архива.

Каждая сжатая запись начинается с 8-байтового заголовка кадра:
  <uint32 unpacked_size little-endian> + <uint32 properties_length little-endian>
затем идёт поток LZMA1: 5 байт свойств (lc/lp/pb + размер словаря) и
данные range coder'а без собственного заголовка размера.

Сам декодер - стандартный модуль Python `lzma` в режиме FORMAT_RAW.
"""

import lzma as pylzma
import struct
from typing import Tuple

from iro_format import CodecError, ExtractIoError


LZMA_FRAME_HEADER = struct.Struct('<II')
LZMA_FRAME_HEADER_SIZE = LZMA_FRAME_HEADER.size
LZMA_PROPERTIES_SIZE = 5

# liblzma не принимает словарь меньше 4 KiB
MIN_DICT_SIZE = 1 << 12


def read_frame_header(buffer, pos: int = 0) -> int:
    """Возвращает unpacked_size, проверяя длину свойств."""
    unpacked_size, properties_length = LZMA_FRAME_HEADER.unpack_from(buffer, pos)
    if properties_length != LZMA_PROPERTIES_SIZE:
        raise CodecError(f"LZMA properties length must be {LZMA_PROPERTIES_SIZE}, got {properties_length}")
    return unpacked_size


def decode_properties(props) -> Tuple[int, int, int, int]:
    """Разбирает 5 байт свойств LZMA1 в (lc, lp, pb, dict_size)."""
    if len(props) < LZMA_PROPERTIES_SIZE:
        raise CodecError("LZMA stream too short for properties")

    d = props[0]
    if d >= 9 * 5 * 5:
        raise CodecError(f"Invalid LZMA properties byte {d:#x}")

    lc = d % 9
    d //= 9
    lp = d % 5
    pb = d // 5
    dict_size = struct.unpack_from('<I', props, 1)[0]
    return lc, lp, pb, dict_size


def decompress_lzma1(stream, unpacked_size: int) -> bytes:
    """
    Распаковывает поток LZMA1 (свойства + данные) ровно в unpacked_size байт.

    Размер из заголовка кадра считается верным, без поправок.
    """
    lc, lp, pb, dict_size = decode_properties(stream[:LZMA_PROPERTIES_SIZE])

    if unpacked_size == 0:
        return b''

    filters = [{
        'id': pylzma.FILTER_LZMA1,
        'dict_size': max(dict_size, MIN_DICT_SIZE),
        'lc': lc,
        'lp': lp,
        'pb': pb,
    }]

    try:
        decompressor = pylzma.LZMADecompressor(format=pylzma.FORMAT_RAW, filters=filters)
        with memoryview(stream) as view:
            out = decompressor.decompress(view[LZMA_PROPERTIES_SIZE:], max_length=unpacked_size)
    except pylzma.LZMAError as e:
        raise CodecError(f"LZMA decode failed: {e}") from e

    if len(out) != unpacked_size:
        raise CodecError(f"LZMA stream produced {len(out)} bytes, expected {unpacked_size}")

    return out


def decompress_frame(cursor, length: int) -> bytes:
    """Читает кадр длиной length байт с текущей позиции курсора и распаковывает его."""
    if length < LZMA_FRAME_HEADER_SIZE:
        raise CodecError(f"LZMA entry of {length} bytes is shorter than its frame header")

    try:
        buffer, pos = cursor.borrow(LZMA_FRAME_HEADER_SIZE)
        unpacked_size = read_frame_header(buffer, pos)
        cursor.skip(LZMA_FRAME_HEADER_SIZE)
        stream = cursor.consume(length - LZMA_FRAME_HEADER_SIZE)
    except EOFError as e:
        raise ExtractIoError(f"LZMA payload truncated: {e}") from e

    return decompress_lzma1(stream, unpacked_size)
