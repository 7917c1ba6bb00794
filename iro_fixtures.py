"""
Сборка синтетических IRO архивов для тестов и проверки бэкендов.
"""

import lzma as pylzma
import struct
from typing import List, Optional, Tuple

from iro_format import ENTRY_START_FORMAT, HEADER_FORMAT, HEADER_SIZE, IRO_SIGNATURE, Version, fixed_entry_size


def lzma_frame(data: bytes, properties_length: int = 5, unpacked_size: Optional[int] = None) -> bytes:
    """Кадр записи: размер + длина свойств + поток LZMA1 (свойства и данные)."""
    alone = pylzma.compress(data, format=pylzma.FORMAT_ALONE)
    # .lzma: 5 байт свойств, 8 байт размера, затем данные
    stream = alone[:5] + alone[13:]
    if unpacked_size is None:
        unpacked_size = len(data)
    return struct.pack('<II', unpacked_size, properties_length) + stream


def encode_record(name: str, flags: int, offset: int, length: int,
                  version: Version = Version.V2, padding: int = 0,
                  entry_size: Optional[int] = None) -> bytes:
    raw_name = name.encode('utf-16-le')
    offset_code = 'I' if version.offset_width == 4 else 'Q'
    tail = struct.pack('<I' + offset_code + 'I', flags, offset, length)
    if entry_size is None:
        entry_size = fixed_entry_size(version) + len(raw_name) + padding
    return ENTRY_START_FORMAT.pack(entry_size, len(raw_name)) + raw_name + tail + b'\xAA' * padding


def encode_header(entry_count: int, version: int = Version.V2, flags: int = 0,
                  signature: bytes = IRO_SIGNATURE) -> bytes:
    return HEADER_FORMAT.pack(signature, version, flags, entry_count)


def build_archive(files: List[Tuple[str, bytes, int]], version: Version = Version.V2,
                  padding: int = 0) -> bytes:
    """
    files: (имя, данные записи на диске, flags). Данные кладутся сразу за
    таблицей записей в том же порядке.
    """
    table_size = sum(
        fixed_entry_size(version) + len(name.encode('utf-16-le')) + padding
        for name, _, _ in files
    )
    offset = HEADER_SIZE + table_size

    records = []
    for name, payload, flags in files:
        records.append(encode_record(name, flags, offset, len(payload), version, padding))
        offset += len(payload)

    return encode_header(len(files), version) + b''.join(records) + b''.join(p for _, p, _ in files)
