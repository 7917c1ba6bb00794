"""
Определяет структуру IRO архива: заголовок, таблицу записей, ошибки формата и распаковки.
"""

import struct
from dataclasses import dataclass
from enum import Enum, IntEnum
from pathlib import Path, PurePosixPath
from typing import List, Tuple


IRO_SIGNATURE = b'IROS'

HEADER_FORMAT = struct.Struct('<4sIII')
HEADER_SIZE = HEADER_FORMAT.size

ENTRY_START_FORMAT = struct.Struct('<HH')
ENTRY_START_SIZE = ENTRY_START_FORMAT.size

# entry_size is a u16, so no record is ever longer than this
MAX_ENTRY_SIZE = 0xFFFF


class FormatError(ValueError):
    pass


class BadSignature(FormatError):
    pass


class UnsupportedVersion(FormatError):
    pass


class UnsupportedArchiveFlags(FormatError):
    pass


class TruncatedHeader(FormatError):
    pass


class TruncatedEntry(FormatError):
    pass


class EntrySizeMismatch(FormatError):
    pass


class UnsupportedCompressionTag(FormatError):
    pass


class ExtractError(Exception):
    pass


class ExtractIoError(ExtractError):
    pass


class CodecError(ExtractError):
    pass


class UnsafeEntryPath(ExtractError):
    pass


class Version(IntEnum):
    V0 = 0x10000
    V1 = 0x10001
    V2 = 0x10002

    @property
    def offset_width(self) -> int:
        return 4 if self is Version.V0 else 8


class Compression(Enum):
    STORED = 0
    LZMA = 2

    @classmethod
    def from_flags(cls, flags: int) -> 'Compression':
        try:
            return cls(flags)
        except ValueError:
            raise UnsupportedCompressionTag(f"Unknown compression type {flags:#x}") from None


@dataclass(frozen=True)
class ArchiveHeader:
    signature: bytes
    version: Version
    archive_flags: int
    entry_count: int


@dataclass(frozen=True)
class Entry:
    name: str
    offset: int
    length: int
    compression: Compression

    @property
    def path(self) -> Path:
        return entry_relative_path(self.name)

    @property
    def is_compressed(self) -> bool:
        return self.compression is not Compression.STORED


def decode_name(raw) -> str:
    """UTF-16LE -> str, неверные последовательности заменяются на U+FFFD."""
    return bytes(raw).decode('utf-16-le', errors='replace')


def entry_relative_path(name: str) -> Path:
    """
    Переводит имя записи в относительный путь.

    Оба разделителя ('\\' и '/') считаются разделителями на любой платформе.
    """
    parts = [part for part in name.replace('\\', '/').split('/') if part not in ('', '.')]
    return Path(*parts) if parts else Path()


def is_safe_entry_name(name: str) -> bool:
    if '\x00' in name:
        return False
    normalized = name.replace('\\', '/')
    if not normalized.strip('/'):
        return False
    if normalized.startswith('/'):
        return False
    parts = PurePosixPath(normalized).parts
    if parts and len(parts[0]) >= 2 and parts[0][1] == ':':
        return False
    return '..' not in parts


class _OffsetField:
    """Декодер поля offset, выбирается один раз по версии архива."""

    def __init__(self, version: Version):
        offset_code = 'I' if version.offset_width == 4 else 'Q'
        self.tail = struct.Struct('<I' + offset_code + 'I')
        self.fixed_size = ENTRY_START_SIZE + self.tail.size

    def unpack(self, buffer, pos: int):
        return self.tail.unpack_from(buffer, pos)


def fixed_entry_size(version: Version) -> int:
    return _OffsetField(version).fixed_size


def parse_header(cursor) -> ArchiveHeader:
    try:
        buffer, pos = cursor.borrow(HEADER_SIZE)
    except EOFError:
        raise TruncatedHeader(f"Archive too small: header needs {HEADER_SIZE} bytes") from None

    signature, raw_version, archive_flags, entry_count = HEADER_FORMAT.unpack_from(buffer, pos)

    if signature != IRO_SIGNATURE:
        raise BadSignature(f"Invalid archive signature: {signature!r}")

    if archive_flags != 0:
        raise UnsupportedArchiveFlags(f"Patch archive not supported (flags {archive_flags:#x})")

    try:
        version = Version(raw_version)
    except ValueError:
        raise UnsupportedVersion(f"Unsupported version: {raw_version:#x}") from None

    cursor.skip(HEADER_SIZE)
    return ArchiveHeader(signature, version, archive_flags, entry_count)


def _read_entry(cursor, offset_field: _OffsetField, index: int) -> Entry:
    try:
        buffer, pos = cursor.borrow(ENTRY_START_SIZE)
    except EOFError:
        raise TruncatedEntry(f"Entry {index}: cannot read record size") from None

    entry_size, name_size = ENTRY_START_FORMAT.unpack_from(buffer, pos)

    if name_size % 2:
        raise EntrySizeMismatch(f"Entry {index}: odd name size {name_size}")

    if entry_size < offset_field.fixed_size + name_size:
        raise EntrySizeMismatch(
            f"Entry {index}: entry_size {entry_size} < {offset_field.fixed_size} + name {name_size}"
        )

    try:
        buffer, pos = cursor.borrow(entry_size)
    except EOFError:
        raise TruncatedEntry(f"Entry {index}: record of {entry_size} bytes runs past end of archive") from None

    name_start = pos + ENTRY_START_SIZE
    name = decode_name(buffer[name_start:name_start + name_size])

    flags, offset, length = offset_field.unpack(buffer, name_start + name_size)

    entry = Entry(
        name=name,
        offset=offset,
        length=length,
        compression=Compression.from_flags(flags)
    )

    # записи могут содержать выравнивание после полей
    cursor.skip(entry_size)
    return entry


def parse_entries(cursor, header: ArchiveHeader) -> List[Entry]:
    offset_field = _OffsetField(header.version)
    entries = []
    for index in range(header.entry_count):
        entries.append(_read_entry(cursor, offset_field, index))

    return entries


def read_catalog(cursor) -> Tuple[ArchiveHeader, List[Entry]]:
    header = parse_header(cursor)
    return header, parse_entries(cursor, header)
