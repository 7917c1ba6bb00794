"""
Модульные тесты для чтения и распаковки IRO архивов
"""

import contextlib
import io
import os
import struct
import sys
import tempfile
import unittest
from pathlib import Path

from iro_archive import Archive, open_archive
from iro_fixtures import build_archive, encode_header, encode_record, lzma_frame
from iro_format import (
    BadSignature,
    CodecError,
    Compression,
    Entry,
    EntrySizeMismatch,
    ExtractIoError,
    HEADER_SIZE,
    MAX_ENTRY_SIZE,
    TruncatedEntry,
    TruncatedHeader,
    UnsafeEntryPath,
    UnsupportedArchiveFlags,
    UnsupportedCompressionTag,
    UnsupportedVersion,
    Version,
    decode_name,
    entry_relative_path,
    fixed_entry_size,
    is_safe_entry_name,
)
from iro_io import BufferedCursor, MmapCursor
from lzma_decoder import decode_properties, decompress_lzma1, read_frame_header
import main_iro
import verify_backends


BACKEND_NAMES = ('mmap', 'buffered')

STORED = Compression.STORED.value
LZMA = Compression.LZMA.value

# Поток LZMA1 без маркера конца (lc=3, lp=0, pb=2, словарь 1 MiB), как пишет
# LZMA SDK при известном размере. Распаковывается только по размеру из кадра.
NO_END_MARKER_DATA = b'menu\\avatar_01.png: no end marker\n'
NO_END_MARKER_STREAM = bytes.fromhex(
    '5d00001000'
    '0036994a22617540a935d1570db4ee0eab98ab1235f9b29ebc10b5128068'
    '1f2fd3c06fa64d7d4c00'
)


class ArchiveTestCase(unittest.TestCase):
    """Общая база: временная папка и запись архива на диск"""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmpdir = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def write_archive(self, data: bytes, name: str = 'test.iro') -> Path:
        path = self.tmpdir / name
        with open(path, 'wb') as f:
            f.write(data)
        return path

    def open_each(self, path, **kwargs):
        for backend in BACKEND_NAMES:
            with open_archive(path, backend=backend, **kwargs) as archive:
                yield archive


class TestHeader(ArchiveTestCase):
    """Тесты разбора заголовка"""

    def test_each_version_selects_offset_width(self):
        """Все три версии разбираются, ширина offset зависит от версии"""
        for version in Version:
            data = build_archive(
                [('a.bin', b'abc', STORED), ('b.bin', b'defg', STORED)],
                version=version
            )
            path = self.write_archive(data, f'{version.name}.iro')

            expected_width = 4 if version is Version.V0 else 8
            self.assertEqual(version.offset_width, expected_width)
            self.assertEqual(fixed_entry_size(version), 12 + expected_width)

            for archive in self.open_each(path):
                self.assertEqual(archive.version, version)
                self.assertEqual(len(archive), 2)
                self.assertEqual(archive.read(0), b'abc')
                self.assertEqual(archive.read(1), b'defg')

    def test_large_offset_in_v2(self):
        """64-битное смещение сохраняется без обрезки"""
        big = 1 << 40
        record = encode_record('far.bin', STORED, big, 10, Version.V2)
        path = self.write_archive(encode_header(1, Version.V2) + record)

        for archive in self.open_each(path):
            self.assertEqual(archive.entries[0].offset, big)

    def test_bad_signature(self):
        """Неверная сигнатура"""
        path = self.write_archive(encode_header(0, signature=b'IROX'))
        for backend in BACKEND_NAMES:
            with self.assertRaises(BadSignature):
                open_archive(path, backend=backend)

    def test_nonzero_archive_flags(self):
        """Патч-архивы не поддерживаются"""
        path = self.write_archive(encode_header(0, flags=1))
        for backend in BACKEND_NAMES:
            with self.assertRaises(UnsupportedArchiveFlags):
                open_archive(path, backend=backend)

    def test_flags_checked_before_version(self):
        path = self.write_archive(encode_header(0, version=0x20000, flags=4))
        with self.assertRaises(UnsupportedArchiveFlags):
            open_archive(path)

    def test_unsupported_version(self):
        """Неизвестная версия"""
        path = self.write_archive(encode_header(0, version=0x10003))
        for backend in BACKEND_NAMES:
            with self.assertRaises(UnsupportedVersion):
                open_archive(path, backend=backend)

    def test_truncated_header(self):
        """Файл короче заголовка"""
        path = self.write_archive(encode_header(0)[:HEADER_SIZE - 1])
        for backend in BACKEND_NAMES:
            with self.assertRaises(TruncatedHeader):
                open_archive(path, backend=backend)

    def test_empty_file(self):
        path = self.write_archive(b'')
        for backend in BACKEND_NAMES:
            with self.assertRaises(TruncatedHeader):
                open_archive(path, backend=backend)

    def test_format_errors_are_value_errors(self):
        path = self.write_archive(b'NOPE' + b'\x00' * 12)
        with self.assertRaises(ValueError):
            open_archive(path)

    def test_empty_archive(self):
        path = self.write_archive(encode_header(0))
        for archive in self.open_each(path):
            self.assertEqual(archive.entries, [])
            self.assertEqual(archive.extract_all(self.tmpdir / 'out'), 0)


class TestEntryTable(ArchiveTestCase):
    """Тесты разбора таблицы записей"""

    def test_catalog_order_and_fields(self):
        """Записи идут в порядке файла с правильными полями"""
        frame = lzma_frame(b'x' * 100)
        data = build_archive([
            ('first.txt', b'1', STORED),
            ('second.bin', frame, LZMA),
            ('third.txt', b'333', STORED),
        ])
        path = self.write_archive(data)

        for archive in self.open_each(path):
            names = [e.name for e in archive.entries]
            self.assertEqual(names, ['first.txt', 'second.bin', 'third.txt'])
            self.assertEqual(archive.entries[1].compression, Compression.LZMA)
            self.assertEqual(archive.entries[1].length, len(frame))
            self.assertTrue(archive.entries[1].is_compressed)
            self.assertFalse(archive.entries[0].is_compressed)
            self.assertIs(archive.files, archive.entries)

    def test_trailing_padding_is_skipped(self):
        """Курсор сдвигается на entry_size, а не на сумму полей"""
        for version in Version:
            data = build_archive(
                [('a.txt', b'alpha', STORED), ('b.txt', b'beta', STORED)],
                version=version, padding=6
            )
            path = self.write_archive(data, f'pad-{version.name}.iro')

            for archive in self.open_each(path):
                self.assertEqual([e.name for e in archive], ['a.txt', 'b.txt'])
                self.assertEqual(archive.read(1), b'beta')

    def test_entry_size_too_small(self):
        """entry_size меньше фиксированных полей + имени"""
        record = encode_record('a.txt', STORED, 0, 0, Version.V2,
                               entry_size=fixed_entry_size(Version.V2) + 9)
        path = self.write_archive(encode_header(1) + record + b'\x00' * 64)

        for backend in BACKEND_NAMES:
            with self.assertRaises(EntrySizeMismatch):
                open_archive(path, backend=backend)

    def test_v0_size_check_uses_32bit_offsets(self):
        """Для V0 минимальный размер записи на 4 байта меньше"""
        size_v0 = fixed_entry_size(Version.V0) + len('a'.encode('utf-16-le'))
        record = encode_record('a', STORED, 0, 0, Version.V0, entry_size=size_v0)
        path = self.write_archive(encode_header(1, Version.V0) + record)

        with open_archive(path) as archive:
            self.assertEqual(archive.entries[0].name, 'a')

        # та же запись, объявленная как V2, слишком короткая
        path = self.write_archive(encode_header(1, Version.V2) + record + b'\x00' * 8, 'v2.iro')
        with self.assertRaises(EntrySizeMismatch):
            open_archive(path)

    def test_odd_name_size(self):
        """Длина имени в UTF-16 должна быть чётной"""
        record = struct.pack('<HH', 21, 3) + b'a\x00b' + struct.pack('<IQI', 0, 0, 0)
        path = self.write_archive(encode_header(1) + record)

        for backend in BACKEND_NAMES:
            with self.assertRaises(EntrySizeMismatch):
                open_archive(path, backend=backend)

    def test_missing_record(self):
        """Заявлено больше записей, чем есть в файле"""
        record = encode_record('a.txt', STORED, 0, 0)
        path = self.write_archive(encode_header(2) + record)

        for backend in BACKEND_NAMES:
            with self.assertRaises(TruncatedEntry):
                open_archive(path, backend=backend)

    def test_record_cut_short(self):
        """Запись обрывается посреди полей"""
        record = encode_record('a.txt', STORED, 0, 0)
        path = self.write_archive(encode_header(1) + record[:-3])

        for backend in BACKEND_NAMES:
            with self.assertRaises(TruncatedEntry):
                open_archive(path, backend=backend)

    def test_unknown_compression_tag(self):
        """Флаги кроме 0 и 2 - ошибка формата при открытии"""
        data = build_archive([('a.txt', b'data', 1)])
        path = self.write_archive(data)

        for backend in BACKEND_NAMES:
            with self.assertRaises(UnsupportedCompressionTag):
                open_archive(path, backend=backend)


class TestNames(unittest.TestCase):
    """Тесты декодирования имён"""

    def test_ascii_roundtrip(self):
        name = 'field/char/cloud.png'
        self.assertEqual(decode_name(name.encode('utf-16-le')), name)
        self.assertEqual(decode_name(name.encode('utf-16-le')).encode('ascii'), name.encode('ascii'))

    def test_non_ascii(self):
        name = 'текстуры\\облако.png'
        self.assertEqual(decode_name(name.encode('utf-16-le')), name)

    def test_lone_surrogate_is_replaced(self):
        """Неверные последовательности не роняют декодер"""
        raw = b'a\x00' + b'\x00\xd8' + b'b\x00'
        self.assertEqual(decode_name(raw), 'a\ufffdb')

    def test_relative_path_separators(self):
        self.assertEqual(entry_relative_path('field\\char\\a.png'), Path('field', 'char', 'a.png'))
        self.assertEqual(entry_relative_path('field/char/a.png'), Path('field', 'char', 'a.png'))
        self.assertEqual(entry_relative_path('a.png'), Path('a.png'))

    def test_safe_names(self):
        self.assertTrue(is_safe_entry_name('field\\a.png'))
        self.assertTrue(is_safe_entry_name('a..b.png'))
        self.assertFalse(is_safe_entry_name('..\\evil.dll'))
        self.assertFalse(is_safe_entry_name('field/../../evil.dll'))
        self.assertFalse(is_safe_entry_name('\\windows\\evil.dll'))
        self.assertFalse(is_safe_entry_name('C:\\evil.dll'))
        self.assertFalse(is_safe_entry_name(''))
        self.assertFalse(is_safe_entry_name('a\x00b.txt'))

    def test_entry_path_property(self):
        entry = Entry('menu\\avatar.png', 0, 0, Compression.STORED)
        self.assertEqual(entry.path, Path('menu', 'avatar.png'))


class TestCursors(unittest.TestCase):
    """Тесты курсоров чтения"""

    DATA = bytes(range(256)) * 1024

    def make_cursors(self):
        return [
            BufferedCursor(io.BytesIO(self.DATA), MAX_ENTRY_SIZE + 1),
            MmapCursor(self.DATA),
        ]

    def test_consume_and_tell(self):
        for cursor in self.make_cursors():
            self.assertEqual(bytes(cursor.consume(4)), b'\x00\x01\x02\x03')
            self.assertEqual(cursor.tell(), 4)

    def test_borrow_does_not_advance(self):
        for cursor in self.make_cursors():
            buffer, pos = cursor.borrow(8)
            self.assertEqual(struct.unpack_from('<I', buffer, pos)[0], 0x03020100)
            self.assertEqual(cursor.tell(), 0)

    def test_skip_and_seek(self):
        for cursor in self.make_cursors():
            cursor.skip(10)
            self.assertEqual(bytes(cursor.consume(1)), b'\x0a')
            cursor.seek(200000)
            self.assertEqual(cursor.tell(), 200000)
            self.assertEqual(bytes(cursor.consume(1)), bytes([200000 % 256]))
            cursor.seek(5)
            self.assertEqual(bytes(cursor.consume(1)), b'\x05')

    def test_borrow_across_refill(self):
        """Буферизованный курсор дочитывает данные, если их не хватает"""
        cursor = BufferedCursor(io.BytesIO(self.DATA), MAX_ENTRY_SIZE + 1)
        cursor.consume(1)
        cursor.skip(MAX_ENTRY_SIZE - 4)
        start = cursor.tell()
        buffer, pos = cursor.borrow(100)
        self.assertEqual(bytes(buffer[pos:pos + 100]), self.DATA[start:start + 100])
        self.assertEqual(cursor.tell(), start)

    def test_eof(self):
        for cursor in self.make_cursors():
            cursor.seek(len(self.DATA) - 2)
            with self.assertRaises(EOFError):
                cursor.borrow(3)
            with self.assertRaises(EOFError):
                cursor.copy_to(io.BytesIO(), 3)

    def test_copy_to(self):
        for cursor in self.make_cursors():
            sink = io.BytesIO()
            cursor.seek(1000)
            self.assertEqual(cursor.copy_to(sink, 150000), 150000)
            self.assertEqual(sink.getvalue(), self.DATA[1000:151000])
            self.assertEqual(cursor.tell(), 151000)

    def test_buffer_must_hold_largest_record(self):
        with self.assertRaises(ValueError):
            BufferedCursor(io.BytesIO(b''), 4096)


class TestLZMADecoder(unittest.TestCase):
    """Тесты распаковки кадров LZMA"""

    def test_frame_header(self):
        self.assertEqual(read_frame_header(struct.pack('<II', 1234, 5)), 1234)

    def test_frame_header_bad_properties_length(self):
        with self.assertRaises(CodecError):
            read_frame_header(struct.pack('<II', 1234, 4))

    def test_decode_properties(self):
        """0x5D - стандартные lc=3, lp=0, pb=2"""
        props = bytes([0x5D]) + struct.pack('<I', 1 << 16)
        self.assertEqual(decode_properties(props), (3, 0, 2, 1 << 16))

    def test_invalid_properties_byte(self):
        with self.assertRaises(CodecError):
            decode_properties(bytes([225, 0, 0, 1, 0]))

    def test_decompress(self):
        data = b'Hello LZMA! ' * 500
        frame = lzma_frame(data)
        self.assertEqual(decompress_lzma1(frame[8:], len(data)), data)

    def test_stream_without_end_marker(self):
        """Поток без маркера конца распаковывается по заявленному размеру"""
        size = len(NO_END_MARKER_DATA)
        self.assertEqual(decompress_lzma1(NO_END_MARKER_STREAM, size), NO_END_MARKER_DATA)
        self.assertEqual(decompress_lzma1(NO_END_MARKER_STREAM, 4), b'menu')

    def test_declared_size_is_authoritative(self):
        """Выдаётся ровно столько байт, сколько заявлено в заголовке"""
        data = b'0123456789' * 10
        frame = lzma_frame(data)
        self.assertEqual(decompress_lzma1(frame[8:], 50), data[:50])

    def test_short_stream(self):
        """Обрезанный поток даёт меньше байт, чем заявлено"""
        data = os.urandom(1000)
        frame = lzma_frame(data)
        with self.assertRaises(CodecError):
            decompress_lzma1(frame[8:8 + 25], len(data))


class TestExtraction(ArchiveTestCase):
    """Тесты распаковки записей"""

    def test_stored_is_identity(self):
        """Stored: ровно length байт с позиции offset"""
        payload = bytes(range(256)) * 3
        path = self.write_archive(build_archive([('raw.bin', payload, STORED)]))

        with open(path, 'rb') as f:
            raw = f.read()

        for archive in self.open_each(path):
            entry = archive.entries[0]
            sink = io.BytesIO()
            self.assertEqual(archive.extract_to(sink, 0), len(payload))
            self.assertEqual(sink.getvalue(), raw[entry.offset:entry.offset + entry.length])

    def test_lzma_output_matches_declared_size(self):
        data = os.urandom(2000) + b'repeat' * 3000
        frame = lzma_frame(data)
        path = self.write_archive(build_archive([('packed.bin', frame, LZMA)]))

        for archive in self.open_each(path):
            sink = io.BytesIO()
            written = archive.extract_to(sink, 0)
            self.assertEqual(written, len(data))
            self.assertEqual(sink.getvalue(), data)

    def test_sink_keeping_copies_of_chunks(self):
        """Sink, который хранит куски, копирует их во время write"""
        class Collector:
            def __init__(self):
                self.chunks = []

            def write(self, chunk):
                self.chunks.append(bytes(chunk))
                return len(chunk)

        payload = os.urandom(300_000)
        path = self.write_archive(build_archive([('big.bin', payload, STORED)]))

        for archive in self.open_each(path, buffer_size=MAX_ENTRY_SIZE + 1):
            sink = Collector()
            self.assertEqual(archive.extract_to(sink, 0), len(payload))
            self.assertEqual(b''.join(sink.chunks), payload)

    def test_lzma_stream_without_end_marker(self):
        """Записи из LZMA SDK: поток без маркера конца, за ним следующая запись"""
        frame = struct.pack('<II', len(NO_END_MARKER_DATA), 5) + NO_END_MARKER_STREAM
        path = self.write_archive(build_archive([
            ('menu\\avatar_01.png', frame, LZMA),
            ('menu\\avatar_02.png', b'stored after', STORED),
        ]))

        for archive in self.open_each(path):
            self.assertEqual(archive.read(0), NO_END_MARKER_DATA)
            self.assertEqual(archive.read(1), b'stored after')

            out = self.tmpdir / ('sdk-' + archive.backend)
            archive.extract(0, out)
            self.assertEqual((out / 'menu' / 'avatar_01.png').read_bytes(), NO_END_MARKER_DATA)

    def test_lzma_empty_payload(self):
        frame = lzma_frame(b'')
        path = self.write_archive(build_archive([('empty.bin', frame, LZMA)]))

        for archive in self.open_each(path):
            self.assertEqual(archive.read(0), b'')

    def test_lzma_bad_properties_length(self):
        """properties_length != 5 - ошибка кодека до распаковки"""
        frame = lzma_frame(b'some data', properties_length=4)
        path = self.write_archive(build_archive([('bad.bin', frame, LZMA)]))

        for archive in self.open_each(path):
            with self.assertRaises(CodecError):
                archive.read(0)

    def test_lzma_entry_shorter_than_frame_header(self):
        path = self.write_archive(build_archive([('tiny.bin', b'\x01\x02\x03', LZMA)]))

        for archive in self.open_each(path):
            with self.assertRaises(CodecError):
                archive.read(0)

    def test_lzma_truncated_stream(self):
        """Обрезанный поток даёт меньше байт, чем заявлено"""
        data = os.urandom(5000)
        frame = lzma_frame(data)
        path = self.write_archive(build_archive([('cut.bin', frame[:len(frame) // 2], LZMA)]))

        for archive in self.open_each(path):
            with self.assertRaises(CodecError):
                archive.read(0)

    def test_stored_payload_past_end_of_file(self):
        record = encode_record('a.txt', STORED, 1000, 50)
        path = self.write_archive(encode_header(1) + record)

        for archive in self.open_each(path):
            with self.assertRaises(ExtractIoError):
                archive.read(0)

    def test_single_stored_entry_scenario(self):
        """IROS / 0x10002 / один Stored файл a.txt с содержимым hi"""
        record_size = fixed_entry_size(Version.V2) + len('a.txt'.encode('utf-16-le'))
        offset = HEADER_SIZE + record_size
        data = (
            b'IROS' + struct.pack('<III', 0x10002, 0, 1)
            + encode_record('a.txt', 0, offset, 2, Version.V2)
            + b'hi'
        )
        path = self.write_archive(data)

        for backend in BACKEND_NAMES:
            out = self.tmpdir / backend
            with open_archive(path, backend=backend) as archive:
                self.assertEqual(archive.extract_all(out), 1)
            with open(out / 'a.txt', 'rb') as f:
                self.assertEqual(f.read(), b'hi')

    def test_extract_all_writes_every_entry(self):
        files = {
            'menu\\avatar.png': os.urandom(300),
            'field\\char\\cloud.bin': b'cloud' * 400,
            'readme.txt': b'hello',
        }
        data = build_archive([
            ('menu\\avatar.png', files['menu\\avatar.png'], STORED),
            ('field\\char\\cloud.bin', lzma_frame(files['field\\char\\cloud.bin']), LZMA),
            ('readme.txt', files['readme.txt'], STORED),
        ])
        path = self.write_archive(data)

        for backend in BACKEND_NAMES:
            out = self.tmpdir / ('out-' + backend)
            seen = []
            with open_archive(path, backend=backend) as archive:
                count = archive.extract_all(out, progress=lambda i, e, p: seen.append((i, e.name, p)))

            self.assertEqual(count, 3)
            self.assertEqual([i for i, _, _ in seen], [0, 1, 2])
            for name, content in files.items():
                with open(out / entry_relative_path(name), 'rb') as f:
                    self.assertEqual(f.read(), content)

    def test_extract_all_stops_at_first_failure(self):
        """Ошибка в записи прерывает распаковку, следующие записи не пишутся"""
        data = build_archive([
            ('one.txt', b'first', STORED),
            ('two.bin', lzma_frame(b'second', properties_length=7), LZMA),
            ('three.txt', b'third', STORED),
        ])
        path = self.write_archive(data)

        for backend in BACKEND_NAMES:
            out = self.tmpdir / ('stop-' + backend)
            seen = []
            with open_archive(path, backend=backend) as archive:
                with self.assertRaises(CodecError):
                    archive.extract_all(out, progress=lambda i, e, p: seen.append(i))

            self.assertEqual(seen, [0])
            self.assertTrue((out / 'one.txt').is_file())
            self.assertFalse((out / 'two.bin').exists())
            self.assertFalse((out / 'three.txt').exists())

    def test_extract_defaults_to_current_directory(self):
        path = self.write_archive(build_archive([('sub\\x.txt', b'x', STORED)]))
        cwd = os.getcwd()
        os.chdir(self.tmpdir)
        try:
            with open_archive(path) as archive:
                written = archive.extract(0)
            self.assertEqual(written, Path('sub', 'x.txt'))
            self.assertTrue((self.tmpdir / 'sub' / 'x.txt').is_file())
        finally:
            os.chdir(cwd)

    def test_unsafe_entry_name_rejected(self):
        path = self.write_archive(build_archive([('..\\escape.txt', b'nope', STORED)]))

        with open_archive(path) as archive:
            with self.assertRaises(UnsafeEntryPath):
                archive.extract(0, self.tmpdir / 'out')
        self.assertFalse((self.tmpdir / 'escape.txt').exists())

    def test_name_with_nul_rejected(self):
        """U+0000 в имени не может быть путём файла"""
        path = self.write_archive(build_archive([('a\x00b.txt', b'hi', STORED)]))

        for archive in self.open_each(path):
            self.assertEqual(archive.entries[0].name, 'a\x00b.txt')
            self.assertEqual(archive.read(0), b'hi')
            with self.assertRaises(UnsafeEntryPath):
                archive.extract(0, self.tmpdir / 'out')
            with self.assertRaises(UnsafeEntryPath):
                archive.extract_all(self.tmpdir / 'out')

    def test_failed_extract_removes_output_file(self):
        """После ошибки распаковки на диске не остаётся недописанного файла"""
        data = os.urandom(5000)
        frame = lzma_frame(data)
        path = self.write_archive(build_archive([
            ('bad_props.bin', lzma_frame(b'x', properties_length=7), LZMA),
            ('cut.bin', frame[:len(frame) // 2], LZMA),
        ]))

        for archive in self.open_each(path):
            out = self.tmpdir / ('partial-' + archive.backend)
            with self.assertRaises(CodecError):
                archive.extract(0, out)
            with self.assertRaises(CodecError):
                archive.extract(1, out)

            self.assertFalse((out / 'bad_props.bin').exists())
            self.assertFalse((out / 'cut.bin').exists())

    def test_index_out_of_range(self):
        path = self.write_archive(build_archive([('a.txt', b'a', STORED)]))
        with open_archive(path) as archive:
            with self.assertRaises(IndexError):
                archive.read(5)

    def test_find(self):
        path = self.write_archive(build_archive([('a\\b.txt', b'ab', STORED)]))
        with open_archive(path) as archive:
            self.assertEqual(archive.find('a/b.txt'), 0)
            self.assertEqual(archive.find('a\\b.txt'), 0)
            with self.assertRaises(KeyError):
                archive.find('missing.txt')


class TestArchiveState(ArchiveTestCase):
    """Тесты состояний Open / Closed"""

    def setUp(self):
        super().setUp()
        self.path = self.write_archive(build_archive([('a.txt', b'abc', STORED)]))

    def test_closed_archive_rejects_extraction(self):
        for backend in BACKEND_NAMES:
            archive = open_archive(self.path, backend=backend)
            archive.close()
            self.assertTrue(archive.closed)
            with self.assertRaises(ValueError):
                archive.read(0)
            with self.assertRaises(ValueError):
                archive.extract_all(self.tmpdir)

    def test_close_is_idempotent(self):
        archive = open_archive(self.path)
        archive.close()
        archive.close()
        self.assertTrue(archive.closed)

    def test_context_manager_closes(self):
        with open_archive(self.path) as archive:
            self.assertFalse(archive.closed)
        self.assertTrue(archive.closed)

    def test_catalog_survives_close(self):
        archive = Archive(self.path)
        archive.close()
        self.assertEqual(archive.entries[0].name, 'a.txt')

    def test_unknown_backend(self):
        with self.assertRaises(ValueError):
            open_archive(self.path, backend='zip')

    def test_small_buffer_rejected(self):
        with self.assertRaises(ValueError):
            open_archive(self.path, backend='buffered', buffer_size=1024)

    def test_repr(self):
        with open_archive(self.path, backend='buffered') as archive:
            self.assertIn('buffered', repr(archive))
            self.assertIn('open', repr(archive))


class TestBackendEquivalence(ArchiveTestCase):
    """Оба способа чтения дают одинаковый каталог и одинаковые байты"""

    def test_identical_catalog_and_payloads(self):
        big_stored = os.urandom(300000)
        big_packed = b'IRO payload ' * 20000
        files = [('big\\stored.bin', big_stored, STORED),
                 ('big\\packed.bin', lzma_frame(big_packed), LZMA)]
        # много записей, чтобы таблица не влезала в один буфер
        for i in range(1500):
            payload = f'entry {i}'.encode()
            if i % 10 == 0:
                files.append((f'small\\file_{i:04d}.txt', lzma_frame(payload), LZMA))
            else:
                files.append((f'small\\file_{i:04d}.txt', payload, STORED))

        path = self.write_archive(build_archive(files, version=Version.V1, padding=2))

        with open_archive(path, backend='mmap') as mapped, \
                open_archive(path, backend='buffered', buffer_size=MAX_ENTRY_SIZE + 1) as buffered:
            self.assertEqual(mapped.entries, buffered.entries)
            self.assertEqual(len(mapped), 1502)

            # обратный порядок - проверка абсолютного seek
            for index in reversed(range(len(mapped))):
                self.assertEqual(mapped.read(index), buffered.read(index))

            self.assertEqual(mapped.read(0), big_stored)
            self.assertEqual(buffered.read(1), big_packed)
            self.assertEqual(buffered.read(mapped.find('small/file_0003.txt')), b'entry 3')


class TestCli(ArchiveTestCase):
    """Тесты командной строки"""

    def setUp(self):
        super().setUp()
        self.path = self.write_archive(build_archive([
            ('menu\\a.txt', b'alpha', STORED),
            ('b.txt', lzma_frame(b'beta' * 10), LZMA),
        ]))

    def test_extract(self):
        out = self.tmpdir / 'cli-out'
        stdout = io.StringIO()
        with contextlib.redirect_stdout(stdout):
            main_iro.main([str(self.path), '-d', str(out), '--backend', 'buffered'])

        self.assertIn('Extracting menu\\a.txt... OK', stdout.getvalue())
        self.assertEqual((out / 'menu' / 'a.txt').read_bytes(), b'alpha')
        self.assertEqual((out / 'b.txt').read_bytes(), b'beta' * 10)

    def test_list(self):
        stdout = io.StringIO()
        with contextlib.redirect_stdout(stdout):
            main_iro.main([str(self.path), '--list'])

        output = stdout.getvalue()
        self.assertIn('menu\\a.txt', output)
        self.assertIn('LZMA', output)
        self.assertIn('2 entries', output)

    def test_error_exits_nonzero(self):
        bad = self.write_archive(b'ZZZZ' + b'\x00' * 12, 'bad.iro')
        stderr = io.StringIO()
        with contextlib.redirect_stderr(stderr), self.assertRaises(SystemExit) as ctx:
            main_iro.main([str(bad)])

        self.assertEqual(ctx.exception.code, 1)
        self.assertIn('Error while extracting', stderr.getvalue())


class TestVerifyBackends(unittest.TestCase):
    """Скрипт сравнения бэкендов на синтетическом архиве"""

    def test_synthetic_archive_matches(self):
        stdout = io.StringIO()
        with contextlib.redirect_stdout(stdout):
            self.assertTrue(verify_backends.main([]))
        self.assertIn('идентичны', stdout.getvalue())


def run_tests():
    loader = unittest.TestLoader()
    suite = unittest.TestSuite()

    suite.addTests(loader.loadTestsFromTestCase(TestHeader))
    suite.addTests(loader.loadTestsFromTestCase(TestEntryTable))
    suite.addTests(loader.loadTestsFromTestCase(TestNames))
    suite.addTests(loader.loadTestsFromTestCase(TestCursors))
    suite.addTests(loader.loadTestsFromTestCase(TestLZMADecoder))
    suite.addTests(loader.loadTestsFromTestCase(TestExtraction))
    suite.addTests(loader.loadTestsFromTestCase(TestArchiveState))
    suite.addTests(loader.loadTestsFromTestCase(TestBackendEquivalence))
    suite.addTests(loader.loadTestsFromTestCase(TestCli))
    suite.addTests(loader.loadTestsFromTestCase(TestVerifyBackends))

    runner = unittest.TextTestRunner(verbosity=2)
    result = runner.run(suite)

    return 0 if result.wasSuccessful() else 1


if __name__ == '__main__':
    sys.exit(run_tests())
