"""
Чтение и распаковка IRO архивов
"""

import contextlib
import io
from pathlib import Path
from typing import Callable, Iterator, List, Optional

from iro_format import (
    Compression,
    Entry,
    ExtractError,
    ExtractIoError,
    UnsafeEntryPath,
    Version,
    entry_relative_path,
    is_safe_entry_name,
    read_catalog,
)
from iro_io import DEFAULT_BUFFER_SIZE, open_backend
from lzma_decoder import decompress_frame


class Archive:
    """IRO архив, открытый для чтения"""

    def __init__(self, path, backend: str = 'mmap', buffer_size: int = DEFAULT_BUFFER_SIZE):
        self.path = Path(path)
        self._backend = open_backend(self.path, backend, buffer_size)
        self._closed = False

        # архив либо полностью разобран, либо не существует
        try:
            self.header, self.entries = read_catalog(self._backend.cursor())
        except Exception:
            self.close()
            raise

    @property
    def files(self) -> List[Entry]:
        return self.entries

    @property
    def version(self) -> Version:
        return self.header.version

    @property
    def backend(self) -> str:
        return self._backend.name

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[Entry]:
        return iter(self.entries)

    def __enter__(self) -> 'Archive':
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __repr__(self):
        state = 'closed' if self._closed else 'open'
        return f"<Archive {str(self.path)!r} {self.backend} {len(self.entries)} entries {state}>"

    def close(self) -> None:
        """Освобождает файл / отображение. Повторный вызов ничего не делает."""
        if self._closed:
            return
        self._closed = True
        self._backend.close()

    def _check_open(self) -> None:
        if self._closed:
            raise ValueError("I/O operation on closed archive")

    def find(self, name: str) -> int:
        """Индекс записи по имени (разделители '\\' и '/' равнозначны)."""
        wanted = entry_relative_path(name)
        for index, entry in enumerate(self.entries):
            if entry.path == wanted:
                return index
        raise KeyError(name)

    def extract_to(self, sink, index: int) -> int:
        """
        Распаковывает запись в sink, возвращает число записанных байт.

        Как и для io.RawIOBase.write, sink может обращаться к переданному
        буферу только во время вызова write: при mmap это memoryview на
        отображение, который освобождается сразу после записи. Кто хранит
        куски, должен копировать их через bytes(chunk).
        """
        self._check_open()
        entry = self.entries[index]
        cursor = self._backend.cursor()

        try:
            cursor.seek(entry.offset)

            if entry.compression is Compression.STORED:
                return cursor.copy_to(sink, entry.length)

            data = decompress_frame(cursor, entry.length)
            sink.write(data)
            return len(data)

        except EOFError as e:
            raise ExtractIoError(f"{entry.name}: payload truncated: {e}") from e
        except OSError as e:
            raise ExtractIoError(f"{entry.name}: {e}") from e

    def read(self, index: int) -> bytes:
        """Возвращает распакованное содержимое записи"""
        buffer = io.BytesIO()
        self.extract_to(buffer, index)
        return buffer.getvalue()

    def extract(self, index: int, dest=None) -> Path:
        """Распаковывает запись в файл по её относительному пути внутри dest"""
        self._check_open()
        entry = self.entries[index]

        if not is_safe_entry_name(entry.name):
            raise UnsafeEntryPath(f"Refusing to extract unsafe entry name {entry.name!r}")

        output_path = Path(dest if dest is not None else '.') / entry.path

        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            f = open(output_path, 'wb')
        except OSError as e:
            raise ExtractIoError(f"{entry.name}: {e}") from e

        # недописанный файл не оставляем
        try:
            with f:
                self.extract_to(f, index)
        except OSError as e:
            _remove_partial(output_path)
            raise ExtractIoError(f"{entry.name}: {e}") from e
        except ExtractError:
            _remove_partial(output_path)
            raise

        return output_path

    def extract_all(self, dest=None,
                    progress: Optional[Callable[[int, Entry, Path], None]] = None) -> int:
        """
        Распаковывает все записи по порядку.

        Первая же ошибка прерывает распаковку, остальные записи не трогаются.
        """
        self._check_open()

        for index, entry in enumerate(self.entries):
            output_path = self.extract(index, dest)
            if progress is not None:
                progress(index, entry, output_path)

        return len(self.entries)


def _remove_partial(path: Path) -> None:
    with contextlib.suppress(OSError):
        path.unlink()


def open_archive(path, backend: str = 'mmap', buffer_size: int = DEFAULT_BUFFER_SIZE) -> Archive:
    return Archive(path, backend=backend, buffer_size=buffer_size)
