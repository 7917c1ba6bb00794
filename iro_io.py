"""
Курсоры чтения для IRO архива: буферизованный поток и отображение в память.

Оба курсора поддерживают один и тот же набор операций, поэтому парсер и
распаковщик пишутся один раз:

    borrow(n)      -> (buffer, pos): следующие n байт без сдвига позиции
    consume(n)     -> bytes: прочитать n байт и сдвинуть позицию
    skip(n)        сдвинуть позицию без чтения
    seek(pos)      перейти к абсолютному смещению
    tell()         текущее смещение
    copy_to(sink, n)  переписать n байт в sink

Нехватка данных всегда даёт EOFError.
"""

import mmap
import os
from typing import Tuple

from iro_format import MAX_ENTRY_SIZE


DEFAULT_BUFFER_SIZE = 128 * 1024


class BufferedCursor:
    """Курсор с буфером опережающего чтения поверх файлового объекта."""

    def __init__(self, fileobj, buffer_size: int = DEFAULT_BUFFER_SIZE):
        if buffer_size <= MAX_ENTRY_SIZE:
            raise ValueError(
                f"buffer_size must exceed the largest entry record ({MAX_ENTRY_SIZE} bytes), got {buffer_size}"
            )
        self._file = fileobj
        self._buffer_size = buffer_size
        self._buf = b''
        self._buf_pos = 0
        # смещение в файле, соответствующее _buf[0]
        self._buf_start = fileobj.tell()

    def tell(self) -> int:
        return self._buf_start + self._buf_pos

    def _available(self) -> int:
        return len(self._buf) - self._buf_pos

    def _fill(self, need: int) -> None:
        tail = self._buf[self._buf_pos:]
        self._buf_start += self._buf_pos
        want = max(self._buffer_size, need) - len(tail)
        chunk = self._file.read(want) if want > 0 else b''
        self._buf = tail + chunk
        self._buf_pos = 0

    def borrow(self, n: int) -> Tuple[bytes, int]:
        if self._available() < n:
            self._fill(n)
            if self._available() < n:
                raise EOFError(f"need {n} bytes at offset {self.tell()}, have {self._available()}")
        return self._buf, self._buf_pos

    def consume(self, n: int) -> bytes:
        buffer, pos = self.borrow(n)
        self._buf_pos += n
        return buffer[pos:pos + n]

    def skip(self, n: int) -> None:
        if n <= self._available():
            self._buf_pos += n
        else:
            self.seek(self.tell() + n)

    def seek(self, position: int) -> None:
        if self._buf_start <= position <= self._buf_start + len(self._buf):
            self._buf_pos = position - self._buf_start
            return

        self._file.seek(position)
        self._buf = b''
        self._buf_pos = 0
        self._buf_start = position

    def copy_to(self, sink, n: int) -> int:
        remain = n
        while remain > 0:
            if self._available() == 0:
                self._fill(1)
                if self._available() == 0:
                    raise EOFError(f"payload ends {remain} bytes early at offset {self.tell()}")

            take = min(self._available(), remain)
            sink.write(self._buf[self._buf_pos:self._buf_pos + take])
            self._buf_pos += take
            remain -= take

        return n


class MmapCursor:
    """Курсор над отображением файла: все операции - арифметика смещений."""

    def __init__(self, mapping, position: int = 0):
        self._map = mapping
        self._pos = position

    def tell(self) -> int:
        return self._pos

    def remaining(self) -> int:
        return max(0, len(self._map) - self._pos)

    def borrow(self, n: int) -> Tuple[object, int]:
        if self.remaining() < n:
            raise EOFError(f"need {n} bytes at offset {self._pos}, have {self.remaining()}")
        return self._map, self._pos

    def consume(self, n: int) -> bytes:
        buffer, pos = self.borrow(n)
        self._pos += n
        return buffer[pos:pos + n]

    def skip(self, n: int) -> None:
        self._pos += n

    def seek(self, position: int) -> None:
        self._pos = position

    def copy_to(self, sink, n: int) -> int:
        _, pos = self.borrow(n)
        with memoryview(self._map) as view, view[pos:pos + n] as chunk:
            sink.write(chunk)
        self._pos += n
        return n


class BufferedBackend:
    name = 'buffered'

    def __init__(self, path, buffer_size: int = DEFAULT_BUFFER_SIZE):
        self._file = open(path, 'rb')
        try:
            self._cursor = BufferedCursor(self._file, buffer_size)
        except Exception:
            self._file.close()
            raise

    def cursor(self) -> BufferedCursor:
        # один файловый объект - один курсор, между потоками не разделяется
        return self._cursor

    def close(self) -> None:
        self._file.close()


class MmapBackend:
    name = 'mmap'

    def __init__(self, path, buffer_size: int = DEFAULT_BUFFER_SIZE):
        self._file = open(path, 'rb')
        try:
            if os.fstat(self._file.fileno()).st_size == 0:
                # пустой файл нельзя отобразить в память
                self._map = b''
            else:
                self._map = mmap.mmap(self._file.fileno(), 0, access=mmap.ACCESS_READ)
        except Exception:
            self._file.close()
            raise

    def cursor(self) -> MmapCursor:
        return MmapCursor(self._map)

    def close(self) -> None:
        if isinstance(self._map, mmap.mmap):
            self._map.close()
        self._file.close()


BACKENDS = {
    MmapBackend.name: MmapBackend,
    BufferedBackend.name: BufferedBackend,
}


def open_backend(path, backend: str = 'mmap', buffer_size: int = DEFAULT_BUFFER_SIZE):
    try:
        backend_cls = BACKENDS[backend]
    except KeyError:
        raise ValueError(f"Unknown backend {backend!r}, expected one of {sorted(BACKENDS)}") from None

    return backend_cls(path, buffer_size)
