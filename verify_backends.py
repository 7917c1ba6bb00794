"""
Сравнение бэкендов чтения IRO архива

Для каждого архива: открыть через mmap и через буферизованный поток,
сравнить каталоги, распаковать все записи в "чёрную дыру" и сравнить
содержимое и время.

Без аргументов проверяется синтетический архив.
"""

import hashlib
import os
import sys
import tempfile
import time

from iro_archive import open_archive
from iro_fixtures import build_archive, lzma_frame
from iro_format import Compression
from iro_io import BACKENDS


class HashSink:
    """Принимает данные и считает только их хеш и размер"""

    def __init__(self):
        self.digest = hashlib.sha256()
        self.size = 0

    def write(self, data) -> int:
        self.digest.update(data)
        self.size += len(data)
        return len(data)


def scan(path, backend: str):
    started = time.perf_counter()
    digests = []
    errors = 0

    with open_archive(path, backend=backend) as archive:
        entries = list(archive.entries)
        for index in range(len(archive)):
            sink = HashSink()
            try:
                archive.extract_to(sink, index)
            except Exception as e:
                print(f"   {backend}: {archive.entries[index].name}: {e}")
                errors += 1
                digests.append(None)
                continue
            digests.append(sink.digest.hexdigest())

    return entries, digests, errors, time.perf_counter() - started


def verify_archive(path) -> bool:
    size_mb = os.path.getsize(path) / 1_048_576
    print(f"\n{os.path.basename(path)} / {size_mb:.2f} MB")
    print("-" * 70)

    results = {}
    for backend in sorted(BACKENDS):
        entries, digests, errors, elapsed = scan(path, backend)
        results[backend] = (entries, digests)
        print(f"   {backend:<9} {len(entries):>6} entries  {errors:>3} errors  {elapsed:.3f}s")

    (entries_a, digests_a), (entries_b, digests_b) = results.values()

    if entries_a != entries_b:
        print("   каталоги ОТЛИЧАЮТСЯ")
        return False

    if digests_a != digests_b:
        mismatched = [e.name for e, a, b in zip(entries_a, digests_a, digests_b) if a != b]
        print(f"   содержимое ОТЛИЧАЕТСЯ: {len(mismatched)} записей, первая {mismatched[0]}")
        return False

    print("   каталоги и содержимое идентичны")
    return True


def synthetic_archive(directory) -> str:
    files = []
    for i in range(200):
        payload = (f"texture {i} " * (i + 1)).encode()
        if i % 2:
            files.append((f"field\\tex_{i:03d}.dds", lzma_frame(payload), Compression.LZMA.value))
        else:
            files.append((f"menu\\tex_{i:03d}.dds", payload, Compression.STORED.value))

    path = os.path.join(directory, 'synthetic.iro')
    with open(path, 'wb') as f:
        f.write(build_archive(files))
    return path


def main(paths) -> bool:
    print("=" * 70)
    print("СРАВНЕНИЕ БЭКЕНДОВ IRO")
    print("=" * 70)

    if paths:
        return all([verify_archive(path) for path in paths])

    with tempfile.TemporaryDirectory() as temp_dir:
        return verify_archive(synthetic_archive(temp_dir))


if __name__ == '__main__':
    try:
        success = main(sys.argv[1:])
        sys.exit(0 if success else 1)
    except Exception as e:
        print(f"\n  Критическая ошибка: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)
