"""
CLI интерфейс для распаковки IRO архивов
"""

import argparse
import sys

from iro_archive import open_archive
from iro_io import BACKENDS


def list_archive(archive) -> None:
    print("Name".ljust(60), "Offset".rjust(12), "Length".rjust(10), "Method".rjust(8))
    print("-" * 93)

    total = 0
    for entry in archive:
        print(
            entry.name.ljust(60),
            str(entry.offset).rjust(12),
            str(entry.length).rjust(10),
            entry.compression.name.rjust(8)
        )
        total += entry.length

    print("-" * 93)
    print(f"{len(archive)} entries, {total} bytes on disk (version {archive.version:#x})")


def extract_archive(archive, directory) -> None:
    print(f"Extracting {len(archive)} files...")

    def report(index, entry, output_path):
        print(f"Extracting {entry.name}... OK")

    archive.extract_all(directory, progress=report)
    print("Extraction complete")


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='IRO extractor - распаковка архивов модов'
    )
    parser.add_argument('archive', help='IRO архив')
    parser.add_argument('-d', '--directory', default='.', help='Выходная папка')
    parser.add_argument('-l', '--list', action='store_true', help='Показать содержимое архива')
    parser.add_argument('--backend', choices=sorted(BACKENDS), default='mmap',
                        help='Способ чтения архива (default=mmap)')

    args = parser.parse_args(argv)

    try:
        with open_archive(args.archive, backend=args.backend) as archive:
            if args.list:
                list_archive(archive)
            else:
                extract_archive(archive, args.directory)

    except Exception as e:
        print(f"Error while extracting: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
