#!/usr/bin/env python3
"""
Retro Disk Driver Module.

Format detection for disk images of 1980s microcomputers and a command
line tool to list, read and extract their files.

Supported filesystems: Apple ProDOS, Apple DOS 3.3, MSX-DOS FAT12,
ZX Spectrum TR-DOS, BBC Micro DFS, CoCo RS-DOS. 2IMG and DMK containers
are unwrapped first.

Functions:
    detect(data, filename): Identify the filesystem and read its catalog.
    main(argv): Command line entry point.
"""

import os
import sys
import struct
import logging
import argparse

from retrodisk_apple import DOS33FileSystem, ProDOSFileSystem
from retrodisk_bbc import DFSFileSystem
from retrodisk_coco import RSDOSFileSystem
from retrodisk_container import unwrap
from retrodisk_image import APPLE_525_SIZE, DiskImage, dos_to_prodos_order, prodos_to_dos_order
from retrodisk_msx import FATFileSystem
from retrodisk_trdos import TRDOSFileSystem

logger = logging.getLogger(__name__)

# Probe order. Readers with strict signatures come before loose ones.
FILESYSTEMS = (
    ProDOSFileSystem,
    DOS33FileSystem,
    FATFileSystem,
    TRDOSFileSystem,
    DFSFileSystem,
    RSDOSFileSystem,
)

# Errors a reader may hit on a damaged or foreign image
PROBE_ERRORS = (IndexError, ValueError, TypeError, struct.error)

# Sector-order retries for 140K Apple images, in probe order
NORMALIZED_RETRIES = (
    (ProDOSFileSystem, dos_to_prodos_order),
    (DOS33FileSystem, prodos_to_dos_order),
)


def reader_for(short_name):
    for reader in FILESYSTEMS:
        if reader.short_name == short_name:
            return reader
    return None


def probe_order(readers, image):
    """
    Yield (reader, image) pairs in the order they are probed.

    On a 140K image the retries in the other sector order come straight
    after the Apple readers, so a reader with a looser signature never
    claims an Apple disk stored in the other order.
    """
    apple = set()
    if image.size == APPLE_525_SIZE:
        apple = {reader for reader, _ in NORMALIZED_RETRIES}
    for reader in readers:
        yield reader, image
        if reader in apple:
            apple.discard(reader)
            if not apple:
                logger.debug("Retrying 140K image in the other sector order")
                for retry, convert in NORMALIZED_RETRIES:
                    yield retry, convert(image)


def probe(reader, image, filename=None):
    """
    Try one reader on an image.

    Returns:
        DiskCatalog: The catalog, or None if the reader does not accept the image.
    """
    try:
        if not reader.can_read(image):
            return None
        catalog = reader(image, filename).read_catalog()
    except PROBE_ERRORS as e:
        logger.debug("%s: probe failed: %s", reader.format_label, e)
        return None
    logger.debug("%s: %d file(s)", reader.format_label, catalog.total_files)
    return catalog


def detect(data, filename=None):
    """
    Identify the filesystem of a disk image and read its catalog.

    Containers are unwrapped first and their declared filesystem is tried
    before the others. Readers are then probed in FILESYSTEMS order. A
    140K image is also tried in the other Apple sector order, right after
    the Apple readers and ahead of the rest. A catalog without files is
    only returned if nothing else produces files.

    Args:
        data (bytes | bytearray | DiskImage): The image.
        filename (str): Optional filename, used for mode hints and to name
            disks without a volume name.

    Returns:
        DiskCatalog: The catalog, or None if no filesystem was recognised.
    """
    image = data if isinstance(data, DiskImage) else DiskImage(data, filename)
    filename = filename or image.filename

    readers = list(FILESYSTEMS)
    container = unwrap(image)
    if container is not None:
        logger.info("Unwrapped %s container (%d bytes)", container.label, container.image.size)
        image = container.image
        hinted = reader_for(container.hint)
        if hinted is not None:
            readers.remove(hinted)
            readers.insert(0, hinted)

    empty = None
    for reader, candidate in probe_order(readers, image):
        catalog = probe(reader, candidate, filename)
        if catalog is None:
            continue
        if catalog.total_files:
            return catalog
        if empty is None:
            empty = catalog

    if empty is None:
        logger.debug("No filesystem recognised in %s", image.describe())
    return empty


def safe_name(name):
    """Host filesystem name for a catalog name."""
    return name.replace('/', '_').replace('\x00', '') or '_'


def format_entry(entry, depth):
    indent = "  " * depth
    if entry.is_directory:
        return f"{indent}{entry.name}/  ({len(entry.children)} items, {entry.size_string})"
    notes = []
    if entry.load_address is not None:
        notes.append(f"load ${entry.load_address:04X}")
    if entry.is_image:
        notes.append(f"[{entry.image_type_hint}]")
    return f"{indent}{entry.name:<20} {entry.file_type_label or '':<14} {entry.size:>7} bytes  {' '.join(notes)}"


def print_catalog(catalog):
    print(f"Disk: {catalog.disk_name}")
    print(f"Format: {catalog.disk_format} ({catalog.disk_size} bytes)")
    print(f"\nFiles found: {catalog.total_files} ({catalog.image_files} image(s))")
    for entry, depth in catalog.walk():
        print(f" - {format_entry(entry, depth)}")


def find_entry(catalog, name):
    entry = catalog.find(name)
    if entry is not None:
        return entry
    for candidate in catalog.all_entries():
        if not candidate.is_directory and candidate.name.upper() == name.upper():
            return candidate
    return None


def extract_all(catalog, dest_dir):
    """Write every file of the catalog below `dest_dir`, recreating directories."""
    os.makedirs(dest_dir, exist_ok=True)
    stack = [(entry, dest_dir) for entry in reversed(catalog.entries)]
    count = 0
    while stack:
        entry, parent = stack.pop()
        out_path = os.path.join(parent, safe_name(entry.name))
        if entry.is_directory:
            os.makedirs(out_path, exist_ok=True)
            stack.extend((child, out_path) for child in reversed(entry.children))
            continue
        print(f"Extracting {entry.path} -> {out_path}")
        with open(out_path, 'wb') as out_f:
            out_f.write(entry.data)
        count += 1
    return count


def main(argv=None):
    # Allow overriding program name via environment variable (for wrapper scripts)
    prog_name = os.environ.get("RETRODISK_PROG_NAME")

    parser = argparse.ArgumentParser(
        prog=prog_name,
        description="List, read and extract files from retro computer disk images.",
        epilog="Example: retrodisk games.dsk extract ./out"
    )
    parser.add_argument("disk_image", help="Path to the disk image file")
    parser.add_argument("command", nargs="?", default="list", choices=["list", "read", "extract"],
                        help="What to do (default: list)")
    parser.add_argument("target", nargs="?", help="File to read, or directory to extract to")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    args = parser.parse_args(argv)

    level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(level=level, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    if args.command in ("read", "extract") and not args.target:
        parser.error(f"'{args.command}' needs a target")

    if not os.path.exists(args.disk_image):
        print(f"Error: File '{args.disk_image}' not found.")
        sys.exit(1)

    catalog = detect(DiskImage.from_file(args.disk_image))
    if catalog is None:
        print(f"Error: '{args.disk_image}' is not a recognised disk image.")
        sys.exit(1)

    if args.command == "list":
        print_catalog(catalog)

    elif args.command == "read":
        entry = find_entry(catalog, args.target)
        if entry is None or entry.is_directory:
            print(f"Error: File '{args.target}' not found.")
            sys.exit(1)
        print(f"Reading file: {entry.path}")
        print(f"Read {entry.size} bytes.")
        if entry.data:
            print("Content (first 500 bytes):")
            print(entry.data[:500].decode('latin-1').replace('\r', '\n'))

    elif args.command == "extract":
        print(f"Extracting all files to {args.target}...")
        count = extract_all(catalog, args.target)
        print(f"{count} file(s) extracted.")


if __name__ == "__main__":
    main()
