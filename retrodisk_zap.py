#!/usr/bin/env python3
"""
Retrozap - Disk Image Sector Inspector.

Steps through the raw sectors of a retro disk image. The image is unwrapped
from its container and identified first, so tracks and sectors follow the
layout of the filesystem found on it.
"""

import sys
import os
import argparse

from retrodisk_apple import DOS33FileSystem, ProDOSFileSystem
from retrodisk_bbc import DFSFileSystem
from retrodisk_coco import RSDOSFileSystem
from retrodisk_container import unwrap
from retrodisk_driver import detect, print_catalog
from retrodisk_image import DiskImage, detect_geometry
from retrodisk_msx import FATFileSystem
from retrodisk_trdos import TRDOSFileSystem

IMAGE_EXTENSIONS = ('.dsk', '.do', '.po', '.2mg', '.dmk', '.ssd', '.dsd', '.trd', '.img')

# Disk format -> (bytes per sector, sectors per track)
SECTOR_LAYOUTS = {
    ProDOSFileSystem.format_label: (512, 8),
    DOS33FileSystem.format_label: (256, 16),
    FATFileSystem.format_label: (512, 9),
    TRDOSFileSystem.format_label: (256, 16),
    DFSFileSystem.format_label: (256, 10),
    RSDOSFileSystem.format_label: (256, 18),
}
DEFAULT_LAYOUT = (256, 16)

PROMPT = "\n[N]ext, [P]rev, [J]ump, [C]atalog, [Q]uit > "
ROW_WIDTH = 16

# Byte -> character shown in the text column. The high bit is stripped so
# Apple high-ASCII names and text stay readable.
PRINTABLE = bytes((b & 0x7F) if 32 <= (b & 0x7F) <= 126 else ord('.') for b in range(256))


def hex_dump(data):
    """Rows of offset, two groups of eight hex bytes and the text column."""
    if not data:
        return "<No Data>"

    rows = []
    for start in range(0, len(data), ROW_WIDTH):
        row = data[start:start + ROW_WIDTH]
        left = row[:8].hex(' ').upper()
        right = row[8:].hex(' ').upper()
        text = row.translate(PRINTABLE).decode('ascii')
        rows.append(f"{start:04X}  {left:<23}  {right:<23}  |{text}|")
    return "\n".join(rows)


def layout_for(catalog):
    if catalog is None:
        return DEFAULT_LAYOUT
    return SECTOR_LAYOUTS.get(catalog.disk_format, DEFAULT_LAYOUT)


def step(track, sector, delta, geometry):
    """Move `delta` sectors forward or back, staying on the disk."""
    index = track * geometry.sectors_per_track + sector + delta
    index = max(0, min(index, geometry.total_sectors - 1))
    return divmod(index, geometry.sectors_per_track)


def ask_position(track, sector, geometry):
    """Prompt for a new track and sector; blank answers keep the current value."""
    try:
        answer = input(f"Track [{track}]: ").strip()
        new_track = int(answer) if answer else track
        answer = input(f"Sector [{sector}]: ").strip()
        new_sector = int(answer) if answer else sector
    except ValueError:
        print("Invalid input.")
        return track, sector
    return step(new_track, new_sector, 0, geometry)


def show_catalog(catalog):
    if catalog is None:
        print("<No filesystem recognised>")
    else:
        print_catalog(catalog)


def browse(image, catalog, geometry):
    track, sector = 0, 0
    while True:
        print(f"\n--- Track {track} | Sector {sector} ---")
        data = image.read_sector(track, sector, geometry.sectors_per_track, geometry.bytes_per_sector)
        print(hex_dump(data) if data else "<Sector Not Found / Read Error>")

        command = input(PROMPT).strip().lower() or 'n'
        if command == 'q':
            return
        if command == 'n':
            track, sector = step(track, sector, 1, geometry)
        elif command == 'p':
            track, sector = step(track, sector, -1, geometry)
        elif command == 'j':
            track, sector = ask_position(track, sector, geometry)
        elif command == 'c':
            show_catalog(catalog)


def list_images(directory='.'):
    images = sorted(name for name in os.listdir(directory) if name.lower().endswith(IMAGE_EXTENSIONS))
    if images:
        print("Error: No file specified.")
        print("\nAvailable disk images in current directory:")
        for name in images:
            print(f"  {name}")
    else:
        print("Error: No file specified and no disk images found in current directory.")
    print("\nUsage: retrodisk-zap <filename>")


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog=os.environ.get("RETRODISK_PROG_NAME"),
        description="Retrozap - Disk Image Sector Inspector"
    )
    parser.add_argument("file", nargs="?", help="Disk image file")
    args = parser.parse_args(argv)

    if not args.file:
        list_images()
        sys.exit(1)
    if not os.path.exists(args.file):
        print(f"Error: File '{args.file}' not found.")
        sys.exit(1)

    print(f"\nLoading {args.file}...")
    image = DiskImage.from_file(args.file)
    container = unwrap(image)
    if container is not None:
        print(f"Container: {container.label}")
        image = container.image

    catalog = detect(image)
    bytes_per_sector, sectors_per_track = layout_for(catalog)
    geometry = detect_geometry(image.size, bytes_per_sector, sectors_per_track)
    print(f"Format: {catalog.disk_format if catalog else 'Unknown'}")
    print(f"Geometry: {geometry.tracks} tracks x {geometry.sectors_per_track} sectors "
          f"x {geometry.bytes_per_sector} bytes")

    browse(image, catalog, geometry)


if __name__ == "__main__":
    main()
