#!/usr/bin/env python3
"""
Disk Image Access Layer.

This module provides the read-only byte buffer every reader works on, the
geometry lookup used to interpret it, the Apple II sector-order normalizer
and the base class shared by all filesystem readers.

Classes:
    DiskImage: Immutable in-memory copy of a disk image.
    DiskGeometry: Sector layout derived from the image size.
    DiskFileSystem: Base class for the filesystem readers.

Functions:
    detect_geometry(size, bytes_per_sector, sectors_per_track): Geometry lookup.
    follow_chain(start, next_unit, limit): Cycle-safe allocation chain walker.
    convert_sector_order(image, table): Apply a per-track sector permutation.
    dos_to_prodos_order(image) / prodos_to_dos_order(image): 140K order swaps.
"""

import logging
import os
from collections import namedtuple

from retrodisk_catalog import DiskCatalog

logger = logging.getLogger(__name__)

# Constants
SECTOR_SIZE = 256
APPLE_SECTORS_PER_TRACK = 16
APPLE_TRACKS = 35
APPLE_525_SIZE = APPLE_TRACKS * APPLE_SECTORS_PER_TRACK * SECTOR_SIZE  # 143360

# Known standard image sizes.
# (bytes per sector, sectors per track, image size) -> (tracks, sides)
STANDARD_GEOMETRIES = {
    (256, 16, 143360): (35, 1),   # Apple II 5.25"
    (512, 8, 143360): (35, 1),    # Apple II 5.25" seen as ProDOS blocks
    (512, 8, 819200): (80, 2),    # Apple 3.5" 800K
    (256, 10, 102400): (40, 1),   # DFS 40 track SS (.ssd)
    (256, 10, 204800): (80, 1),   # DFS 80 track SS or 40 track DS
    (256, 10, 409600): (80, 2),   # DFS 80 track DS (.dsd)
    (256, 18, 161280): (35, 1),   # RS-DOS 35 track SS
    (256, 18, 184320): (40, 1),   # RS-DOS 40 track SS
    (256, 18, 322560): (35, 2),   # RS-DOS 35 track DS
    (256, 18, 368640): (40, 2),   # RS-DOS 40 track DS
    (512, 9, 368640): (80, 1),    # MSX 360K (1DD)
    (512, 9, 737280): (80, 2),    # MSX 720K (2DD)
    (256, 16, 163840): (40, 1),   # TR-DOS 40 track SS
    (256, 16, 327680): (80, 1),   # TR-DOS 80 track SS or 40 track DS
    (256, 16, 655360): (80, 2),   # TR-DOS 80 track DS
}

# DOS 3.3 logical sector -> ProDOS logical sector within one track.
# The image stores logical sectors, so a DOS-order sector `d` lands at
# ProDOS-order position DOS_TO_PRODOS[d].
DOS_TO_PRODOS = (
    0x0, 0xE, 0xD, 0xC, 0xB, 0xA, 0x9, 0x8,
    0x7, 0x6, 0x5, 0x4, 0x3, 0x2, 0x1, 0xF,
)


def invert_permutation(table):
    """Return the inverse of a sector permutation table."""
    if sorted(table) != list(range(len(table))):
        raise ValueError("sector table is not a permutation")
    inverse = [0] * len(table)
    for index, value in enumerate(table):
        inverse[value] = index
    return tuple(inverse)


PRODOS_TO_DOS = invert_permutation(DOS_TO_PRODOS)


class DiskGeometry(namedtuple('DiskGeometry',
                              'bytes_per_sector sectors_per_track tracks sides total_sectors')):
    __slots__ = ()

    @property
    def total_size(self):
        return self.total_sectors * self.bytes_per_sector


def detect_geometry(size, bytes_per_sector=SECTOR_SIZE, sectors_per_track=APPLE_SECTORS_PER_TRACK):
    """
    Derive the geometry of an image from its size.

    Standard sizes come from a fixed table; anything else is computed from
    the size, rounding down to whole sectors so that
    total_sectors * bytes_per_sector never exceeds the image.

    Args:
        size (int): Image size in bytes.
        bytes_per_sector (int): Sector (or block) size of the filesystem.
        sectors_per_track (int): Sectors per track of the filesystem.

    Returns:
        DiskGeometry
    """
    known = STANDARD_GEOMETRIES.get((bytes_per_sector, sectors_per_track, size))
    if known:
        tracks, sides = known
        return DiskGeometry(bytes_per_sector, sectors_per_track, tracks, sides,
                            tracks * sides * sectors_per_track)

    total_sectors = size // bytes_per_sector
    return DiskGeometry(bytes_per_sector, sectors_per_track,
                        total_sectors // sectors_per_track, 1, total_sectors)


class DiskImage:
    """
    Immutable in-memory disk image.

    All read helpers return None when any part of the requested range lies
    outside the buffer, so readers can probe hostile images without
    guarding every index.

    Attributes:
        data (bytes): The raw image bytes.
        size (int): Length of the image in bytes.
        filename (str): Optional filename hint (naming and mode hints only).
    """
    def __init__(self, data, filename=None):
        self.data = bytes(data)
        self.size = len(self.data)
        self.filename = filename

    @classmethod
    def from_file(cls, filename):
        with open(filename, 'rb') as f:
            return cls(f.read(), filename)

    def __len__(self):
        return self.size

    def __eq__(self, other):
        return isinstance(other, DiskImage) and self.data == other.data

    def __hash__(self):
        return hash(self.data)

    def read(self, offset, length):
        """
        Read `length` bytes at `offset`.

        Returns:
            bytes: The requested bytes, or None if out of range.
        """
        if offset < 0 or length < 0 or offset + length > self.size:
            return None
        return self.data[offset:offset + length]

    def byte(self, offset):
        if offset < 0 or offset >= self.size:
            return None
        return self.data[offset]

    def word(self, offset):
        """Little-endian 16-bit value at `offset`, or None."""
        raw = self.read(offset, 2)
        if raw is None:
            return None
        return raw[0] | (raw[1] << 8)

    def read_block(self, index, block_size):
        return self.read(index * block_size, block_size)

    def read_sector(self, track, sector, sectors_per_track, sector_size=SECTOR_SIZE, side=0, sides=1):
        """
        Read a sector addressed by track and sector.

        Tracks are stored side by side (track 0 side 0, track 0 side 1, ...).

        Args:
            track (int): Track number (0-based).
            sector (int): Sector number within the track (0-based).
            sectors_per_track (int): Sectors per track.
            sector_size (int): Bytes per sector.
            side (int): Side number.
            sides (int): Number of sides stored in the image.

        Returns:
            bytes: Sector data, or None if not present.
        """
        if sector < 0 or sector >= sectors_per_track or side < 0 or side >= sides:
            return None
        index = (track * sides + side) * sectors_per_track + sector
        return self.read(index * sector_size, sector_size)

    def describe(self):
        """Return a string describing the image."""
        name = self.filename or "<memory>"
        return f"{name} ({self.size} bytes)"


def follow_chain(start, next_unit, limit):
    """
    Walk an allocation chain without ever looping forever.

    Yields `start` and every following unit until `next_unit` returns None.
    At most `limit` units are produced, which is the number of allocation
    units on the disk: a longer chain must contain a cycle.

    Args:
        start: First allocation unit.
        next_unit (callable): Maps a unit to the following one, or None at the end.
        limit (int): Maximum number of units to yield.
    """
    current = start
    count = 0
    while current is not None:
        if count >= limit:
            logger.warning("Allocation chain from %r exceeds %d units, truncating", start, limit)
            return
        yield current
        count += 1
        current = next_unit(current)


def convert_sector_order(image, table, sectors_per_track=APPLE_SECTORS_PER_TRACK, sector_size=SECTOR_SIZE):
    """
    Permute the sectors of every track.

    Sector `s` of each source track is written to position `table[s]` of the
    same track in the result. Trailing bytes that do not fill a whole track
    are copied unchanged.

    Returns:
        DiskImage: A new image; the source is not modified.
    """
    track_size = sectors_per_track * sector_size
    tracks = image.size // track_size
    out = bytearray(image.data)
    for track in range(tracks):
        base = track * track_size
        for source, target in enumerate(table):
            src = base + source * sector_size
            dst = base + target * sector_size
            out[dst:dst + sector_size] = image.data[src:src + sector_size]
    return DiskImage(out, image.filename)


def dos_to_prodos_order(image):
    """Reorder a DOS 3.3 ordered 140K image into ProDOS block order."""
    return convert_sector_order(image, DOS_TO_PRODOS)


def prodos_to_dos_order(image):
    """Reorder a ProDOS ordered 140K image into DOS 3.3 sector order."""
    return convert_sector_order(image, PRODOS_TO_DOS)


class DiskFileSystem:
    """
    Base class for the filesystem readers.

    A reader is constructed only after its `can_read` gate accepted the
    image. Flat filesystems get `read_catalog` for free by implementing
    `read_directory`, `extract_file` and `make_entry`; hierarchical ones
    override `read_catalog`.

    Attributes:
        image (DiskImage): The image being read.
        filename (str): Filename hint, used for the disk name fallback.
    """
    format_label = "Unknown"

    def __init__(self, image, filename=None):
        self.image = image
        self.filename = filename or image.filename

    @classmethod
    def can_read(cls, image):
        """Cheap signature check over the image size and a few fixed bytes."""
        raise NotImplementedError

    def read_directory(self):
        """Return the raw directory entries of the disk."""
        raise NotImplementedError

    def extract_file(self, entry):
        """Return the bytes of a directory entry, or None if unreadable."""
        raise NotImplementedError

    def make_entry(self, entry, data):
        """Build the CatalogEntry for a raw entry and its bytes."""
        raise NotImplementedError

    @property
    def base_name(self):
        """Filename without its directory, or None."""
        return os.path.basename(self.filename) if self.filename else None

    def disk_name(self):
        return self.base_name or self.format_label

    def read_catalog(self):
        """
        Read the whole disk into a DiskCatalog.

        Invalid entries and entries whose data cannot be extracted are
        skipped; they never abort the catalog.
        """
        entries = []
        for raw in self.read_directory():
            if not raw.is_valid:
                continue
            data = self.extract_file(raw)
            if data is None:
                logger.debug("%s: skipping unreadable entry %r", self.format_label, raw.name)
                continue
            entries.append(self.make_entry(raw, data))

        return DiskCatalog(self.disk_name(), self.format_label, self.image.size, tuple(entries))
