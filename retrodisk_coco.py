#!/usr/bin/env python3
"""
TRS-80 Color Computer RS-DOS Filesystem.

Reader for Disk Extended Color BASIC (.dsk) images: 35 or 40 tracks of
18 256-byte sectors, with the FAT and directory on track 17. Space is
allocated in granules of 9 sectors (2304 bytes), two per track.

Classes:
    RSDOSFileSystem: RS-DOS reader.

Functions:
    classify_coco(name, data): Guess the graphics mode of a file.
"""

import logging
from collections import namedtuple

from retrodisk_catalog import file_entry
from retrodisk_image import DiskFileSystem, SECTOR_SIZE, follow_chain

logger = logging.getLogger(__name__)

# Constants
SECTORS_PER_TRACK = 18
SECTORS_PER_GRANULE = 9
GRANULE_SIZE = SECTORS_PER_GRANULE * SECTOR_SIZE
GRANULES_PER_SIDE = 68
LINEAR_GRANULES_PER_SIDE = 70
TRACKS_PER_SIDE = 35
DIRECTORY_TRACK = 17
FAT_SECTOR = 1
DIRECTORY_SECTORS = range(2, 11)
ENTRY_SIZE = 32

MIN_SIZE = 140000
MAX_SIZE = 380000
DOUBLE_SIDED_SIZE = 2 * TRACKS_PER_SIDE * SECTORS_PER_TRACK * SECTOR_SIZE   # 322560
MIN_VALID_FAT_ENTRIES = 60

FAT_FREE = 0xFF
FAT_RESERVED = 0xFC
FAT_LAST_MIN = 0xC0
FAT_LAST_MAX = 0xC9

ENTRY_DELETED = 0x00
ENTRY_END = 0xFF

FILE_TYPES = {
    0: 'BAS',   # BASIC program
    1: 'DAT',   # BASIC data
    2: 'BIN',   # Machine language
    3: 'TXT',   # Editor source / text
}

PICTURE_EXTENSIONS = ('BIN', 'PIX', 'PIC', 'MAX')
COCO3_EXTENSIONS = ('CM3', 'PI3', 'MG3')


class RSDOSEntry(namedtuple('RSDOSEntry', 'name extension file_type ascii first_granule last_sector_bytes')):
    __slots__ = ()

    @property
    def is_valid(self):
        return bool(self.name)

    @property
    def full_name(self):
        if self.extension:
            return f"{self.name}.{self.extension}"
        return self.name

    @property
    def type_label(self):
        return FILE_TYPES.get(self.file_type, f"${self.file_type:02X}")


def is_fat_value(value):
    return value <= 0x8F or FAT_LAST_MIN <= value <= FAT_LAST_MAX or value in (FAT_RESERVED, FAT_FREE)


def ml_preamble(data):
    """
    Parse the first DECB machine language preamble.

    Returns:
        tuple: (length, load_address), or None if `data` does not start with one.
    """
    if len(data) < 5 or data[0] != 0x00:
        return None
    return (data[1] << 8) | data[2], (data[3] << 8) | data[4]


def classify_coco(name, data):
    """
    Guess whether a file is a CoCo screen.

    Returns:
        tuple: (is_image, image_type_hint)
    """
    ext = name.rsplit('.', 1)[1].upper() if '.' in name else ''
    size = len(data)

    if ext in PICTURE_EXTENSIONS:
        if size == 6144:
            return True, "CoCo 256x192"
        if size == 3072:
            return True, "CoCo 128x96"
        if 32000 <= size <= 32768:
            return True, "CoCo 3 320x200"
    elif ext in COCO3_EXTENSIONS and size >= 24000:
        return True, "CoCo 3 320x200"

    if size in (6144, 6145, 6149):
        return True, "CoCo 256x192"
    if 24000 <= size <= 33000:
        return True, "CoCo 3 320x200"

    # PMODE 4 or CoCo 3 screen saved with a loader preamble (and postamble)
    preamble = ml_preamble(data)
    if preamble and preamble[0] in (size - 5, size - 10):
        if preamble[0] == 6144:
            return True, "CoCo 256x192"
        if 32000 <= preamble[0] <= 32768:
            return True, "CoCo 3 320x200"
    return False, None


class RSDOSFileSystem(DiskFileSystem):
    """
    RS-DOS reader.

    Attributes:
        sides (int): 1, or 2 for images holding a second 35 track side.
        fat (bytes): The granule table (68 entries per side).
        linear (bool): True if granules map to tracks without skipping track 17.
    """
    format_label = "CoCo RS-DOS"
    short_name = 'rsdos'

    def __init__(self, image, filename=None):
        super().__init__(image, filename)
        self.sides = 2 if image.size >= DOUBLE_SIDED_SIZE else 1
        fat_sector = self.sector(DIRECTORY_TRACK, FAT_SECTOR)
        self.fat = fat_sector[:GRANULES_PER_SIDE * self.sides]

        # Some export tools mark the directory track reserved inside a
        # 70 granule table instead of leaving it out of the table
        self.linear = self.fat[34] == FAT_RESERVED and self.fat[35] == FAT_RESERVED
        if self.linear:
            self.fat = fat_sector[:LINEAR_GRANULES_PER_SIDE * self.sides]
            logger.debug("RS-DOS: FAT marks track 17 reserved, using linear granule map")

    @classmethod
    def can_read(cls, image):
        if not MIN_SIZE <= image.size <= MAX_SIZE:
            return False
        directory = image.read(DIRECTORY_TRACK * SECTORS_PER_TRACK * SECTOR_SIZE,
                               SECTORS_PER_TRACK * SECTOR_SIZE)
        if directory is None:
            return False

        fat = directory[FAT_SECTOR * SECTOR_SIZE:FAT_SECTOR * SECTOR_SIZE + GRANULES_PER_SIDE]
        valid = sum(1 for value in fat if is_fat_value(value))
        if valid < MIN_VALID_FAT_ENTRIES:
            return False

        free = fat.count(FAT_FREE)
        if 0 < free < GRANULES_PER_SIDE:
            return True
        # A full (or blank) FAT is only believed when a live file is listed
        first = directory[DIRECTORY_SECTORS[0] * SECTOR_SIZE]
        return first not in (ENTRY_DELETED, ENTRY_END)

    def sector(self, track, sector):
        return self.image.read_sector(track, sector, SECTORS_PER_TRACK)

    def granule_offset(self, granule):
        """Byte offset of a granule in the image."""
        per_side = LINEAR_GRANULES_PER_SIDE if self.linear else GRANULES_PER_SIDE
        side, index = divmod(granule, per_side)
        track = index // 2
        if not self.linear and track >= DIRECTORY_TRACK:
            track += 1
        first_sector = (index % 2) * SECTORS_PER_GRANULE
        side_offset = side * TRACKS_PER_SIDE * SECTORS_PER_TRACK * SECTOR_SIZE
        return side_offset + (track * SECTORS_PER_TRACK + first_sector) * SECTOR_SIZE

    def read_directory(self):
        entries = []
        for sector_number in DIRECTORY_SECTORS:
            data = self.sector(DIRECTORY_TRACK, sector_number)
            if data is None:
                break
            for i in range(SECTOR_SIZE // ENTRY_SIZE):
                raw = data[i * ENTRY_SIZE:(i + 1) * ENTRY_SIZE]
                if raw[0] == ENTRY_END:
                    return entries
                if raw[0] == ENTRY_DELETED:
                    continue
                entries.append(RSDOSEntry(
                    name=raw[0:8].decode('latin-1').rstrip(' \x00'),
                    extension=raw[8:11].decode('latin-1').rstrip(' \x00'),
                    file_type=raw[11],
                    ascii=raw[12] == 0xFF,
                    first_granule=raw[13],
                    last_sector_bytes=(raw[14] << 8) | raw[15]))
        return entries

    def _next_granule(self, granule):
        value = self.fat[granule]
        if FAT_LAST_MIN <= value <= FAT_LAST_MAX:
            return None
        if value >= len(self.fat):
            logger.debug("RS-DOS: granule %d links to invalid value %02X", granule, value)
            return None
        return value

    def extract_file(self, entry):
        if entry.first_granule >= len(self.fat):
            logger.debug("RS-DOS: %r starts at invalid granule %d", entry.full_name, entry.first_granule)
            return None

        data = bytearray()
        for granule in follow_chain(entry.first_granule, self._next_granule, len(self.fat)):
            value = self.fat[granule]
            last = FAT_LAST_MIN <= value <= FAT_LAST_MAX
            sectors = value & 0x0F if last else SECTORS_PER_GRANULE
            chunk = self.image.read(self.granule_offset(granule), sectors * SECTOR_SIZE)
            if chunk is None:
                logger.debug("RS-DOS: granule %d of %r outside the image", granule, entry.full_name)
                return None
            data += chunk
            if last and sectors and 1 <= entry.last_sector_bytes <= SECTOR_SIZE:
                del data[len(data) - SECTOR_SIZE + entry.last_sector_bytes:]
        return bytes(data)

    def make_entry(self, entry, data):
        load_address = None
        if entry.file_type == 2:
            preamble = ml_preamble(data)
            if preamble:
                load_address = preamble[1]

        is_image, hint = classify_coco(entry.full_name, data)
        return file_entry(
            entry.full_name, data,
            file_type=entry.file_type,
            file_type_label=entry.type_label,
            blocks_used=(len(data) + GRANULE_SIZE - 1) // GRANULE_SIZE,
            load_address=load_address,
            is_image=is_image,
            image_type_hint=hint)
