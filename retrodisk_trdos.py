#!/usr/bin/env python3
"""
ZX Spectrum TR-DOS Filesystem.

Reader for Beta Disk (.trd) images. Track 0 holds the catalog (sectors
0-7) and the disk information sector (sector 8). Files occupy consecutive
logical sectors, 16 to a logical track.

Classes:
    TRDOSFileSystem: TR-DOS reader.
"""

import logging
from collections import namedtuple

from retrodisk_catalog import file_entry
from retrodisk_image import DiskFileSystem, SECTOR_SIZE

logger = logging.getLogger(__name__)

# Constants
SECTORS_PER_TRACK = 16
DIRECTORY_SECTORS = 8
ENTRY_SIZE = 16
INFO_OFFSET = 8 * SECTOR_SIZE
TRDOS_ID = 0x10
MIN_SIZE = 163840
MAX_SIZE = 860160

ENTRY_END = 0x00
ENTRY_DELETED = 0x01

DISK_TYPES = {
    0x16: "80 track DS",
    0x17: "40 track DS",
    0x18: "80 track SS",
    0x19: "40 track SS",
}

FILE_TYPES = {
    'B': "BASIC",
    'C': "Code",
    'D': "Data",
    '#': "Sequential",
}

SCREEN_SIZE = 6912


class TRDOSEntry(namedtuple('TRDOSEntry',
                            'name file_type start_address length sector_count start_sector start_track')):
    __slots__ = ()

    @property
    def is_valid(self):
        return bool(self.name) and self.length > 0

    @property
    def full_name(self):
        if self.file_type.strip():
            return f"{self.name}.{self.file_type}"
        return self.name

    @property
    def offset(self):
        return (self.start_track * SECTORS_PER_TRACK + self.start_sector) * SECTOR_SIZE


DiskInfo = namedtuple('DiskInfo', 'first_free_sector first_free_track disk_type file_count free_sectors label')


class TRDOSFileSystem(DiskFileSystem):
    """TR-DOS reader."""
    format_label = "ZX Spectrum TR-DOS"
    short_name = 'trdos'

    def __init__(self, image, filename=None):
        super().__init__(image, filename)
        self.info = self.read_info()

    @classmethod
    def can_read(cls, image):
        if not MIN_SIZE <= image.size <= MAX_SIZE:
            return False
        return image.byte(INFO_OFFSET + 231) == TRDOS_ID and image.byte(INFO_OFFSET + 227) in DISK_TYPES

    def read_info(self):
        sector = self.image.read(INFO_OFFSET, SECTOR_SIZE)
        label = sector[245:253].decode('latin-1').strip(' \x00')
        return DiskInfo(
            first_free_sector=sector[225],
            first_free_track=sector[226],
            disk_type=DISK_TYPES.get(sector[227], f"0x{sector[227]:02X}"),
            file_count=sector[228],
            free_sectors=sector[229] | (sector[230] << 8),
            label=label)

    def disk_name(self):
        return self.info.label or self.base_name or self.format_label

    def read_directory(self):
        catalog = self.image.read(0, DIRECTORY_SECTORS * SECTOR_SIZE)
        entries = []
        for offset in range(0, len(catalog), ENTRY_SIZE):
            raw = catalog[offset:offset + ENTRY_SIZE]
            if raw[0] == ENTRY_END:
                break
            if raw[0] == ENTRY_DELETED:
                continue
            entries.append(TRDOSEntry(
                name=raw[0:8].decode('latin-1').strip(' \x00'),
                file_type=chr(raw[8]),
                start_address=raw[9] | (raw[10] << 8),
                length=raw[11] | (raw[12] << 8),
                sector_count=raw[13],
                start_sector=raw[14],
                start_track=raw[15]))
        return entries

    def extract_file(self, entry):
        length = min(entry.length, entry.sector_count * SECTOR_SIZE)
        data = self.image.read(entry.offset, length)
        if data is None:
            logger.debug("TR-DOS: %r runs past the end of the image", entry.full_name)
        return data

    def make_entry(self, entry, data):
        is_image = entry.file_type == 'C' and len(data) == SCREEN_SIZE
        return file_entry(
            entry.full_name, data,
            file_type=ord(entry.file_type),
            file_type_label=FILE_TYPES.get(entry.file_type, entry.file_type),
            blocks_used=entry.sector_count,
            load_address=entry.start_address if entry.file_type == 'C' else None,
            length=entry.length,
            is_image=is_image,
            image_type_hint="ZX Spectrum SCREEN$" if is_image else None)
