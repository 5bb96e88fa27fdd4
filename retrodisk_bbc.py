#!/usr/bin/env python3
"""
Acorn DFS Filesystem.

Reader for BBC Micro .ssd / .dsd disk images. The catalog lives in the
first two sectors and holds up to 31 files; every file is stored in
consecutive sectors.

Classes:
    DFSFileSystem: Acorn DFS reader.

Functions:
    detect_mode_hint(filename): Screen mode named in a disk filename.
    classify_bbc(name, data, load_address, mode_hint): Guess the screen mode of a file.
"""

import logging
import os
import re
from collections import namedtuple

from retrodisk_catalog import file_entry
from retrodisk_image import DiskFileSystem, SECTOR_SIZE

logger = logging.getLogger(__name__)

# Constants
DFS_MAX_ENTRIES = 31
DFS_SIZE_RANGES = (
    (99 * 1024, 105 * 1024),    # 40 track SS
    (195 * 1024, 210 * 1024),   # 40 track DS or 80 track SS
    (395 * 1024, 410 * 1024),   # 80 track DS
)
DFS_MAX_BAD_TITLE_CHARS = 2

SCREEN_20K = (20480, 20489)   # MODE 0-2, optionally followed by a palette
SCREEN_10K = (10240, 10245)   # MODE 4-5

MODE_EXTENSIONS = {
    'MODE0': 0, 'M0': 0,
    'MODE1': 1, 'M1': 1,
    'MODE2': 2, 'M2': 2,
    'MODE4': 4, 'M4': 4,
    'MODE5': 5, 'M5': 5,
}

MODE_HINT_PATTERN = re.compile(r'mode[ _]?([01245])')


class DFSEntry(namedtuple('DFSEntry',
                          'name directory locked load_address exec_address length start_sector')):
    __slots__ = ()

    @property
    def is_valid(self):
        return bool(self.name) and self.start_sector > 1

    @property
    def full_name(self):
        if self.directory == '$':
            return self.name
        return f"{self.directory}.{self.name}"


def detect_mode_hint(filename):
    """
    Return the screen mode named in a disk filename ("art_mode0.ssd" -> 0).

    Returns:
        int: The mode, or None.
    """
    if not filename:
        return None
    match = MODE_HINT_PATTERN.search(os.path.basename(filename).lower())
    return int(match.group(1)) if match else None


def _in_range(value, bounds):
    return bounds[0] <= value <= bounds[1]


def _screen_hint(size, load_address, mode_hint, check_address):
    if _in_range(size, SCREEN_20K) and (not check_address or load_address in (0x3000, 0x0E00)):
        return mode_hint if mode_hint in (0, 1, 2) else 1
    if _in_range(size, SCREEN_10K) and (not check_address or load_address in (0x5800, 0x0E00)):
        return mode_hint if mode_hint in (4, 5) else 5
    return None


def classify_bbc(name, data, load_address, mode_hint=None):
    """
    Guess whether a file is a BBC Micro screen dump.

    The extension (MODE0, M1, ...) or a "MODE n" in the name wins, then the
    load address of screen memory together with the screen size, then the
    size alone. Unknown modes default to MODE 1 for 20K screens and MODE 5
    for 10K screens unless the disk filename names one.

    Returns:
        tuple: (is_image, image_type_hint)
    """
    upper = name.upper()
    size = len(data)

    modes = []
    if '.' in upper:
        ext = upper.rsplit('.', 1)[1]
        if ext in MODE_EXTENSIONS:
            modes.append(MODE_EXTENSIONS[ext])
    for mode in (0, 1, 2, 4, 5):
        if f"MODE{mode}" in upper or f"MODE {mode}" in upper:
            modes.append(mode)
    for mode in modes:
        if size >= (20480 if mode <= 2 else 10240):
            return True, f"BBC MODE {mode}"

    address = load_address & 0xFFFF
    mode = _screen_hint(size, address, mode_hint, check_address=True)
    if mode is None:
        mode = _screen_hint(size, address, mode_hint, check_address=False)
    if mode is not None:
        return True, f"BBC MODE {mode}"
    return False, None


def file_type_label(name, data, load_address):
    """Short description of a DFS file from its name, address and contents."""
    upper = name.upper()
    if '.' in upper:
        ext = upper.rsplit('.', 1)[1]
        if ext in ('SCR', 'SCREEN'):
            return "Screen Data"
        if ext in MODE_EXTENSIONS:
            return f"MODE {MODE_EXTENSIONS[ext]} Screen"
        if ext in ('BAS', 'BASIC'):
            return "BASIC Program"
        if ext in ('TXT', 'TEXT'):
            return "Text File"

    address = load_address & 0xFFFF
    is_20k = _in_range(len(data), SCREEN_20K)
    is_10k = _in_range(len(data), SCREEN_10K)
    if address in (0x3000, 0x0E00) and is_20k:
        return "Screen (20KB)"
    if address in (0x5800, 0x0E00) and is_10k:
        return "Screen (10KB)"
    if len(data) >= 2 and data[0] == 0x0D:
        return "BASIC Program"
    if is_20k:
        return "Screen (20KB)"
    if is_10k:
        return "Screen (10KB)"
    return "Binary"


class DFSFileSystem(DiskFileSystem):
    """
    Acorn DFS reader.

    Sector 0 holds the title and the file names; sector 1 holds the rest of
    the title, the catalog size and, per file, the addresses, length and
    start sector.
    """
    format_label = "BBC Micro DFS"
    short_name = 'dfs'

    def __init__(self, image, filename=None):
        super().__init__(image, filename)
        self.sector0 = image.read(0, SECTOR_SIZE)
        self.sector1 = image.read(SECTOR_SIZE, SECTOR_SIZE)
        self.total_sectors = image.size // SECTOR_SIZE
        self.mode_hint = detect_mode_hint(self.filename)

    @classmethod
    def can_read(cls, image):
        if not any(low <= image.size <= high for low, high in DFS_SIZE_RANGES):
            return False
        sector1 = image.read(SECTOR_SIZE, SECTOR_SIZE)
        if sector1[5] // 8 > DFS_MAX_ENTRIES:
            return False

        sectors = ((sector1[6] & 0x03) << 8) | sector1[7]
        if sectors == 0 or sectors > image.size // SECTOR_SIZE + 10:
            return False

        bad = 0
        for byte in image.read(0, 8):
            char = byte & 0x7F
            if char != 0 and (char < 0x20 or char > 0x7E):
                bad += 1
        return bad <= DFS_MAX_BAD_TITLE_CHARS

    @property
    def title(self):
        chars = []
        for part in (self.sector0[:8], self.sector1[:4]):
            for byte in part:
                if byte == 0:
                    break
                chars.append(byte & 0x7F)
        return bytes(chars).decode('latin-1').strip()

    @property
    def boot_option(self):
        return (self.sector1[6] >> 4) & 0x03

    @property
    def catalog_sectors(self):
        return ((self.sector1[6] & 0x03) << 8) | self.sector1[7]

    def disk_name(self):
        return self.title or self.base_name or self.format_label

    def read_directory(self):
        count = self.sector1[5] // 8
        entries = []
        for i in range(min(count, DFS_MAX_ENTRIES)):
            names = self.sector0[8 + i * 8:16 + i * 8]
            info = self.sector1[8 + i * 8:16 + i * 8]

            name = bytes(c & 0x7F for c in names[:7]).decode('latin-1').strip(' \x00')
            mixed = info[6]
            start_low = info[7]
            start_sector = start_low | ((mixed & 0x03) << 8)
            # Some export tools set the high start sector bits wrongly
            if start_sector >= self.total_sectors:
                start_sector = start_low

            entries.append(DFSEntry(
                name=name,
                directory=chr(names[7] & 0x7F),
                locked=(names[7] & 0x80) != 0,
                load_address=(info[0] | (info[1] << 8)) | (((mixed >> 2) & 0x03) << 16),
                exec_address=(info[2] | (info[3] << 8)) | (((mixed >> 6) & 0x03) << 16),
                length=(info[4] | (info[5] << 8)) | (((mixed >> 4) & 0x03) << 16),
                start_sector=start_sector))
        return entries

    def extract_file(self, entry):
        if entry.length == 0:
            return b''
        data = self.image.read(entry.start_sector * SECTOR_SIZE, entry.length)
        if data is None:
            logger.debug("DFS: %r runs past the end of the image", entry.full_name)
        return data

    def make_entry(self, entry, data):
        is_image, hint = classify_bbc(entry.name, data, entry.load_address, self.mode_hint)
        return file_entry(
            entry.full_name, data,
            file_type=0,
            file_type_label=file_type_label(entry.name, data, entry.load_address),
            load_address=entry.load_address,
            length=entry.length,
            is_image=is_image,
            image_type_hint=hint)
