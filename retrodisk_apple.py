#!/usr/bin/env python3
"""
Apple II Filesystems.

Readers for the two Apple II disk operating systems found on 5.25" and
3.5" images.

Classes:
    ProDOSFileSystem: ProDOS / SOS block filesystem (hierarchical).
    DOS33FileSystem: DOS 3.3 track/sector filesystem (flat).

Functions:
    classify_apple(data, load_address, file_type): Guess the graphics mode of a file.
"""

import logging
from collections import namedtuple

from retrodisk_catalog import (DiskCatalog, PendingDirectory, assemble_tree, file_entry,
                               join_path, prodos_type_info)
from retrodisk_image import (APPLE_525_SIZE, APPLE_SECTORS_PER_TRACK, DiskFileSystem,
                             follow_chain)

logger = logging.getLogger(__name__)

# Constants
BLOCK_SIZE = 512
PRODOS_VOLUME_BLOCKS = (2, 1)
PRODOS_DEFAULT_ENTRY_LENGTH = 0x27
PRODOS_DEFAULT_ENTRIES_PER_BLOCK = 0x0D
PRODOS_DIR_HEADER = 0x4   # prev/next block pointers precede the entries

STORAGE_SEEDLING = 0x1
STORAGE_SAPLING = 0x2
STORAGE_TREE = 0x3
STORAGE_EXTENDED = 0x5
STORAGE_SUBDIRECTORY = 0xD
STORAGE_SUBDIR_HEADER = 0xE
STORAGE_VOLUME_HEADER = 0xF

DOS33_VTOC_TRACK = 17
DOS33_ENTRIES_PER_SECTOR = 7
DOS33_ENTRY_START = 0x0B
DOS33_ENTRY_LENGTH = 0x23
DOS33_TS_PAIRS = 122
DOS33_TS_START = 0x0C
DOS33_DELETED = 0xFF

DOS33_FILE_TYPES = {
    0x00: 'T',   # Text
    0x01: 'I',   # Integer BASIC
    0x02: 'A',   # Applesoft BASIC
    0x04: 'B',   # Binary
    0x08: 'S',   # Special
    0x10: 'R',   # Relocatable
    0x20: 'a',   # New A
    0x40: 'b',   # New B
}

# ProDOS types that may carry a picture
PRODOS_GRAPHICS_CANDIDATES = (0x04, 0x06, 0x08, 0xC0, 0xC1)


def classify_apple(data, load_address=None, file_type=None):
    """
    Guess whether a file holds an Apple II screen.

    Args:
        data (bytes): File contents.
        load_address (int): Load address or aux type, if known.
        file_type (int): ProDOS file type, if known.

    Returns:
        tuple: (is_image, image_type_hint)
    """
    if file_type == 0xC0:
        return True, "Packed SHR"
    if file_type == 0xC1:
        return True, "SHR"

    size = len(data)
    if 32760 <= size <= 32780:
        return True, "SHR"
    if 16380 <= size <= 16400:
        return True, "DHGR"
    if 8180 <= size <= 8200:
        return True, "HGR"
    if load_address in (0x2000, 0x4000) and size >= 8180:
        return True, "HGR"
    return False, None


# ============================================================================
# ProDOS
# ============================================================================

class ProDOSEntry(namedtuple('ProDOSEntry',
                             'name storage_type file_type key_pointer blocks_used eof aux_type')):
    __slots__ = ()

    @property
    def is_valid(self):
        return self.storage_type != 0 and bool(self.name)

    @property
    def is_directory(self):
        return self.storage_type == STORAGE_SUBDIRECTORY


class ProDOSFileSystem(DiskFileSystem):
    """
    ProDOS block filesystem.

    Directories are chains of 512-byte blocks; files are seedling, sapling
    or tree structured, or extended (forked) files whose data fork is read.
    """
    format_label = "ProDOS"
    short_name = 'prodos'

    def __init__(self, image, filename=None):
        super().__init__(image, filename)
        self.total_blocks = image.size // BLOCK_SIZE
        self.volume_block = self.find_volume_block(image)
        key = image.read_block(self.volume_block, BLOCK_SIZE)
        name_len = key[4] & 0x0F
        self.volume_name = key[5:5 + name_len].decode('latin-1')
        self._visited = set()

    @staticmethod
    def find_volume_block(image):
        for block in PRODOS_VOLUME_BLOCKS:
            data = image.read_block(block, BLOCK_SIZE)
            if data is None:
                continue
            if data[4] >> 4 == STORAGE_VOLUME_HEADER and 1 <= (data[4] & 0x0F) <= 15:
                return block
        return None

    @classmethod
    def can_read(cls, image):
        if image.size < 3 * BLOCK_SIZE:
            return False
        return cls.find_volume_block(image) is not None

    def disk_name(self):
        return self.volume_name or self.base_name or self.format_label

    def _entry_layout(self, key_block):
        entry_length = key_block[0x23]
        per_block = key_block[0x24]
        if entry_length < PRODOS_DEFAULT_ENTRY_LENGTH or per_block == 0 or \
                PRODOS_DIR_HEADER + entry_length * per_block > BLOCK_SIZE:
            return PRODOS_DEFAULT_ENTRY_LENGTH, PRODOS_DEFAULT_ENTRIES_PER_BLOCK
        return entry_length, per_block

    def _directory_blocks(self, key):
        def next_block(block):
            self._visited.add(block)
            data = self.image.read_block(block, BLOCK_SIZE)
            if data is None:
                return None
            following = data[2] | (data[3] << 8)
            if following == 0 or following in self._visited:
                return None
            return following

        for block in follow_chain(key, next_block, self.total_blocks):
            data = self.image.read_block(block, BLOCK_SIZE)
            if data is None:
                logger.debug("ProDOS: directory block %d outside the image", block)
                return
            yield block, data

    def read_directory_entries(self, key):
        """
        Read the raw entries of the directory whose key block is `key`.

        Returns:
            list: ProDOSEntry for every used slot (subdirectories included).
        """
        if key in self._visited:
            logger.debug("ProDOS: directory block %d already read", key)
            return []
        key_data = self.image.read_block(key, BLOCK_SIZE)
        if key_data is None:
            return []
        entry_length, per_block = self._entry_layout(key_data)

        entries = []
        for block, data in self._directory_blocks(key):
            for slot in range(per_block):
                if block == key and slot == 0:
                    continue   # directory header
                offset = PRODOS_DIR_HEADER + slot * entry_length
                raw = data[offset:offset + entry_length]
                if len(raw) < PRODOS_DEFAULT_ENTRY_LENGTH:
                    break
                storage_type = raw[0] >> 4
                if storage_type == 0:
                    continue
                name_len = raw[0] & 0x0F
                entries.append(ProDOSEntry(
                    name=raw[1:1 + name_len].decode('latin-1'),
                    storage_type=storage_type,
                    file_type=raw[0x10],
                    key_pointer=raw[0x11] | (raw[0x12] << 8),
                    blocks_used=raw[0x13] | (raw[0x14] << 8),
                    eof=raw[0x15] | (raw[0x16] << 8) | (raw[0x17] << 16),
                    aux_type=raw[0x1F] | (raw[0x20] << 8)))
        return entries

    def read_directory(self):
        self._visited = set()
        return self.read_directory_entries(self.volume_block)

    def _index_pointers(self, index_block):
        """Yield the 256 block pointers of an index block (None if unreadable)."""
        if index_block == 0:
            yield from [0] * 256
            return
        data = self.image.read_block(index_block, BLOCK_SIZE)
        if data is None:
            yield None
            return
        for i in range(256):
            yield data[i] | (data[256 + i] << 8)

    def _block_pointers(self, storage_type, key):
        if storage_type == STORAGE_SEEDLING:
            yield key
        elif storage_type == STORAGE_SAPLING:
            yield from self._index_pointers(key)
        elif storage_type == STORAGE_TREE:
            master = self.image.read_block(key, BLOCK_SIZE)
            if master is None:
                yield None
                return
            for i in range(128):
                yield from self._index_pointers(master[i] | (master[256 + i] << 8))
        else:
            yield None

    def _read_fork(self, storage_type, key, eof):
        needed = (eof + BLOCK_SIZE - 1) // BLOCK_SIZE
        blocks = []
        for pointer in self._block_pointers(storage_type, key):
            if len(blocks) >= needed:
                break
            if pointer is None:
                return None
            if pointer == 0:
                blocks.append(bytes(BLOCK_SIZE))   # sparse
                continue
            data = self.image.read_block(pointer, BLOCK_SIZE)
            if data is None:
                logger.debug("ProDOS: block %d outside the image", pointer)
                return None
            blocks.append(data)
        return b''.join(blocks)[:eof]

    def extract_file(self, entry):
        if entry.storage_type == STORAGE_EXTENDED:
            ext = self.image.read_block(entry.key_pointer, BLOCK_SIZE)
            if ext is None:
                return None
            # Data fork mini-entry
            storage_type = ext[0] & 0x0F
            key = ext[1] | (ext[2] << 8)
            eof = ext[5] | (ext[6] << 8) | (ext[7] << 16)
            return self._read_fork(storage_type, key, eof)

        if entry.storage_type not in (STORAGE_SEEDLING, STORAGE_SAPLING, STORAGE_TREE):
            logger.debug("ProDOS: %r has unsupported storage type %X", entry.name, entry.storage_type)
            return None
        return self._read_fork(entry.storage_type, entry.key_pointer, entry.eof)

    def make_entry(self, entry, data, path=None):
        info = prodos_type_info(entry.file_type, entry.aux_type)
        is_image, hint = False, None
        if entry.file_type in PRODOS_GRAPHICS_CANDIDATES or info.is_graphics:
            is_image, hint = classify_apple(data, entry.aux_type, entry.file_type)
        return file_entry(
            entry.name, data,
            path=path,
            file_type=entry.file_type,
            file_type_label=info.short_name,
            blocks_used=entry.blocks_used,
            load_address=entry.aux_type,
            length=entry.eof,
            is_image=is_image,
            image_type_hint=hint)

    def list_directory(self, key, path):
        """Directory listing in the form `assemble_tree` expects."""
        items = []
        for entry in self.read_directory_entries(key):
            if not entry.is_valid:
                continue
            entry_path = join_path(path, entry.name)
            if entry.is_directory:
                items.append(PendingDirectory(entry.name, entry.key_pointer, {
                    'path': entry_path,
                    'file_type': 0x0F,
                    'blocks_used': entry.blocks_used,
                }))
                continue
            data = self.extract_file(entry)
            if data is None:
                logger.debug("ProDOS: skipping unreadable file %r", entry_path)
                continue
            items.append(self.make_entry(entry, data, entry_path))
        return items

    def read_catalog(self):
        self._visited = set()
        entries = assemble_tree(self.volume_block, self.list_directory)
        return DiskCatalog(self.disk_name(), self.format_label, self.image.size, entries)


# ============================================================================
# DOS 3.3
# ============================================================================

class DOS33Entry(namedtuple('DOS33Entry', 'name file_type locked ts_track ts_sector sectors_used')):
    __slots__ = ()

    @property
    def is_valid(self):
        return self.ts_track not in (0, DOS33_DELETED) and bool(self.name)

    @property
    def type_label(self):
        return DOS33_FILE_TYPES.get(self.file_type, f"${self.file_type:02X}")


class DOS33FileSystem(DiskFileSystem):
    """
    Apple DOS 3.3 filesystem on a 140K DOS-ordered image.

    The VTOC (track 17, sector 0) points at a chain of catalog sectors; each
    file's sectors are listed in a chain of track/sector list sectors.
    """
    format_label = "DOS 3.3"
    short_name = 'dos33'

    def __init__(self, image, filename=None):
        super().__init__(image, filename)
        self.total_sectors = image.size // 256
        self.vtoc = self.sector(DOS33_VTOC_TRACK, 0)

    @classmethod
    def can_read(cls, image):
        if image.size != APPLE_525_SIZE:
            return False
        return image.byte(DOS33_VTOC_TRACK * APPLE_SECTORS_PER_TRACK * 256 + 1) == DOS33_VTOC_TRACK

    def sector(self, track, sector):
        return self.image.read_sector(track, sector, APPLE_SECTORS_PER_TRACK)

    def _sector_chain(self, start):
        """Yield the sectors of a chain linked through bytes 1-2."""
        seen = set()

        def next_sector(location):
            seen.add(location)
            data = self.sector(*location)
            if data is None:
                return None
            following = (data[1], data[2])
            if following[0] == 0 or following in seen:
                return None
            return following

        for location in follow_chain(start, next_sector, self.total_sectors):
            data = self.sector(*location)
            if data is None:
                logger.debug("DOS 3.3: sector T%d S%d outside the image", *location)
                return
            yield data

    def read_directory(self):
        entries = []
        for data in self._sector_chain((self.vtoc[1], self.vtoc[2])):
            for i in range(DOS33_ENTRIES_PER_SECTOR):
                raw = data[DOS33_ENTRY_START + i * DOS33_ENTRY_LENGTH:
                           DOS33_ENTRY_START + (i + 1) * DOS33_ENTRY_LENGTH]
                if raw[0] == 0:
                    continue
                name = bytes(c & 0x7F for c in raw[3:33]).decode('latin-1').rstrip(' \x00')
                entries.append(DOS33Entry(
                    name=name,
                    file_type=raw[2] & 0x7F,
                    locked=(raw[2] & 0x80) != 0,
                    ts_track=raw[0],
                    ts_sector=raw[1],
                    sectors_used=raw[0x21] | (raw[0x22] << 8)))
        return entries

    def extract_file(self, entry):
        if self.sector(entry.ts_track, entry.ts_sector) is None:
            logger.debug("DOS 3.3: track/sector list of %r outside the image", entry.name)
            return None
        sectors = []
        for ts_list in self._sector_chain((entry.ts_track, entry.ts_sector)):
            for i in range(DOS33_TS_PAIRS):
                track = ts_list[DOS33_TS_START + i * 2]
                sector = ts_list[DOS33_TS_START + i * 2 + 1]
                if track == 0:
                    return self._trim(entry, b''.join(sectors))
                data = self.sector(track, sector)
                if data is None:
                    logger.debug("DOS 3.3: %r points outside the image", entry.name)
                    return None
                sectors.append(data)
        return self._trim(entry, b''.join(sectors))

    @staticmethod
    def header_length(entry, data):
        """Declared length from the file header, or None."""
        if entry.type_label == 'B' and len(data) >= 4:
            return data[2] | (data[3] << 8)
        if entry.type_label in ('A', 'I') and len(data) >= 2:
            return data[0] | (data[1] << 8)
        return None

    def _trim(self, entry, data):
        length = self.header_length(entry, data)
        if length is None:
            return data
        total = length + (4 if entry.type_label == 'B' else 2)
        return data[:total] if total <= len(data) else data

    def make_entry(self, entry, data):
        load_address = None
        if entry.type_label == 'B' and len(data) >= 4:
            load_address = data[0] | (data[1] << 8)

        is_image, hint = False, None
        if entry.type_label == 'B':
            is_image, hint = classify_apple(data, load_address)

        return file_entry(
            entry.name, data,
            file_type=entry.file_type,
            file_type_label=entry.type_label,
            blocks_used=entry.sectors_used,
            load_address=load_address,
            length=self.header_length(entry, data),
            is_image=is_image,
            image_type_hint=hint)
