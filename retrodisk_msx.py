#!/usr/bin/env python3
"""
MSX-DOS FAT12 Filesystem.

Reader for 360K and 720K MSX disk images, which use the MS-DOS FAT12
layout: a boot sector with a BIOS parameter block, one or two FAT copies,
a fixed-size root directory and the cluster data area.

Classes:
    BiosParameterBlock: The disk layout from the boot sector.
    FATFileSystem: FAT12 reader (hierarchical).

Functions:
    classify_msx(name, data): Guess the screen mode of a file.
"""

import logging
import struct
from collections import namedtuple

from retrodisk_catalog import (DiskCatalog, PendingDirectory, assemble_tree, file_entry,
                               join_path)
from retrodisk_image import DiskFileSystem, follow_chain

logger = logging.getLogger(__name__)

# Constants
MSX_SIZES = (368640, 737280)
BPB_FORMAT = struct.Struct('<HBHBHHBHHHI')
DIRENT_FORMAT = struct.Struct('<8s3sB10sHHHI')
DIRENT_SIZE = 32
ROOT = 0

ATTR_READ_ONLY = 0x01
ATTR_HIDDEN = 0x02
ATTR_SYSTEM = 0x04
ATTR_VOLUME = 0x08
ATTR_DIRECTORY = 0x10
ATTR_LFN = 0x0F

END_OF_CHAIN = 0xFF8
BSAVE_MAGIC = 0xFE

FILE_TYPES = {
    'SC2': "MSX Screen 2", 'GRP': "MSX Screen 2",
    'SC5': "MSX Screen 5",
    'SC7': "MSX Screen 7",
    'SC8': "MSX Screen 8",
    'SCC': "MSX Screen C",
    'SR5': "MSX Screen 5 (SR)",
    'SR7': "MSX Screen 7 (SR)",
    'SR8': "MSX Screen 8 (SR)",
    'PIC': "MSX Picture",
    'GL': "MSX GL",
    'GE5': "MSX Graph Saurus", 'GE7': "MSX Graph Saurus", 'GE8': "MSX Graph Saurus",
    'BAS': "BASIC Program",
    'BIN': "Binary",
    'COM': "Executable",
    'DAT': "Data",
    'TXT': "Text",
}

# Extension -> (screen mode, minimum raw size)
SCREEN_EXTENSIONS = {
    'SC2': (2, 16384), 'GRP': (2, 16384),
    'SC5': (5, 27000),
    'SC7': (7, 54000),
    'SC8': (8, 54000),
}

# Extensions that always hold a screen of the given mode
SCREEN_ONLY_EXTENSIONS = {
    'SR5': 5, 'GE5': 5,
    'SR7': 7, 'GE7': 7,
    'SR8': 8, 'GE8': 8,
}


class BiosParameterBlock(namedtuple('BiosParameterBlock', [
        'bytes_per_sector', 'sectors_per_cluster', 'reserved_sectors', 'fat_count',
        'root_entries', 'total_sectors', 'media', 'sectors_per_fat',
        'sectors_per_track', 'heads', 'hidden_sectors'])):
    __slots__ = ()

    @classmethod
    def parse(cls, boot):
        fields = list(BPB_FORMAT.unpack_from(boot, 11))
        if fields[5] == 0:
            fields[5] = struct.unpack_from('<I', boot, 32)[0]
        return cls(*fields)

    @property
    def fat_offset(self):
        return self.reserved_sectors * self.bytes_per_sector

    @property
    def root_offset(self):
        return (self.reserved_sectors + self.fat_count * self.sectors_per_fat) * self.bytes_per_sector

    @property
    def root_sectors(self):
        return (self.root_entries * DIRENT_SIZE + self.bytes_per_sector - 1) // self.bytes_per_sector

    @property
    def data_offset(self):
        return self.root_offset + self.root_sectors * self.bytes_per_sector

    @property
    def cluster_size(self):
        return self.sectors_per_cluster * self.bytes_per_sector

    @property
    def cluster_count(self):
        data_sectors = self.total_sectors - self.data_offset // self.bytes_per_sector
        return max(data_sectors // self.sectors_per_cluster, 0)


class FATEntry(namedtuple('FATEntry', 'name extension attributes first_cluster file_size')):
    __slots__ = ()

    @property
    def is_directory(self):
        return (self.attributes & ATTR_DIRECTORY) != 0

    @property
    def is_valid(self):
        return bool(self.name) and self.name not in ('.', '..')

    @property
    def full_name(self):
        if self.extension:
            return f"{self.name}.{self.extension}"
        return self.name


def decode_fat12(fat, count):
    """Unpack `count` 12-bit entries from a raw FAT."""
    entries = []
    for i in range(count):
        offset = i * 3 // 2
        if offset + 1 >= len(fat):
            break
        if i % 2 == 0:
            entries.append(fat[offset] | ((fat[offset + 1] & 0x0F) << 8))
        else:
            entries.append((fat[offset] >> 4) | (fat[offset + 1] << 4))
    return entries


def bsave_header(data):
    """
    Parse an MSX BASIC BSAVE header.

    Returns:
        tuple: (start, end, execute) addresses, or None.
    """
    if len(data) < 7 or data[0] != BSAVE_MAGIC:
        return None
    return struct.unpack_from('<HHH', data, 1)


def classify_msx(name, data):
    """
    Guess whether a file is an MSX screen.

    Returns:
        tuple: (is_image, image_type_hint)
    """
    ext = name.rsplit('.', 1)[1].upper() if '.' in name else ''
    header = bsave_header(data)

    if ext in SCREEN_EXTENSIONS:
        mode, minimum = SCREEN_EXTENSIONS[ext]
        if header or len(data) >= minimum:
            return True, f"MSX SCREEN {mode}"
    elif ext in SCREEN_ONLY_EXTENSIONS:
        return True, f"MSX SCREEN {SCREEN_ONLY_EXTENSIONS[ext]}"

    if header:
        start, end, _ = header
        size = end - start + 1
        if 14000 <= size <= 17000 and start == 0:
            return True, "MSX SCREEN 2"
        if 27000 <= size <= 28000:
            return True, "MSX SCREEN 5"
        if 54000 <= size <= 55000:
            return True, "MSX SCREEN 8"
    return False, None


def file_type_label(name, data):
    ext = name.rsplit('.', 1)[1].upper() if '.' in name else ''
    if ext in FILE_TYPES:
        return FILE_TYPES[ext]
    if bsave_header(data):
        return "MSX BSAVE"
    return ext or "Unknown"


class FATFileSystem(DiskFileSystem):
    """
    MSX-DOS FAT12 reader.

    Attributes:
        bpb (BiosParameterBlock): Layout of the disk.
        fat (list): Decoded cluster table.
        volume_label (str): Volume label from the root directory, if any.
    """
    format_label = "MSX-DOS FAT12"
    short_name = 'fat12'

    def __init__(self, image, filename=None):
        super().__init__(image, filename)
        self.bpb = BiosParameterBlock.parse(image.read(0, 512))
        raw_fat = image.read(self.bpb.fat_offset, self.bpb.sectors_per_fat * self.bpb.bytes_per_sector) or b''
        self.fat = decode_fat12(raw_fat, min(len(raw_fat) * 2 // 3, self.bpb.cluster_count + 2))
        self.volume_label = None

    @classmethod
    def can_read(cls, image):
        if image.size not in MSX_SIZES:
            return False
        bpb = BiosParameterBlock.parse(image.read(0, 512))
        if bpb.bytes_per_sector != 512:
            return False
        if not 1 <= bpb.sectors_per_cluster <= 8 or not 1 <= bpb.fat_count <= 2:
            return False
        if not 1 <= bpb.root_entries <= 512:
            return False
        if bpb.total_sectors == 0 or bpb.sectors_per_fat == 0:
            return False
        if not 0xF8 <= bpb.media <= 0xFF:
            return False
        return image.read(bpb.fat_offset, 3) == bytes((bpb.media, 0xFF, 0xFF))

    def disk_name(self):
        return self.volume_label or self.base_name or self.format_label

    def _next_cluster(self, cluster):
        if cluster >= len(self.fat):
            return None
        following = self.fat[cluster]
        if following < 2 or following >= END_OF_CHAIN:
            return None
        return following

    def clusters(self, first):
        """Yield the cluster chain starting at `first`."""
        if first < 2 or first >= END_OF_CHAIN:
            return iter(())
        return follow_chain(first, self._next_cluster, max(len(self.fat) - 2, 1))

    def cluster_data(self, cluster):
        offset = self.bpb.data_offset + (cluster - 2) * self.bpb.cluster_size
        return self.image.read(offset, self.bpb.cluster_size)

    def _directory_data(self, location):
        if location == ROOT:
            return self.image.read(self.bpb.root_offset, self.bpb.root_entries * DIRENT_SIZE) or b''
        chunks = []
        for cluster in self.clusters(location):
            data = self.cluster_data(cluster)
            if data is None:
                logger.debug("FAT12: directory cluster %d outside the image", cluster)
                break
            chunks.append(data)
        return b''.join(chunks)

    def read_directory_entries(self, location):
        """
        Parse the directory stored at `location` (ROOT or a first cluster).

        Returns:
            list: FATEntry for every live record, "." and ".." included.
        """
        data = self._directory_data(location)
        entries = []
        for offset in range(0, len(data) - DIRENT_SIZE + 1, DIRENT_SIZE):
            name, ext, attributes, _, _, _, first_cluster, file_size = \
                DIRENT_FORMAT.unpack_from(data, offset)
            if name[0] == 0x00:
                break
            if name[0] == 0xE5:
                continue
            if attributes == ATTR_LFN:
                continue
            if name[0] == 0x05:
                name = b'\xe5' + name[1:]

            name = name.decode('latin-1').rstrip(' ')
            ext = ext.decode('latin-1').rstrip(' ')
            if attributes & ATTR_VOLUME:
                if location == ROOT and self.volume_label is None:
                    self.volume_label = (name + ext).strip()
                continue
            entries.append(FATEntry(name, ext, attributes, first_cluster, file_size))
        return entries

    def read_directory(self):
        return self.read_directory_entries(ROOT)

    def extract_file(self, entry):
        if entry.file_size == 0:
            return b''
        data = bytearray()
        for cluster in self.clusters(entry.first_cluster):
            chunk = self.cluster_data(cluster)
            if chunk is None:
                logger.debug("FAT12: cluster %d of %r outside the image", cluster, entry.full_name)
                return None
            data += chunk[:entry.file_size - len(data)]
            if len(data) >= entry.file_size:
                break
        if len(data) < entry.file_size:
            logger.debug("FAT12: chain of %r ends after %d of %d bytes",
                         entry.full_name, len(data), entry.file_size)
        return bytes(data)

    def make_entry(self, entry, data, path=None):
        name = entry.full_name
        is_image, hint = classify_msx(name, data)
        header = bsave_header(data)
        return file_entry(
            name, data,
            path=path,
            file_type=entry.attributes,
            file_type_label=file_type_label(name, data),
            blocks_used=(len(data) + self.bpb.cluster_size - 1) // self.bpb.cluster_size,
            load_address=header[0] if header else None,
            length=entry.file_size,
            is_image=is_image,
            image_type_hint=hint)

    def list_directory(self, location, path):
        """Directory listing in the form `assemble_tree` expects."""
        items = []
        for entry in self.read_directory_entries(location):
            if not entry.is_valid:
                continue
            entry_path = join_path(path, entry.full_name)
            if entry.is_directory:
                items.append(PendingDirectory(entry.full_name, entry.first_cluster, {
                    'path': entry_path,
                    'file_type': entry.attributes,
                }))
                continue
            data = self.extract_file(entry)
            if data is None:
                continue
            items.append(self.make_entry(entry, data, entry_path))
        return items

    def read_catalog(self):
        self.volume_label = None
        entries = assemble_tree(ROOT, self.list_directory)
        return DiskCatalog(self.disk_name(), self.format_label, self.image.size, entries)
