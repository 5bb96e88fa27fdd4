#!/usr/bin/env python3
"""
Disk Catalog Model.

Filesystem-agnostic records produced by the readers, the bottom-up tree
builder used by hierarchical filesystems, and the ProDOS file type table.

Classes:
    CatalogEntry: One file or directory of a catalog.
    DiskCatalog: The catalog of one disk image.
    PendingDirectory: A subdirectory reference waiting to be expanded.
    FileTypeInfo: Description of a ProDOS file type.

Functions:
    file_entry(name, data, **fields): Build a file CatalogEntry.
    assemble_tree(root, read_directory, max_depth): Walk a directory tree.
    prodos_type_info(file_type, aux_type): Look up a ProDOS file type.
"""

import logging
from collections import namedtuple

logger = logging.getLogger(__name__)

MAX_DIRECTORY_DEPTH = 32


class CatalogEntry(namedtuple('CatalogEntry', [
        'name', 'path', 'file_type', 'file_type_label', 'size', 'blocks_used',
        'load_address', 'length', 'data', 'is_image', 'image_type_hint',
        'is_directory', 'children'],
        defaults=(None, None, None, 0, None, None, None, b'', False, None, False, ()))):
    """
    One file or directory.

    Attributes:
        name (str): Name within its directory.
        path (str): Slash-joined path from the volume root.
        file_type (int): Native numeric type (ProDOS type, DOS 3.3 type byte, ...).
        file_type_label (str): Short human-readable type.
        size (int): Size in bytes (sum of children for directories).
        blocks_used (int): Allocation units used, where the filesystem records it.
        load_address (int): Load address, where known.
        length (int): Declared length from the directory or file header.
        data (bytes): Raw file content.
        is_image (bool): True if the file looks like a known graphics payload.
        image_type_hint (str): Which decoder the payload looks suited for.
        is_directory (bool): True for directories.
        children (tuple): Child entries of a directory.
    """
    __slots__ = ()

    @property
    def size_string(self):
        if self.size < 1024:
            return f"{self.size} B"
        elif self.size < 1024 * 1024:
            return f"{self.size / 1024.0:.1f} KB"
        return f"{self.size / (1024.0 * 1024.0):.1f} MB"


class DiskCatalog(namedtuple('DiskCatalog', 'disk_name disk_format disk_size entries')):
    """The catalog of one disk image."""
    __slots__ = ()

    @property
    def total_files(self):
        return sum(1 for entry in self.all_entries() if not entry.is_directory)

    @property
    def image_files(self):
        return sum(1 for entry in self.all_entries() if entry.is_image)

    def walk(self):
        """Yield (entry, depth) pairs in pre-order (a directory before its children)."""
        stack = [(entry, 0) for entry in reversed(self.entries)]
        while stack:
            entry, depth = stack.pop()
            yield entry, depth
            stack.extend((child, depth + 1) for child in reversed(entry.children))

    def all_entries(self):
        """Return every entry in pre-order."""
        return [entry for entry, _ in self.walk()]

    def find(self, path):
        """Return the entry at `path`, or None."""
        for entry in self.all_entries():
            if entry.path == path:
                return entry
        return None


def file_entry(name, data, path=None, **fields):
    """
    Build a file CatalogEntry.

    `size` defaults to the length of `data` and `path` to `name`.
    """
    fields.setdefault('size', len(data))
    return CatalogEntry(name=name, path=path or name, data=bytes(data), **fields)


def join_path(parent, name):
    return f"{parent}/{name}" if parent else name


# A subdirectory found while reading a directory. `location` identifies the
# directory's storage (key block, first cluster) and `fields` holds extra
# CatalogEntry fields for the directory entry itself.
PendingDirectory = namedtuple('PendingDirectory', 'name location fields')


def assemble_tree(root, read_directory, max_depth=MAX_DIRECTORY_DEPTH):
    """
    Read a hierarchical directory structure into CatalogEntry trees.

    Directories are read with an explicit stack rather than recursion. A
    directory location is expanded at most once, so cyclic structures from
    damaged images terminate; directories beyond `max_depth` are listed
    without children.

    Args:
        root: Location of the root directory.
        read_directory (callable): `read_directory(location, path)` returns a list of
            CatalogEntry (files) and PendingDirectory (subdirectories).
        max_depth (int): Maximum nesting depth to expand.

    Returns:
        tuple: The CatalogEntry items of the root directory.
    """
    listings = {}
    paths = {}
    order = []
    expanded = {}       # id(PendingDirectory) -> location it owns
    seen = {root}
    stack = [(root, '', 0)]

    while stack:
        location, path, depth = stack.pop()
        items = read_directory(location, path)
        listings[location] = items
        paths[location] = path
        order.append(location)

        for item in items:
            if not isinstance(item, PendingDirectory):
                continue
            if item.location in seen:
                logger.debug("Directory %r at %r already read, not descending", item.name, item.location)
                continue
            if depth + 1 > max_depth:
                logger.warning("Directory %r nested deeper than %d levels, not descending", item.name, max_depth)
                continue
            seen.add(item.location)
            expanded[id(item)] = item.location
            stack.append((item.location, join_path(path, item.name), depth + 1))

    # Children are always read after their parent, so walking the read order
    # backwards builds every child before the directory that holds it.
    built = {}
    for location in reversed(order):
        entries = []
        for item in listings[location]:
            if isinstance(item, PendingDirectory):
                children = built.get(expanded.get(id(item)), ())
                fields = dict(item.fields)
                fields.setdefault('path', join_path(paths[location], item.name))
                fields.setdefault('file_type_label', "DIR")
                entries.append(CatalogEntry(
                    name=item.name,
                    size=sum(child.size for child in children),
                    is_directory=True,
                    children=children,
                    **fields))
            else:
                entries.append(item)
        built[location] = tuple(entries)

    return built[root]


# ============================================================================
# ProDOS file types
# ============================================================================

FileTypeInfo = namedtuple('FileTypeInfo', 'short_name description category is_graphics')

PRODOS_FILE_TYPES = {
    0x00: FileTypeInfo("NON", "Unknown", "General", False),
    0x01: FileTypeInfo("BAD", "Bad Blocks", "System", False),
    0x02: FileTypeInfo("PCD", "Pascal Code (SOS)", "Code", False),
    0x03: FileTypeInfo("PTX", "Pascal Text (SOS)", "Text", False),
    0x04: FileTypeInfo("TXT", "Text File", "Text", False),
    0x05: FileTypeInfo("PDA", "Pascal Data (SOS)", "Data", False),
    0x06: FileTypeInfo("BIN", "Binary", "Code", False),
    0x07: FileTypeInfo("FNT", "Apple III Font", "Font", False),
    0x08: FileTypeInfo("FOT", "Apple II Graphics", "Graphics", True),
    0x09: FileTypeInfo("BA3", "Apple III BASIC Program", "Code", False),
    0x0A: FileTypeInfo("DA3", "Apple III BASIC Data", "Data", False),
    0x0B: FileTypeInfo("WPF", "Word Processor", "Document", False),
    0x0C: FileTypeInfo("SOS", "SOS System File", "System", False),
    0x0F: FileTypeInfo("DIR", "Folder", "System", False),
    0x19: FileTypeInfo("ADB", "AppleWorks Database", "Productivity", False),
    0x1A: FileTypeInfo("AWP", "AppleWorks Word Processor", "Productivity", False),
    0x1B: FileTypeInfo("ASP", "AppleWorks Spreadsheet", "Productivity", False),
    0x2A: FileTypeInfo("8SC", "Apple II Source Code", "Code", False),
    0x2B: FileTypeInfo("8OB", "Apple II Object Code", "Code", False),
    0x50: FileTypeInfo("GWP", "GS Word Processing", "Productivity", False),
    0x51: FileTypeInfo("GSS", "GS Spreadsheet", "Productivity", False),
    0x52: FileTypeInfo("GDB", "GS Database", "Productivity", False),
    0x53: FileTypeInfo("DRW", "Drawing", "Graphics", True),
    0xB3: FileTypeInfo("S16", "GS/OS Application", "System", False),
    0xBF: FileTypeInfo("DOC", "GS/OS Document", "Document", False),
    0xC0: FileTypeInfo("PNT", "Packed Super Hi-Res", "Graphics", True),
    0xC1: FileTypeInfo("PIC", "Super Hi-Res Picture", "Graphics", True),
    0xC2: FileTypeInfo("ANI", "Paintworks Animation", "Graphics", True),
    0xC3: FileTypeInfo("PAL", "Paintworks Palette", "Graphics", False),
    0xC5: FileTypeInfo("OOG", "Object Graphics", "Graphics", True),
    0xC8: FileTypeInfo("FON", "Font", "Font", False),
    0xCA: FileTypeInfo("ICN", "Icons", "Graphics", False),
    0xD5: FileTypeInfo("MUS", "Music Sequence", "Multimedia", False),
    0xD8: FileTypeInfo("SND", "Sampled Sound", "Multimedia", False),
    0xE0: FileTypeInfo("LBR", "Archival Library", "Archive", False),
    0xEF: FileTypeInfo("PAS", "Pascal Area", "System", False),
    0xF0: FileTypeInfo("CMD", "BASIC Command", "Code", False),
    0xFA: FileTypeInfo("INT", "Integer BASIC Program", "Code", False),
    0xFB: FileTypeInfo("IVR", "Integer BASIC Variables", "Data", False),
    0xFC: FileTypeInfo("BAS", "Applesoft BASIC Program", "Code", False),
    0xFD: FileTypeInfo("VAR", "Applesoft BASIC Variables", "Data", False),
    0xFE: FileTypeInfo("REL", "Relocatable Code", "Code", False),
    0xFF: FileTypeInfo("SYS", "ProDOS 8 Application", "System", False),
}

# (file type, aux type) refinements
PRODOS_AUX_TYPES = {
    (0x08, 0x2000): FileTypeInfo("HGR", "Hi-Res Graphics", "Graphics", True),
    (0x08, 0x4000): FileTypeInfo("HGR", "Packed Hi-Res", "Graphics", True),
    (0x08, 0x4001): FileTypeInfo("DHGR", "Packed Double Hi-Res", "Graphics", True),
    (0x08, 0x8001): FileTypeInfo("HGR", "Printographer Packed HGR", "Graphics", True),
    (0x08, 0x8002): FileTypeInfo("DHGR", "Printographer Packed DHGR", "Graphics", True),
    (0x08, 0x8003): FileTypeInfo("HGR", "Softdisk Hi-Res", "Graphics", True),
    (0x08, 0x8004): FileTypeInfo("DHGR", "Softdisk Double Hi-Res", "Graphics", True),
    (0xC0, 0x0000): FileTypeInfo("PNT", "Paintworks Packed", "Graphics", True),
    (0xC0, 0x0001): FileTypeInfo("SHR", "Packed Super Hi-Res", "Graphics", True),
    (0xC0, 0x0002): FileTypeInfo("PIC", "Apple Preferred Format", "Graphics", True),
    (0xC0, 0x0003): FileTypeInfo("PICT", "Packed QuickDraw II PICT", "Graphics", True),
    (0xC0, 0x8005): FileTypeInfo("DGX", "DreamGrafix", "Graphics", True),
    (0xC0, 0x8006): FileTypeInfo("GIF", "GIF Image", "Graphics", True),
    (0xC1, 0x0000): FileTypeInfo("SHR", "Super Hi-Res Screen", "Graphics", True),
    (0xC1, 0x0001): FileTypeInfo("PICT", "QuickDraw PICT", "Graphics", True),
    (0xC1, 0x0002): FileTypeInfo("SHR", "SHR 3200 Color", "Graphics", True),
    (0xC1, 0x8003): FileTypeInfo("DGX", "DreamGrafix", "Graphics", True),
    (0xE0, 0x8002): FileTypeInfo("SHK", "ShrinkIt (NuFX)", "Archive", False),
    (0xE0, 0x0005): FileTypeInfo("DC", "DiskCopy Image", "Archive", False),
    (0xE0, 0x8000): FileTypeInfo("BNY", "Binary II", "Archive", False),
}


def prodos_type_info(file_type, aux_type=None):
    """
    Describe a ProDOS file type, refined by its aux type where known.

    Returns:
        FileTypeInfo
    """
    if aux_type is not None:
        info = PRODOS_AUX_TYPES.get((file_type, aux_type))
        if info:
            return info
    info = PRODOS_FILE_TYPES.get(file_type)
    if info:
        return info
    if 0xF1 <= file_type <= 0xF8:
        return FileTypeInfo(f"US{file_type - 0xF0}", f"User #{file_type - 0xF0}", "User", False)
    return FileTypeInfo(f"${file_type:02X}", f"Type ${file_type:02X}", "Unknown", False)
