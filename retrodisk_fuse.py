#!/usr/bin/env python3
"""
Retro Disk FUSE Filesystem Implementation.

This module provides a read-only FUSE (Filesystem in Userspace) view of a
disk image catalog. Any image `retrodisk_driver.detect` recognises can be
mounted as a local directory, so standard tools (ls, cp, cat, ...) work on
its files. Subdirectories of ProDOS and FAT12 disks appear as directories.

Dependencies:
    - fusepy
    - retrodisk_driver
"""

import os
import sys
import stat
import errno
import time
import logging

# Configure FUSE library path for macOS with FUSE-T
if sys.platform == 'darwin' and not os.environ.get('FUSE_LIBRARY_PATH'):
    if os.path.exists('/usr/local/lib/libfuse-t.dylib'):
        os.environ['FUSE_LIBRARY_PATH'] = '/usr/local/lib/libfuse-t.dylib'

from fuse import FUSE, FuseOSError, Operations
from retrodisk_driver import detect, safe_name
from retrodisk_image import DiskImage

logger = logging.getLogger(__name__)


def unique_names(entries):
    """
    Map host names to the entries of one directory.

    Names are made safe for the host and duplicates get a ~N suffix.

    Returns:
        dict: name -> CatalogEntry, in catalog order.
    """
    names = {}
    for entry in entries:
        base = safe_name(entry.name)
        name = base
        n = 1
        while name in names:
            name = f"{base}~{n}"
            n += 1
        names[name] = entry
    return names


class CatalogFS(Operations):
    """
    FUSE Operations implementation over a DiskCatalog.

    The whole tree is indexed at mount time; every write operation fails
    with EROFS.
    """
    def __init__(self, catalog):
        self.catalog = catalog
        self.mount_time = time.time()
        self.nodes = {'/': None}     # path -> CatalogEntry (None for the root)
        self.listings = {}           # directory path -> [names]
        self._index('/', catalog.entries)
        logger.info("Mounted %s (%s, %d files)", catalog.disk_name, catalog.disk_format, catalog.total_files)

    def _index(self, root, entries):
        stack = [(root, entries)]
        while stack:
            directory, children = stack.pop()
            names = unique_names(children)
            self.listings[directory] = list(names)
            for name, entry in names.items():
                path = directory.rstrip('/') + '/' + name
                self.nodes[path] = entry
                if entry.is_directory:
                    stack.append((path, entry.children))

    def _lookup(self, path):
        if path not in self.nodes:
            raise FuseOSError(errno.ENOENT)
        return self.nodes[path]

    def getattr(self, path, fh=None):
        entry = self._lookup(path)
        times = dict(st_ctime=self.mount_time, st_mtime=self.mount_time, st_atime=self.mount_time)
        if entry is None or entry.is_directory:
            return dict(st_mode=(stat.S_IFDIR | 0o555), st_nlink=2, st_size=0, **times)
        return dict(st_mode=(stat.S_IFREG | 0o444), st_nlink=1, st_size=len(entry.data), **times)

    def readdir(self, path, fh):
        entry = self._lookup(path)
        if entry is not None and not entry.is_directory:
            raise FuseOSError(errno.ENOTDIR)
        return ['.', '..'] + self.listings[path]

    def open(self, path, flags):
        entry = self._lookup(path)
        if flags & (os.O_WRONLY | os.O_RDWR):
            raise FuseOSError(errno.EROFS)
        if entry is None or entry.is_directory:
            raise FuseOSError(errno.EISDIR)
        return 0

    def read(self, path, length, offset, fh):
        entry = self._lookup(path)
        if entry is None or entry.is_directory:
            raise FuseOSError(errno.EISDIR)
        return entry.data[offset:offset + length]

    def statfs(self, path):
        blocks = self.catalog.disk_size // 512
        return dict(f_bsize=512, f_frsize=512, f_blocks=blocks, f_bfree=0, f_bavail=0,
                    f_files=len(self.nodes), f_ffree=0, f_namemax=255)

    def access(self, path, mode):
        self._lookup(path)
        if mode & os.W_OK:
            raise FuseOSError(errno.EROFS)
        return 0

    def _read_only(self, *args):
        raise FuseOSError(errno.EROFS)

    create = write = truncate = unlink = mkdir = rmdir = rename = _read_only
    chmod = chown = utimens = symlink = link = _read_only


def main(argv=None):
    import argparse

    parser = argparse.ArgumentParser(
        prog=os.environ.get("RETRODISK_PROG_NAME"),
        description="Mount a retro computer disk image as a read-only FUSE filesystem.",
        epilog="Example: retrodisk-mount games.po ./mnt"
    )
    parser.add_argument("disk_image", help="Path to the disk image file")
    parser.add_argument("mountpoint", help="Directory to mount the filesystem")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--foreground", "-f", action="store_true", help="Run in foreground (default: False)")

    args = parser.parse_args(argv)

    level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(level=level, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    if not os.path.exists(args.mountpoint):
        print(f"Error: Mount point '{args.mountpoint}' does not exist.")
        sys.exit(1)

    if not os.path.exists(args.disk_image):
        print(f"Error: File '{args.disk_image}' not found.")
        sys.exit(1)

    catalog = detect(DiskImage.from_file(args.disk_image))
    if catalog is None:
        print(f"Error: '{args.disk_image}' is not a recognised disk image.")
        sys.exit(1)

    try:
        # foreground=True blocks, foreground=False daemonizes
        FUSE(CatalogFS(catalog), args.mountpoint, foreground=args.foreground, ro=True, nothreads=True)
    except RuntimeError as e:
        print(f"Failed to mount: {e}")
        print("Ensure FUSE-T or macFUSE is installed and libfuse is available.")
        sys.exit(1)


if __name__ == '__main__':
    main()
