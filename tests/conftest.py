"""
Pytest configuration for the retrodisk test suite.

Disk images are built in memory by `diskbuilders`; the fixtures below
hand out a few ready-made ones.
"""

import pytest

from diskbuilders import (DOS33Image, FATImage, ProDOSImage, RSDOSImage, applesoft_file,
                          binary_file, dfs_image, fill, trdos_image)


@pytest.fixture
def prodos_disk():
    disk = ProDOSImage(volume="GAMES")
    disk.add_file("README", fill(700, 1), file_type=0x04)
    sub = disk.add_directory("PICS")
    disk.add_file("TITLE", bytes(8192), file_type=0x08, aux_type=0x2000, directory=sub)
    return disk.build()


@pytest.fixture
def dos33_disk():
    disk = DOS33Image()
    disk.add_file("HELLO", applesoft_file(fill(300, 2)), type_code=0x02)
    disk.add_file("PICTURE", binary_file(0x2000, bytes(8192)), type_code=0x04)
    return disk.build()


@pytest.fixture
def dfs_disk():
    return dfs_image([
        ("!BOOT", b'CHAIN"GAME"\r', 0, 0),
        ("G.GAME", fill(1000, 3), 0x1900, 0x1900),
    ])


@pytest.fixture
def rsdos_disk():
    disk = RSDOSImage()
    disk.add_file("HELLO", "BAS", fill(612, 4), file_type=0)
    return disk.build()


@pytest.fixture
def fat_disk():
    disk = FATImage(label="MSXDISK")
    disk.add_file("README", "TXT", fill(1500, 5))
    return disk.build()


@pytest.fixture
def trdos_disk():
    return trdos_image([("boot", 'B', fill(300, 6), 0)])
