"""Tests for the ZX Spectrum TR-DOS reader."""

import unittest

from diskbuilders import fill, trdos_image
from retrodisk_image import DiskImage
from retrodisk_trdos import TRDOSFileSystem


def read(data, filename=None):
    image = DiskImage(data, filename)
    assert TRDOSFileSystem.can_read(image)
    return TRDOSFileSystem(image).read_catalog()


class TestTRDOS(unittest.TestCase):

    def test_basic_program(self):
        catalog = read(trdos_image([("boot", 'B', fill(300, 6), 0)]))
        entry = catalog.entries[0]
        self.assertEqual(entry.name, "boot.B")
        self.assertEqual(entry.file_type_label, "BASIC")
        self.assertEqual(entry.data, fill(300, 6))
        self.assertEqual(entry.blocks_used, 2)
        self.assertIsNone(entry.load_address)
        self.assertEqual(catalog.disk_name, "TESTDISK")
        self.assertEqual(catalog.disk_format, "ZX Spectrum TR-DOS")

    def test_files_use_sixteen_sector_tracks(self):
        data = trdos_image([("first", 'C', fill(4000, 1), 32768), ("second", 'C', fill(700, 9), 40000)])
        self.assertEqual(data[16 + 14:16 + 16], b'\x00\x02')   # sector 0, track 2
        second = read(data).find("second.C")
        self.assertEqual(second.data, fill(700, 9))
        self.assertEqual(second.load_address, 40000)

    def test_screen(self):
        entry = read(trdos_image([("screen", 'C', bytes(6912), 16384)])).entries[0]
        self.assertTrue(entry.is_image)
        self.assertEqual(entry.image_type_hint, "ZX Spectrum SCREEN$")
        self.assertEqual(entry.load_address, 16384)

    def test_deleted_entries_are_skipped(self):
        data = bytearray(trdos_image([("old", 'B', fill(10), 0), ("new", 'B', fill(10, 1), 0)]))
        data[0] = 0x01
        catalog = read(bytes(data))
        self.assertEqual([entry.name for entry in catalog.entries], ["new.B"])

    def test_length_capped_by_sector_count(self):
        data = bytearray(trdos_image([("long", 'C', fill(1000), 30000)]))
        data[13] = 2
        entry = read(bytes(data)).entries[0]
        self.assertEqual(entry.data, fill(512))
        self.assertEqual(entry.length, 1000)

    def test_disk_info(self):
        reader = TRDOSFileSystem(DiskImage(trdos_image([("a", 'B', fill(300), 0)])))
        self.assertEqual(reader.info.disk_type, "80 track DS")
        self.assertEqual(reader.info.file_count, 1)
        self.assertEqual(reader.info.free_sectors, 2560 - 18)
        self.assertEqual(reader.info.label, "TESTDISK")

    def test_gate(self):
        self.assertFalse(TRDOSFileSystem.can_read(DiskImage(bytes(655360))))
        self.assertFalse(TRDOSFileSystem.can_read(DiskImage(trdos_image([], size=143360))))
        self.assertFalse(TRDOSFileSystem.can_read(DiskImage(trdos_image([], disk_type=0x42))))
        self.assertTrue(TRDOSFileSystem.can_read(DiskImage(trdos_image([], size=327680, disk_type=0x17))))


if __name__ == '__main__':
    unittest.main()
