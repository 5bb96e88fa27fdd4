"""Tests for the disk image access layer: bounds, geometry, chains, sector order."""

import unittest

from retrodisk_image import (DOS_TO_PRODOS, PRODOS_TO_DOS, DiskImage, detect_geometry,
                             dos_to_prodos_order, follow_chain, invert_permutation,
                             prodos_to_dos_order)


def numbered_sectors(count, sector_size=256):
    """Image whose sector n is filled with the byte n % 256."""
    return b''.join(bytes([n % 256]) * sector_size for n in range(count))


class TestDiskImage(unittest.TestCase):

    def setUp(self):
        self.image = DiskImage(numbered_sectors(4), "/tmp/disk.dsk")

    def test_read_in_range(self):
        self.assertEqual(self.image.read(255, 2), b'\x00\x01')

    def test_reads_outside_the_buffer_return_none(self):
        self.assertIsNone(self.image.read(1020, 10))
        self.assertIsNone(self.image.read(-1, 2))
        self.assertIsNone(self.image.byte(1024))
        self.assertIsNone(self.image.word(1023))
        self.assertIsNone(self.image.read_block(4, 256))

    def test_word_is_little_endian(self):
        image = DiskImage(b'\x34\x12')
        self.assertEqual(image.word(0), 0x1234)

    def test_read_sector(self):
        self.assertEqual(self.image.read_sector(0, 1, 2), b'\x01' * 256)
        self.assertEqual(self.image.read_sector(1, 1, 2), b'\x03' * 256)

    def test_read_sector_interleaved_sides(self):
        # Track 0 side 1 follows track 0 side 0
        self.assertEqual(self.image.read_sector(0, 0, 2, side=1, sides=2), b'\x02' * 256)

    def test_read_sector_out_of_range(self):
        self.assertIsNone(self.image.read_sector(0, 2, 2))
        self.assertIsNone(self.image.read_sector(5, 0, 2))
        self.assertIsNone(self.image.read_sector(0, 0, 2, side=1))

    def test_buffer_is_copied(self):
        buf = bytearray(b'abc')
        image = DiskImage(buf)
        buf[0] = 0
        self.assertEqual(image.data, b'abc')

    def test_describe(self):
        self.assertEqual(self.image.describe(), "/tmp/disk.dsk (1024 bytes)")
        self.assertEqual(DiskImage(b'').describe(), "<memory> (0 bytes)")


class TestGeometry(unittest.TestCase):

    def test_standard_apple_size(self):
        geometry = detect_geometry(143360)
        self.assertEqual((geometry.tracks, geometry.sides, geometry.total_sectors), (35, 1, 560))

    def test_standard_msx_size(self):
        geometry = detect_geometry(737280, 512, 9)
        self.assertEqual((geometry.tracks, geometry.sides, geometry.total_sectors), (80, 2, 1440))

    def test_nonstandard_size_rounds_down(self):
        geometry = detect_geometry(1000, 256, 16)
        self.assertEqual(geometry.total_sectors, 3)
        self.assertEqual(geometry.total_size, 768)

    def test_geometry_never_exceeds_image(self):
        for size in (0, 255, 143360, 200000, 409600, 737280, 12345):
            for layout in ((256, 16), (256, 10), (256, 18), (512, 9)):
                geometry = detect_geometry(size, *layout)
                self.assertLessEqual(geometry.total_size, size)


class TestFollowChain(unittest.TestCase):

    def test_linear_chain(self):
        chain = follow_chain(0, lambda unit: unit + 1 if unit < 3 else None, 10)
        self.assertEqual(list(chain), [0, 1, 2, 3])

    def test_cycle_is_cut_at_limit(self):
        chain = follow_chain(0, lambda unit: (unit + 1) % 3, 5)
        self.assertEqual(list(chain), [0, 1, 2, 0, 1])

    def test_self_loop(self):
        self.assertEqual(list(follow_chain(7, lambda unit: unit, 4)), [7, 7, 7, 7])

    def test_empty_chain(self):
        self.assertEqual(list(follow_chain(None, lambda unit: unit, 4)), [])


class TestSectorOrder(unittest.TestCase):

    def test_tables_are_inverse(self):
        for sector in range(16):
            self.assertEqual(PRODOS_TO_DOS[DOS_TO_PRODOS[sector]], sector)

    def test_invert_rejects_non_permutation(self):
        with self.assertRaises(ValueError):
            invert_permutation([0, 0, 1])

    def test_dos_sector_lands_at_mapped_position(self):
        image = DiskImage(numbered_sectors(560))
        converted = dos_to_prodos_order(image)
        for sector in range(16):
            self.assertEqual(converted.read_sector(0, DOS_TO_PRODOS[sector], 16), bytes([sector]) * 256)
            # Same permutation on every track
            self.assertEqual(converted.read_sector(3, DOS_TO_PRODOS[sector], 16), bytes([48 + sector]) * 256)

    def test_round_trip(self):
        image = DiskImage(bytes(i % 251 for i in range(143360)))
        converted = dos_to_prodos_order(image)
        self.assertNotEqual(converted, image)
        self.assertEqual(prodos_to_dos_order(converted), image)
        self.assertEqual(dos_to_prodos_order(prodos_to_dos_order(image)), image)

    def test_trailing_partial_track_is_kept(self):
        data = numbered_sectors(16) + b'tail'
        converted = dos_to_prodos_order(DiskImage(data))
        self.assertEqual(converted.size, len(data))
        self.assertEqual(converted.data[-4:], b'tail')

    def test_source_is_not_modified(self):
        image = DiskImage(numbered_sectors(16))
        before = image.data
        dos_to_prodos_order(image)
        self.assertEqual(image.data, before)


if __name__ == '__main__':
    unittest.main()
