"""Tests for the catalog model and the directory tree builder."""

import unittest

from retrodisk_catalog import (CatalogEntry, DiskCatalog, PendingDirectory, assemble_tree,
                               file_entry, prodos_type_info)


class DirectoryReader:
    """Serves fixed listings to assemble_tree and counts the reads."""

    def __init__(self, listings):
        self.listings = listings
        self.reads = []

    def __call__(self, location, path):
        self.reads.append(location)
        return self.listings.get(location, [])


class TestFileEntry(unittest.TestCase):

    def test_defaults(self):
        entry = file_entry("HELLO", bytearray(b'abc'))
        self.assertEqual(entry.size, 3)
        self.assertEqual(entry.path, "HELLO")
        self.assertEqual(entry.data, b'abc')
        self.assertIsInstance(entry.data, bytes)
        self.assertFalse(entry.is_directory)
        self.assertEqual(entry.children, ())

    def test_explicit_fields(self):
        entry = file_entry("TITLE", b'', path="PICS/TITLE", file_type_label="BIN", load_address=0x2000)
        self.assertEqual(entry.path, "PICS/TITLE")
        self.assertEqual(entry.load_address, 0x2000)
        self.assertEqual(entry.size, 0)

    def test_size_string(self):
        self.assertEqual(file_entry("A", bytes(512)).size_string, "512 B")
        self.assertEqual(file_entry("A", bytes(2048)).size_string, "2.0 KB")
        self.assertEqual(CatalogEntry("A", size=3 * 1024 * 1024).size_string, "3.0 MB")


class TestAssembleTree(unittest.TestCase):

    def test_nested_directory(self):
        reader = DirectoryReader({
            0: [file_entry("A", b'aaaa'), PendingDirectory("SUB", 1, {'path': "SUB"})],
            1: [file_entry("B", b'bb', path="SUB/B")],
        })
        entries = assemble_tree(0, reader)

        self.assertEqual([entry.name for entry in entries], ["A", "SUB"])
        sub = entries[1]
        self.assertTrue(sub.is_directory)
        self.assertEqual(sub.file_type_label, "DIR")
        self.assertEqual(sub.size, 2)
        self.assertEqual([child.path for child in sub.children], ["SUB/B"])

    def test_directory_fields_are_kept(self):
        reader = DirectoryReader({0: [PendingDirectory("SUB", 1, {'file_type_label': "FOLDER"})]})
        entries = assemble_tree(0, reader)
        self.assertEqual(entries[0].file_type_label, "FOLDER")
        self.assertEqual(entries[0].children, ())
        self.assertEqual(entries[0].size, 0)

    def test_cycles_terminate(self):
        reader = DirectoryReader({
            0: [PendingDirectory("A", 1, {})],
            1: [PendingDirectory("BACK", 0, {}), PendingDirectory("SELF", 1, {}), file_entry("F", b'x')],
        })
        entries = assemble_tree(0, reader)

        self.assertEqual(sorted(reader.reads), [0, 1])
        a = entries[0]
        self.assertEqual([child.name for child in a.children], ["BACK", "SELF", "F"])
        self.assertEqual(a.children[0].children, ())
        self.assertEqual(a.children[1].children, ())
        self.assertEqual(a.size, 1)

    def test_depth_limit(self):
        listings = {depth: [PendingDirectory(f"D{depth}", depth + 1, {})] for depth in range(40)}
        reader = DirectoryReader(listings)
        catalog = DiskCatalog("deep", "test", 0, assemble_tree(0, reader, max_depth=32))

        walked = list(catalog.walk())
        deepest, depth = walked[-1]
        self.assertEqual(deepest.name, "D32")
        self.assertEqual(depth, 32)
        self.assertEqual(deepest.children, ())
        self.assertEqual(len(reader.reads), 33)

    def test_shared_location_is_expanded_once(self):
        reader = DirectoryReader({
            0: [PendingDirectory("ONE", 5, {}), PendingDirectory("TWO", 5, {})],
            5: [file_entry("F", b'data')],
        })
        entries = assemble_tree(0, reader)
        self.assertEqual(reader.reads.count(5), 1)
        self.assertEqual(sum(len(entry.children) for entry in entries), 1)


class TestDiskCatalog(unittest.TestCase):

    def setUp(self):
        sub = CatalogEntry("SUB", path="SUB", size=2, is_directory=True, children=(
            file_entry("PIC", b'pp', path="SUB/PIC", is_image=True, image_type_hint="HGR"),
        ))
        self.catalog = DiskCatalog("disk", "ProDOS", 143360, (file_entry("A", b'a'), sub))

    def test_totals_count_nested_files(self):
        self.assertEqual(self.catalog.total_files, 2)
        self.assertEqual(self.catalog.image_files, 1)

    def test_walk_is_preorder(self):
        walked = [(entry.path, depth) for entry, depth in self.catalog.walk()]
        self.assertEqual(walked, [("A", 0), ("SUB", 0), ("SUB/PIC", 1)])

    def test_find(self):
        self.assertEqual(self.catalog.find("SUB/PIC").data, b'pp')
        self.assertIsNone(self.catalog.find("PIC"))


class TestProDOSTypes(unittest.TestCase):

    def test_aux_type_refinement(self):
        self.assertEqual(prodos_type_info(0x08, 0x2000).short_name, "HGR")
        self.assertEqual(prodos_type_info(0x08, 0x1234).short_name, "FOT")

    def test_plain_type(self):
        info = prodos_type_info(0x06, 0x0800)
        self.assertEqual(info.short_name, "BIN")
        self.assertFalse(info.is_graphics)

    def test_user_and_unknown_types(self):
        self.assertEqual(prodos_type_info(0xF3).short_name, "US3")
        self.assertEqual(prodos_type_info(0x77).short_name, "$77")


if __name__ == '__main__':
    unittest.main()
