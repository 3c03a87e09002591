"""
Tests for the filesystem helpers.

Run with: python3 -m pytest xcfbuild/utils/test_fs.py
"""

import os
import tempfile
import unittest

from xcfbuild.utils.errors import ExpectedDirectoryError, ExpectedFileError
from xcfbuild.utils.fs import FileManager, SymlinkOperation


def _touch(path, content="x"):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w") as f:
        f.write(content)


class TestFileManager(unittest.TestCase):
    """Test directory and file operations."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.root = self.tmp.name
        self.fm = FileManager()

    def test_ensure_directory(self):
        path = os.path.join(self.root, "a", "b")
        self.fm.ensure_directory(path)
        self.fm.ensure_directory(path)
        self.assertTrue(os.path.isdir(path))

        file_path = os.path.join(self.root, "file")
        _touch(file_path)
        with self.assertRaises(ExpectedDirectoryError):
            self.fm.ensure_directory(file_path)

    def test_ensure_deleted(self):
        directory = os.path.join(self.root, "dir")
        _touch(os.path.join(directory, "f"))
        self.fm.ensure_directory_deleted(directory)
        self.fm.ensure_directory_deleted(directory)
        self.assertFalse(os.path.exists(directory))

        file_path = os.path.join(self.root, "file")
        _touch(file_path)
        with self.assertRaises(ExpectedDirectoryError):
            self.fm.ensure_directory_deleted(file_path)
        self.fm.ensure_file_deleted(file_path)
        self.assertFalse(os.path.exists(file_path))

        os.makedirs(directory)
        with self.assertRaises(ExpectedFileError):
            self.fm.ensure_file_deleted(directory)

    def test_deleting_a_link_keeps_its_target(self):
        target = os.path.join(self.root, "target")
        _touch(os.path.join(target, "f"))
        link = os.path.join(self.root, "link")
        os.symlink("target", link)
        self.fm.ensure_directory_deleted(link)
        self.assertFalse(os.path.lexists(link))
        self.assertTrue(os.path.isfile(os.path.join(target, "f")))

    def test_apply_symlinks(self):
        _touch(os.path.join(self.root, "Versions", "A", "Headers", "a.h"))
        # replaced by the link
        _touch(os.path.join(self.root, "Headers", "old.h"))
        self.fm.apply_symlinks([
            SymlinkOperation(os.path.join(self.root, "Versions", "Current"), "A"),
            SymlinkOperation(os.path.join(self.root, "Headers"), os.path.join("Versions", "Current", "Headers")),
        ])
        self.assertEqual(os.readlink(os.path.join(self.root, "Headers")), "Versions/Current/Headers")
        self.assertTrue(os.path.isfile(os.path.join(self.root, "Headers", "a.h")))
        self.assertFalse(os.path.exists(os.path.join(self.root, "Versions", "A", "Headers", "old.h")))

    def test_iterate_files(self):
        _touch(os.path.join(self.root, "lib", "libssl.a"))
        _touch(os.path.join(self.root, "include", "openssl", "ssl.h"))
        _touch(os.path.join(self.root, ".DS_Store"))
        _touch(os.path.join(self.root, "include", ".DS_Store"))

        entries = [(relative, is_dir) for _, relative, is_dir in self.fm.iterate_files(self.root)]
        self.assertEqual(
            entries,
            [
                ("include", True),
                ("lib", True),
                ("include/openssl", True),
                ("include/openssl/ssl.h", False),
                ("lib/libssl.a", False),
            ],
        )


if __name__ == "__main__":
    unittest.main()
