#
# Copyright 2024 zhlinh and xcfbuild Project Authors. All rights reserved.
# Use of this source code is governed by a MIT-style
# license that can be found at
#
# https://opensource.org/license/MIT
#
# The above copyright notice and this permission
# notice shall be included in all copies or
# substantial portions of the Software.

"""
Filesystem helpers used throughout the build.

The FileManager is passed explicitly to every component so tests can swap it
for a recording double.
"""

import os
import re
import shutil
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Pattern, Sequence, Tuple

from xcfbuild.utils.errors import ExpectedDirectoryError, ExpectedFileError

# OS metadata files never considered as build artifacts
DEFAULT_EXCLUSIONS = [
    re.compile(r"^\.DS_Store$"),
    re.compile(r"/\.DS_Store$"),
]


@dataclass(frozen=True)
class SymlinkOperation:
    """Create a symbolic link at ``path`` pointing to ``target`` (relative)."""

    path: str
    target: str


class FileManager:
    """Directory creation/deletion and small file operations."""

    def exists(self, path: str) -> bool:
        return os.path.lexists(path)

    def is_dir(self, path: str) -> bool:
        return os.path.isdir(path)

    def ensure_directory(self, path: str):
        if not os.path.exists(path):
            os.makedirs(path, exist_ok=True)
        elif not os.path.isdir(path):
            raise ExpectedDirectoryError(path)

    def ensure_directory_deleted(self, path: str):
        if os.path.islink(path):
            os.remove(path)
        elif os.path.exists(path):
            if not os.path.isdir(path):
                raise ExpectedDirectoryError(path)
            shutil.rmtree(path)

    def ensure_file_deleted(self, path: str):
        if os.path.islink(path):
            os.remove(path)
        elif os.path.exists(path):
            if os.path.isdir(path):
                raise ExpectedFileError(path)
            os.remove(path)

    def ensure_parent_directory(self, path: str):
        parent = os.path.dirname(path)
        if parent:
            self.ensure_directory(parent)

    def read_bytes(self, path: str) -> bytes:
        with open(path, "rb") as f:
            return f.read()

    def read_text(self, path: str) -> str:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()

    def write_text(self, path: str, content: str):
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)

    def copy_file(self, src: str, dst: str):
        self.ensure_parent_directory(dst)
        shutil.copy2(src, dst)

    def copy_tree(self, src: str, dst: str):
        shutil.copytree(src, dst, symlinks=True, dirs_exist_ok=True)

    def move(self, src: str, dst: str):
        self.ensure_parent_directory(dst)
        shutil.move(src, dst)

    def list_dir(self, path: str) -> List[str]:
        return sorted(os.listdir(path))

    def apply_symlinks(self, operations: Iterable[SymlinkOperation]):
        """Create the given symlinks, replacing whatever is at their path."""
        for op in operations:
            self.ensure_parent_directory(op.path)
            if os.path.lexists(op.path):
                if os.path.isdir(op.path) and not os.path.islink(op.path):
                    shutil.rmtree(op.path)
                else:
                    os.remove(op.path)
            os.symlink(op.target, op.path)

    def iterate_files(
        self,
        root: str,
        exclude: Sequence[Pattern] = DEFAULT_EXCLUSIONS,
    ) -> Iterator[Tuple[str, str, bool]]:
        """
        Walk a directory tree recursively.

        Yields:
            (full_path, relative_path, is_dir) for every entry under root whose
            relative path (always '/'-separated) matches none of the exclusions.
        """
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames.sort()
            entries = [(d, True) for d in dirnames] + [(f, False) for f in sorted(filenames)]
            for name, is_dir in entries:
                full_path = os.path.join(dirpath, name)
                relative_path = os.path.relpath(full_path, root).replace(os.sep, "/")
                if any(p.search(relative_path) for p in exclude):
                    continue
                yield full_path, relative_path, is_dir
