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
Header merging for a platform/sdk group.

Headers are usually identical across the archs of a group and are simply
copied (and patched). When they differ, a single header dispatching on the
target arch is synthesized.
"""

import logging
import os
import re
from typing import Callable, List, Optional, Sequence, Tuple

from xcfbuild.build_scripts.build_target import BuiltTarget
from xcfbuild.utils.cmd.cmd_util import decode_bytes
from xcfbuild.utils.fs import FileManager

log = logging.getLogger(__name__)

Patch = Callable[[str], str]

# Deprecated upstream and not self-contained
OBSOLETE_HEADERS = frozenset(["asn1_mac.h"])

MERGED_HEADER_PREAMBLE = (
    "/* Merged file from multiple archs */\n"
    "#include <TargetConditionals.h>\n"
    "\n"
    "\n"
)


def include_rewrite_patch(library_name: str, product_name: str, modular: bool) -> Patch:
    """
    Patch rewriting ``#include <library/x.h>``.

    Modular (framework) headers include ``<Product/x.h>``, the others include
    the sibling header with ``"x.h"``.
    """
    pattern = re.compile(r"#(\s*)include(\s*)<" + re.escape(library_name) + r"/([^>]+)>")
    if modular:
        replacement = r"#\1include\2<" + product_name + r"/\3>"
    else:
        replacement = r'#\1include\2"\3"'

    def patch(text: str) -> str:
        return pattern.sub(replacement, text)

    return patch


def apply_patches(text: str, patches: Sequence[Patch]) -> str:
    for patch in patches:
        text = patch(text)
    return text


def merge_header_contents(contents_with_arch: Sequence[Tuple[str, str]]) -> str:
    """Build a header dispatching on the target arch from (content, arch) pairs."""
    result = MERGED_HEADER_PREAMBLE
    for index, (content, arch) in enumerate(contents_with_arch):
        result += ("#if " if index == 0 else "#elif ") + f"__is_target_arch({arch})\n"
        result += content + "\n"
    result += "#endif\n"
    return result


def umbrella_header_contents(headers: Sequence[str], product_name: str, modular_imports: bool) -> str:
    contents = f"/* Umbrella header for {product_name} */\n\n"
    for header in headers:
        if modular_imports:
            contents += f"#include <{product_name}/{header}>\n"
        else:
            contents += f'#include "{header}"\n'
    return contents


class HeaderMerger:
    def __init__(
        self,
        fm: Optional[FileManager] = None,
        skip_existing: bool = False,
        logger: Optional[logging.Logger] = None,
    ):
        self.fm = fm or FileManager()
        self.skip_existing = skip_existing
        self.log = logger or log

    def _should_skip(self, dest: str) -> bool:
        if self.skip_existing and self.fm.exists(dest):
            self.log.info("Skipping creation of %s because it already exists", dest)
            return True
        return False

    def patch_and_merge(
        self,
        headers_with_arch: Sequence[Tuple[str, str]],
        patches: Sequence[Patch],
        dest: str,
    ) -> Optional[str]:
        """
        Write the merged version of the per-arch copies of a header.

        Args:
            headers_with_arch: (header path, arch) for each arch of the group
            patches: Text transformations applied to each header
            dest: Path of the merged header

        Returns:
            dest, or None if no header was given
        """
        if not headers_with_arch:
            self.log.warning("Asked to create a merged header at %s, but no headers given", dest)
            return None
        if self._should_skip(dest):
            return dest
        self.fm.ensure_parent_directory(dest)
        self.fm.ensure_file_deleted(dest)

        self.log.info("Creating merged header %s from %d header(s)", dest, len(headers_with_arch))
        raw_contents = [self.fm.read_bytes(path) for path, _ in headers_with_arch]
        if len(set(raw_contents)) <= 1:
            if not patches:
                self.log.debug("  -> No need for merge nor patch; copying header directly")
                self.fm.copy_file(headers_with_arch[0][0], dest)
            else:
                self.log.debug("  -> No need for merge; simply patching header")
                self.fm.write_text(dest, apply_patches(decode_bytes(raw_contents[0]), patches))
        else:
            self.log.debug("  -> Merge is needed")
            self.fm.write_text(dest, merge_header_contents([
                (apply_patches(decode_bytes(raw), patches), arch)
                for raw, (_, arch) in zip(raw_contents, headers_with_arch)
            ]))
        return dest

    def build_umbrella_header(
        self,
        headers: Sequence[str],
        product_name: str,
        modular_imports: bool,
        dest: str,
    ) -> Optional[str]:
        """
        Write a header including all the given headers.

        Args:
            headers: Header paths, relative to the headers root
            product_name: Name of the module
            modular_imports: Use ``<Product/x.h>`` instead of ``"x.h"``
            dest: Path of the umbrella header
        """
        if not headers:
            self.log.warning("Asked to create an umbrella header at %s, but no headers given", dest)
            return None
        if self._should_skip(dest):
            return dest
        self.fm.ensure_parent_directory(dest)
        self.fm.ensure_file_deleted(dest)

        self.log.info("Creating umbrella header %s from %d header(s)", dest, len(headers))
        self.fm.write_text(dest, umbrella_header_contents(headers, product_name, modular_imports))
        return dest

    def merge_group_headers(
        self,
        built_targets: Sequence[BuiltTarget],
        patches: Sequence[Patch],
        dest_dir: str,
        library_name: str = "openssl",
    ) -> List[str]:
        """
        Merge the headers of all the targets of a (validated) group.

        Returns:
            The merged headers, relative to dest_dir
        """
        if not built_targets:
            return []
        include_root = f"include/{library_name}/"
        merged = []
        for relative_header in sorted(built_targets[0].headers):
            if not relative_header.startswith(include_root):
                self.log.warning("Skipping header %s: not in %s", relative_header, include_root)
                continue
            name = relative_header[len(include_root):]
            if os.path.basename(name) in OBSOLETE_HEADERS:
                self.log.info("Skipping obsolete header %s", relative_header)
                continue
            dest = os.path.join(dest_dir, *name.split("/"))
            headers_with_arch = [(b.absolute(relative_header), b.target.arch) for b in built_targets]
            if self.patch_and_merge(headers_with_arch, patches, dest) is not None:
                merged.append(name)
        return merged
