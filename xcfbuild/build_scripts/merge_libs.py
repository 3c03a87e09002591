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
Library merging for a platform/sdk group.

This module provides:
- Consistency validation of the artifacts of the targets of a group
- FAT (multi-architecture) binary creation (lipo)
- Static library merging (libtool)
- Dynamic library synthesis from the objects of static libraries (ar + ld)
"""

import logging
import os
import re
from typing import Dict, Iterable, List, Optional, Sequence

from xcfbuild.build_scripts.build_target import BuiltTarget
from xcfbuild.build_scripts.introspect import BinaryIntrospector, SdkVersionResolution
from xcfbuild.model.build_paths import BuildPaths
from xcfbuild.utils.cmd.cmd_util import CommandRunner, xcrun
from xcfbuild.utils.errors import InconsistentArtifactsError
from xcfbuild.utils.fs import FileManager

log = logging.getLogger(__name__)

TRAILING_LETTER_RE = re.compile(r"^(.*?)([a-z])$")


def normalize_version(version: str) -> str:
    """
    Convert a version to the numeric dotted format the linker accepts.

    The pre-release suffix is dropped, then a trailing lowercase letter is
    replaced by its position in the alphabet on two digits.

    Examples:
        >>> normalize_version("1.1.1k")
        '1.1.111'
        >>> normalize_version("3.0.0-beta1")
        '3.0.0'
    """
    version = version.split("-", 1)[0]
    match = TRAILING_LETTER_RE.match(version)
    if match:
        stem, letter = match.groups()
        return "%s%02d" % (stem, ord(letter) - ord("a") + 1)
    return version


def diff_paths(reference: Iterable[str], current: Iterable[str]) -> Dict[str, List[str]]:
    reference, current = set(reference), set(current)
    return {
        "only_in_ref": sorted(reference - current),
        "only_in_current": sorted(current - reference),
    }


def validate_group_consistency(built_targets: Sequence[BuiltTarget]):
    """
    Check all targets of a group have the same headers and static libraries.

    Raises:
        InconsistentArtifactsError: A target's headers or static libraries
            differ from the first target's ones.
    """
    if not built_targets:
        return
    reference = built_targets[0]
    for current in built_targets[1:]:
        for kind, ref_paths, cur_paths in (
            ("headers", reference.headers, current.headers),
            ("static libraries", reference.static_libraries, current.static_libraries),
        ):
            if set(ref_paths) != set(cur_paths):
                raise InconsistentArtifactsError(
                    kind, reference.target, current.target, diff_paths(ref_paths, cur_paths),
                )


class ArtifactMerger:
    """
    Builds the merged libraries of the platform/sdk groups.

    Every destination is deleted before being (re)built, never updated in
    place. With skip_existing, an existing destination is reused as is.
    """

    def __init__(
        self,
        paths: BuildPaths,
        runner: CommandRunner,
        introspector: Optional[BinaryIntrospector] = None,
        fm: Optional[FileManager] = None,
        skip_existing: bool = False,
        disable_bitcode: bool = False,
        sdk_version_resolution: SdkVersionResolution = SdkVersionResolution.ERROR,
        logger: Optional[logging.Logger] = None,
    ):
        self.paths = paths
        self.runner = runner
        self.log = logger or log
        self.introspector = introspector or BinaryIntrospector(runner, self.log)
        self.fm = fm or FileManager()
        self.skip_existing = skip_existing
        self.disable_bitcode = disable_bitcode
        self.sdk_version_resolution = sdk_version_resolution

    def _should_skip(self, dest: str, what: str) -> bool:
        if self.skip_existing and self.fm.exists(dest):
            self.log.info("Skipping %s because %s already exists", what, dest)
            return True
        return False

    def _prepare_file_dest(self, dest: str):
        self.fm.ensure_file_deleted(dest)
        self.fm.ensure_parent_directory(dest)

    def build_fat_library(self, libs: Sequence[str], dest: str) -> Optional[str]:
        """
        Create a FAT binary from single-architecture binaries.

        Args:
            libs: Binaries of the same library for different archs
            dest: Path of the FAT binary

        Returns:
            dest, or None if there was nothing to merge
        """
        if not libs:
            self.log.warning("Asked to build a FAT lib at %s with no input libs; doing nothing", dest)
            return None
        if self._should_skip(dest, "FAT lib creation"):
            return dest
        self._prepare_file_dest(dest)
        self.log.info("Creating FAT lib %s from %d lib(s)", dest, len(libs))
        self.runner.run(xcrun("lipo", "-create", *libs, "-output", dest))
        return dest

    def merge_static_libraries(self, libs: Sequence[str], dest: str) -> Optional[str]:
        """
        Merge distinct static libraries (e.g. libssl and libcrypto) in one.

        Returns:
            dest, or None if there was nothing to merge
        """
        if not libs:
            self.log.warning("Asked to merge static libs at %s with no input libs; doing nothing", dest)
            return None
        if self._should_skip(dest, "static libs merge"):
            return dest
        self._prepare_file_dest(dest)
        self.log.info("Merging %d static lib(s) into %s", len(libs), dest)
        self.runner.run(xcrun("libtool", "-static", "-o", dest, *libs))
        return dest

    def build_group_fat_static_libs(self, group, built_targets: Sequence[BuiltTarget]) -> List[str]:
        """
        Create one FAT static lib per library of the group.

        The group must have been validated (all targets have the same libs).
        """
        fat_libs = []
        if not built_targets:
            return fat_libs
        for relative_lib in sorted(built_targets[0].static_libraries):
            dest = self.paths.fat_static_lib_path(group, relative_lib)
            inputs = [b.absolute(relative_lib) for b in built_targets]
            fat = self.build_fat_library(inputs, dest)
            if fat is not None:
                fat_libs.append(fat)
        return fat_libs

    def extract_objects(self, built: BuiltTarget) -> str:
        """Extract the objects of the static libs of a target in its own dir."""
        dest_dir = self.paths.lib_objects_dir_for(built.target)
        if self._should_skip(dest_dir, f"static lib extract for target {built.target}"):
            return dest_dir
        self.fm.ensure_directory_deleted(dest_dir)
        self.fm.ensure_directory(dest_dir)
        for lib in built.absolute_static_libraries:
            self.log.info("Extracting %s to %s", lib, dest_dir)
            self.runner.run(xcrun("ar", "-x", lib), cwd=dest_dir)
        return dest_dir

    def link_args(
        self,
        built: BuiltTarget,
        objects: Sequence[str],
        has_bitcode: bool,
        sdk: str,
        min_sdk: str,
        version: str,
        dest: str,
    ) -> List[str]:
        target = built.target
        legacy_name = target.platform_legacy_name
        syslibroot = os.path.join(
            self.paths.developer_dir, "Platforms", f"{legacy_name}.platform",
            "Developer", "SDKs", f"{legacy_name}.sdk",
        )
        numeric_version = normalize_version(version)
        return xcrun(
            "ld",
            *objects,
            *(["-bitcode_bundle"] if has_bitcode else []),
            "-dylib", "-lSystem",
            "-application_extension",
            "-arch", target.arch,
            "-platform_version", target.platform_version_name, min_sdk, sdk,
            "-syslibroot", syslibroot,
            # the dylib only ever lives inside a framework
            "-compatibility_version", numeric_version,
            "-current_version", numeric_version,
            "-o", dest,
        )

    def build_dynamic_library(self, built: BuiltTarget, version: str) -> str:
        """
        Link a dynamic library from all the objects of a target's static libs.

        Returns:
            Path of the dynamic library
        """
        objects_dir = self.extract_objects(built)
        dest = self.paths.dylib_path(built.target)
        if self._should_skip(dest, f"dynamic lib creation for target {built.target}"):
            return dest
        dest_dir = os.path.dirname(dest)
        self.fm.ensure_directory_deleted(dest_dir)
        self.fm.ensure_directory(dest_dir)

        static_libs = built.absolute_static_libraries
        has_bitcode = not self.disable_bitcode and self.introspector.check_for_bitcode(static_libs)
        versions = self.introspector.get_sdk_versions(static_libs, self.sdk_version_resolution)
        self.log.debug("got sdk %s, min sdk %s for target %s", versions.sdk, versions.min_sdk, built.target)

        objects = [
            os.path.join(objects_dir, name)
            for name in self.fm.list_dir(objects_dir)
            if name.endswith(".o")
        ]
        self.log.info("Creating dylib at %s from objects in %s", dest, objects_dir)
        self.runner.run(self.link_args(built, objects, has_bitcode, versions.sdk, versions.min_sdk, version, dest))
        return dest

    def build_dynamic_libraries(self, built_targets: Sequence[BuiltTarget], version: str) -> List[str]:
        return [self.build_dynamic_library(b, version) for b in built_targets]
