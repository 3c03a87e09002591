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
All the paths relevant to the build.

Layout under ``<workdir>/build``::

    step1.sources-and-builds/<target>/          extracted and built sources
    step2.installs/<target>/                    native installs
    step3.lib-derivatives/fat-static-libs/<group>/
    step3.lib-derivatives/lib-objects/<target>/
    step3.lib-derivatives/merged-dynamic-libs/<target>/
    step4.merged-fat-libs/static/<group>/
    step4.merged-fat-libs/dynamic/<group>/
    step4.merged-fat-libs/headers/<flavor>/<group>/
    step5.final-frameworks-and-libs/frameworks/<group>/
    step5.final-frameworks-and-libs/static-libs-and-headers/<group>/

The final xcframeworks (and, in full packaging mode, their zips and the
Package.swift manifest) go in the result dir.
"""

import os
import re
from dataclasses import dataclass
from typing import Iterable, Optional

from xcfbuild.model.target import PlatformSdkGroup, Target
from xcfbuild.utils.errors import (
    ExpectedDirectoryError,
    InvalidProductNameError,
    InvalidVersionError,
    NoConfigForVersionError,
)
from xcfbuild.utils.fs import FileManager

PRODUCT_NAME_RE = re.compile(r"^[A-Za-z0-9_]+$")

STATIC_FLAVOR = "static"
DYNAMIC_FLAVOR = "dynamic"


def _split_extension(component: str):
    """Split ``1.1.1k`` in (``1.1``, ``1k``); no extension gives (component, None)."""
    idx = component.rfind(".")
    if idx <= 0:
        return component, None
    return component[:idx], component[idx + 1:]


def next_config_version_candidate(version: str) -> Optional[str]:
    """
    Return the less specific version to try after ``version``, or None.

    The trailing dash suffix is dropped first, then a trailing letter, then the
    last dotted component (``3.0.0-beta1`` -> ``3.0.0``, ``1.1.1k`` ->
    ``1.1.1`` -> ``1.1`` -> ``1``).
    """
    stem, ext = _split_extension(version)
    if ext is None or "-" in ext:
        idx = version.rfind("-")
        if idx == -1:
            return None
        return version[:idx]
    if ext and ext[-1].isalpha():
        return version[:-1]
    return stem


def find_config_dir_name(version: str, available: Iterable[str]) -> Optional[str]:
    """
    Pick the configuration directory to use for a version.

    Args:
        version: Requested version (e.g. 1.1.1k)
        available: Names of the existing configuration directories

    Returns:
        The name of the most specific matching directory, or None
    """
    available = set(available)
    current: Optional[str] = version
    while current:
        if current in available:
            return current
        current = next_config_version_candidate(current)
    return None


@dataclass(frozen=True)
class BuildPaths:
    product_name: str

    files_dir: str
    work_dir: str
    result_dir: str
    developer_dir: str

    def __post_init__(self):
        if not PRODUCT_NAME_RE.match(self.product_name or ""):
            raise InvalidProductNameError(self.product_name)

    @classmethod
    def create(
        cls,
        product_name: str,
        files_dir: str,
        work_dir: str,
        result_dir: Optional[str],
        developer_dir: str,
    ) -> "BuildPaths":
        work_dir = os.path.abspath(work_dir)
        return cls(
            product_name=product_name,
            files_dir=os.path.abspath(files_dir),
            work_dir=work_dir,
            result_dir=os.path.abspath(result_dir) if result_dir else work_dir,
            developer_dir=developer_dir,
        )

    # region Inputs

    @property
    def configs_dir(self) -> str:
        return os.path.join(self.files_dir, "OpenSSLConfigs")

    @property
    def templates_dir(self) -> str:
        return os.path.join(self.files_dir, "Templates")

    # endregion
    # region Results

    @property
    def result_xcframework_static(self) -> str:
        return os.path.join(self.result_dir, f"{self.product_name}-static.xcframework")

    @property
    def result_xcframework_dynamic(self) -> str:
        return os.path.join(self.result_dir, f"{self.product_name}-dynamic.xcframework")

    @property
    def result_xcframework_static_archive(self) -> str:
        return self.result_xcframework_static + ".zip"

    @property
    def result_xcframework_dynamic_archive(self) -> str:
        return self.result_xcframework_dynamic + ".zip"

    @property
    def result_package_swift(self) -> str:
        return os.path.join(self.result_dir, "Package.swift")

    # endregion
    # region Build steps

    @property
    def build_dir(self) -> str:
        return os.path.join(self.work_dir, "build")

    @property
    def sources_dir(self) -> str:
        """Contains the extracted tarball, config'd and built. One dir per target."""
        return os.path.join(self.build_dir, "step1.sources-and-builds")

    @property
    def installs_dir(self) -> str:
        return os.path.join(self.build_dir, "step2.installs")

    @property
    def fat_static_dir(self) -> str:
        return os.path.join(self.build_dir, "step3.lib-derivatives", "fat-static-libs")

    @property
    def lib_objects_dir(self) -> str:
        return os.path.join(self.build_dir, "step3.lib-derivatives", "lib-objects")

    @property
    def dylibs_dir(self) -> str:
        return os.path.join(self.build_dir, "step3.lib-derivatives", "merged-dynamic-libs")

    @property
    def merged_fat_static_libs_dir(self) -> str:
        return os.path.join(self.build_dir, "step4.merged-fat-libs", "static")

    @property
    def merged_fat_dynamic_libs_dir(self) -> str:
        return os.path.join(self.build_dir, "step4.merged-fat-libs", "dynamic")

    @property
    def merged_headers_dir(self) -> str:
        return os.path.join(self.build_dir, "step4.merged-fat-libs", "headers")

    @property
    def final_frameworks_dir(self) -> str:
        return os.path.join(self.build_dir, "step5.final-frameworks-and-libs", "frameworks")

    @property
    def final_static_libs_and_headers_dir(self) -> str:
        return os.path.join(self.build_dir, "step5.final-frameworks-and-libs", "static-libs-and-headers")

    # endregion
    # region Product names

    @property
    def static_lib_name(self) -> str:
        return f"lib{self.product_name}.a"

    @property
    def dylib_name(self) -> str:
        return f"lib{self.product_name}.dylib"

    @property
    def framework_name(self) -> str:
        return f"{self.product_name}.framework"

    # endregion
    # region Per target / per group

    def source_dir(self, target: Target) -> str:
        return os.path.join(self.sources_dir, target.path_component)

    def install_dir(self, target: Target) -> str:
        return os.path.join(self.installs_dir, target.path_component)

    def lib_objects_dir_for(self, target: Target) -> str:
        return os.path.join(self.lib_objects_dir, target.path_component)

    def dylib_path(self, target: Target) -> str:
        return os.path.join(self.dylibs_dir, target.path_component, self.dylib_name)

    def fat_static_lib_path(self, group: PlatformSdkGroup, relative_lib: str) -> str:
        return os.path.join(self.fat_static_dir, group.path_component, relative_lib)

    def merged_static_lib_path(self, group: PlatformSdkGroup) -> str:
        return os.path.join(self.merged_fat_static_libs_dir, group.path_component, self.static_lib_name)

    def fat_dylib_path(self, group: PlatformSdkGroup) -> str:
        return os.path.join(self.merged_fat_dynamic_libs_dir, group.path_component, self.dylib_name)

    def merged_headers_dir_for(self, group: PlatformSdkGroup, flavor: str) -> str:
        return os.path.join(self.merged_headers_dir, flavor, group.path_component)

    def framework_path(self, group: PlatformSdkGroup) -> str:
        return os.path.join(self.final_frameworks_dir, group.path_component, self.framework_name)

    def static_bundle_dir(self, group: PlatformSdkGroup) -> str:
        return os.path.join(self.final_static_libs_and_headers_dir, group.path_component)

    def configs_dir_for_version(self, version: str, fm: FileManager) -> str:
        """
        Find the native build configuration dir for a version.

        Falls back to less specific versions (see next_config_version_candidate).

        Raises:
            InvalidVersionError: The version cannot be used as a path component.
            NoConfigForVersionError: No configuration matches.
        """
        if not version or "/" in version or version in (".", ".."):
            raise InvalidVersionError(version)
        available = fm.list_dir(self.configs_dir) if fm.is_dir(self.configs_dir) else []
        name = find_config_dir_name(version, available)
        if name is None:
            raise NoConfigForVersionError(version, self.configs_dir)
        path = os.path.join(self.configs_dir, name)
        if not fm.is_dir(path):
            raise ExpectedDirectoryError(path)
        return path

    # endregion

    def clean(self, fm: FileManager):
        fm.ensure_directory_deleted(self.build_dir)
        fm.ensure_directory_deleted(self.result_xcframework_static)
        fm.ensure_directory_deleted(self.result_xcframework_dynamic)

    def ensure_all_directories_exist(self, fm: FileManager):
        for path in (
            self.work_dir,
            self.result_dir,
            self.build_dir,
            self.sources_dir,
            self.installs_dir,
            self.fat_static_dir,
            self.lib_objects_dir,
            self.dylibs_dir,
            self.merged_fat_static_libs_dir,
            self.merged_fat_dynamic_libs_dir,
            self.merged_headers_dir,
            self.final_frameworks_dir,
            self.final_static_libs_and_headers_dir,
        ):
            fm.ensure_directory(path)
