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
Final bundles: frameworks, static libs with headers, and xcframeworks.

A dynamic framework is a bundle directory containing:
- The FAT dynamic library, named after the framework, with an @rpath install name
- Headers/ with the merged headers and the umbrella header
- Modules/module.modulemap
- Info.plist

macOS frameworks use the versioned layout: the content is in Versions/A,
and Versions/Current, <Product>, Headers, Modules and Resources are symlinks.
"""

import logging
import os
from dataclasses import dataclass
from typing import List, Mapping, Optional

from xcfbuild.build_scripts.merge_libs import normalize_version
from xcfbuild.model.build_paths import BuildPaths
from xcfbuild.model.target import PlatformFamily, PlatformSdkGroup
from xcfbuild.utils.apple.templates import FrameworkInfo, TemplateRenderer
from xcfbuild.utils.cmd.cmd_util import CommandRunner, xcrun
from xcfbuild.utils.fs import FileManager, SymlinkOperation

log = logging.getLogger(__name__)

FRAMEWORK_VERSION = "A"
DEFAULT_BUNDLE_ID_PREFIX = "com.xcode-actions"


def versioned_framework_symlinks(
    framework_path: str,
    product_name: str,
    version: str = FRAMEWORK_VERSION,
) -> List[SymlinkOperation]:
    """Symlinks of a versioned framework bundle, all relative."""
    current = os.path.join("Versions", "Current")
    return [
        SymlinkOperation(os.path.join(framework_path, "Versions", "Current"), version),
        SymlinkOperation(os.path.join(framework_path, product_name), os.path.join(current, product_name)),
        SymlinkOperation(os.path.join(framework_path, "Headers"), os.path.join(current, "Headers")),
        SymlinkOperation(os.path.join(framework_path, "Modules"), os.path.join(current, "Modules")),
        SymlinkOperation(os.path.join(framework_path, "Resources"), os.path.join(current, "Resources")),
    ]


def framework_install_name(product_name: str, versioned: bool) -> str:
    if versioned:
        return f"@rpath/{product_name}.framework/Versions/{FRAMEWORK_VERSION}/{product_name}"
    return f"@rpath/{product_name}.framework/{product_name}"


@dataclass(frozen=True)
class StaticBundle:
    library: str
    headers_dir: str


class PackageAssembler:
    """
    Assembles the per-group bundles and the two xcframeworks.

    Args:
        paths: Build paths
        runner: Runner for the external processes
        renderer: Bundle metadata template renderer
        bundle_id_prefix: Prefix of the framework bundle identifiers
        build_version: Integer bundle build version
    """

    def __init__(
        self,
        paths: BuildPaths,
        runner: CommandRunner,
        renderer: Optional[TemplateRenderer] = None,
        fm: Optional[FileManager] = None,
        skip_existing: bool = False,
        bundle_id_prefix: str = DEFAULT_BUNDLE_ID_PREFIX,
        build_version: int = 1,
        logger: Optional[logging.Logger] = None,
    ):
        self.paths = paths
        self.runner = runner
        self.log = logger or log
        self.renderer = renderer or TemplateRenderer(paths.templates_dir, self.log)
        self.fm = fm or FileManager()
        self.skip_existing = skip_existing
        self.bundle_id_prefix = bundle_id_prefix
        self.build_version = build_version

    @property
    def product_name(self) -> str:
        return self.paths.product_name

    def _should_skip(self, dest: str, what: str) -> bool:
        if self.skip_existing and self.fm.exists(dest):
            self.log.info("Skipping %s because %s already exists", what, dest)
            return True
        return False

    def framework_info(self, group: PlatformSdkGroup, version: str, min_os_version: str) -> FrameworkInfo:
        is_macos = group.family is PlatformFamily.MACOS
        return FrameworkInfo(
            product_name=self.product_name,
            bundle_identifier=f"{self.bundle_id_prefix}.{self.product_name}",
            platform_name=group.platform_legacy_name,
            short_version=normalize_version(version),
            build_version=str(int(self.build_version)),
            min_os_version=min_os_version,
            min_os_key="LSMinimumSystemVersion" if is_macos else "MinimumOSVersion",
        )

    def build_framework(
        self,
        group: PlatformSdkGroup,
        dylib: str,
        headers_dir: str,
        version: str,
        min_os_version: str,
    ) -> str:
        """
        Assemble the dynamic framework of a group.

        Args:
            group: The platform/sdk group
            dylib: The FAT dynamic library of the group
            headers_dir: Merged (dynamic flavor) headers, umbrella included
            version: Version of the library
            min_os_version: Minimum OS version of the group

        Returns:
            Path of the framework
        """
        dest = self.paths.framework_path(group)
        if self._should_skip(dest, f"framework creation for {group}"):
            return dest
        self.fm.ensure_directory_deleted(dest)

        versioned = group.family.uses_versioned_bundle
        contents_dir = os.path.join(dest, "Versions", FRAMEWORK_VERSION) if versioned else dest
        self.fm.ensure_directory(contents_dir)
        self.log.info("Creating framework %s", dest)

        binary = os.path.join(contents_dir, self.product_name)
        self.fm.copy_file(dylib, binary)
        self.runner.run(xcrun(
            "install_name_tool", "-id", framework_install_name(self.product_name, versioned), binary,
        ))

        self.fm.copy_tree(headers_dir, os.path.join(contents_dir, "Headers"))
        self.renderer.render_framework_metadata(self.framework_info(group, version, min_os_version), contents_dir)
        if versioned:
            self.fm.move(
                os.path.join(contents_dir, "Info.plist"),
                os.path.join(contents_dir, "Resources", "Info.plist"),
            )
            self.fm.apply_symlinks(versioned_framework_symlinks(dest, self.product_name))
        return dest

    def build_static_bundle(self, group: PlatformSdkGroup, static_lib: str, headers_dir: str) -> StaticBundle:
        """
        Assemble the static library and headers of a group.

        Layout: lib<Product>.a and Headers/ (module.modulemap and <Product>/
        with the merged static flavor headers and the umbrella header).
        """
        dest = self.paths.static_bundle_dir(group)
        bundle = StaticBundle(
            library=os.path.join(dest, self.paths.static_lib_name),
            headers_dir=os.path.join(dest, "Headers"),
        )
        if self._should_skip(dest, f"static bundle creation for {group}"):
            return bundle
        self.fm.ensure_directory_deleted(dest)
        self.fm.ensure_directory(dest)
        self.log.info("Creating static lib and headers in %s", dest)

        self.fm.copy_file(static_lib, bundle.library)
        self.fm.copy_tree(headers_dir, os.path.join(bundle.headers_dir, self.product_name))
        self.renderer.render_static_module_map(self.product_name, bundle.headers_dir)
        return bundle

    def _build_xcframework(self, dest: str, args: List[str], count: int, flavor: str) -> Optional[str]:
        if count == 0:
            self.log.warning("Asked to create a %s xcframework at %s with no input; doing nothing", flavor, dest)
            return None
        if self._should_skip(dest, f"{flavor} xcframework creation"):
            return dest
        self.fm.ensure_directory_deleted(dest)
        self.log.info("Creating %s xcframework %s", flavor, dest)
        self.runner.run(xcrun("xcodebuild", "-create-xcframework", *args, "-output", dest))
        return dest

    def build_xcframework_static(self, bundles: Mapping[PlatformSdkGroup, StaticBundle]) -> Optional[str]:
        args = []
        for bundle in bundles.values():
            args.extend(["-library", bundle.library, "-headers", bundle.headers_dir])
        return self._build_xcframework(self.paths.result_xcframework_static, args, len(bundles), "static")

    def build_xcframework_dynamic(self, frameworks: Mapping[PlatformSdkGroup, str]) -> Optional[str]:
        args = []
        for framework in frameworks.values():
            args.extend(["-framework", framework])
        return self._build_xcframework(self.paths.result_xcframework_dynamic, args, len(frameworks), "dynamic")
