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
Swift Package Manager distribution of the xcframeworks.

Handles the xcframework archives and the Package.swift generation.
"""

import logging
import os
import re
from typing import Dict, Optional

from xcfbuild.model.build_paths import DYNAMIC_FLAVOR, STATIC_FLAVOR, BuildPaths
from xcfbuild.utils.cmd.cmd_util import CommandRunner
from xcfbuild.utils.fs import FileManager

log = logging.getLogger(__name__)

DEFAULT_PACKAGE_URL_TEMPLATE = (
    "https://github.com/xcode-actions/{{ product }}/releases/download/"
    "{{ version }}/{{ product }}-{{ flavor }}.xcframework.zip"
)
FLAVORS = (STATIC_FLAVOR, DYNAMIC_FLAVOR)

_PLACEHOLDER_RE = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def render_url_template(template: str, product: str, version: str, flavor: str) -> str:
    values = {"product": product, "version": version, "flavor": flavor}
    return _PLACEHOLDER_RE.sub(lambda m: values.get(m.group(1), m.group(0)), template)


class SPMPackager:
    """
    Builds the xcframework archives and the Package.swift describing them.

    Args:
        paths: Build paths
        runner: Runner for zip and swift
        url_template: Remote URL of the archives ({{ product }},
            {{ version }} and {{ flavor }} are replaced)
        skip_existing: Keep the manifest and archives if they all exist
    """

    def __init__(
        self,
        paths: BuildPaths,
        runner: CommandRunner,
        fm: Optional[FileManager] = None,
        url_template: str = DEFAULT_PACKAGE_URL_TEMPLATE,
        skip_existing: bool = False,
        logger: Optional[logging.Logger] = None,
    ):
        self.paths = paths
        self.runner = runner
        self.fm = fm or FileManager()
        self.url_template = url_template
        self.skip_existing = skip_existing
        self.log = logger or log

    @property
    def product_name(self) -> str:
        return self.paths.product_name

    def xcframework_path(self, flavor: str) -> str:
        if flavor == STATIC_FLAVOR:
            return self.paths.result_xcframework_static
        return self.paths.result_xcframework_dynamic

    def archive_path(self, flavor: str) -> str:
        return self.xcframework_path(flavor) + ".zip"

    def generate_package_swift(
        self,
        version: Optional[str] = None,
        checksums: Optional[Dict[str, str]] = None,
    ) -> str:
        """
        Generate the Package.swift content.

        Args:
            version: Version used in the remote URLs
            checksums: Checksum of the archive of each flavor. When not given
                the binary targets point to the local xcframeworks.

        Returns:
            Package.swift content
        """
        name = self.product_name
        lines = [
            "// swift-tools-version:5.3",
            "import PackageDescription",
            "",
            "",
            f"/* Binary package definition for {name}. */",
            "",
            "let package = Package(",
            f'\tname: "{name}",',
            "\tproducts: [",
        ]
        lines.append(",\n".join(
            f'\t\t.library(name: "{name}-{flavor}", targets: ["{name}-{flavor}"])'
            for flavor in FLAVORS
        ))
        lines.extend([
            "\t],",
            "\ttargets: [",
        ])

        targets = []
        for flavor in FLAVORS:
            if checksums:
                url = render_url_template(self.url_template, name, version, flavor)
                targets.append(
                    f'\t\t.binaryTarget(name: "{name}-{flavor}", url: "{url}", checksum: "{checksums[flavor]}")'
                )
            else:
                targets.append(
                    f'\t\t.binaryTarget(name: "{name}-{flavor}", path: "./{name}-{flavor}.xcframework")'
                )
        lines.append(",\n".join(targets))
        lines.extend([
            "\t]",
            ")",
            "",
        ])
        return "\n".join(lines)

    def create_xcframework_zip(self, flavor: str) -> str:
        """Zip an xcframework (symlinks preserved) next to it."""
        xcframework = self.xcframework_path(flavor)
        archive = self.archive_path(flavor)
        self.log.info("Archiving %s", xcframework)
        self.runner.run(
            ["zip", "-r", "--symlinks", archive, os.path.basename(xcframework)],
            cwd=os.path.dirname(xcframework),
        )
        return archive

    def calculate_checksum(self, archive: str) -> str:
        """
        Compute the SPM checksum of an archive.

        swift needs a package in its working dir, hence the placeholder
        Package.swift written before.
        """
        output = self.runner.get_output(
            ["swift", "package", "compute-checksum", archive],
            cwd=os.path.dirname(self.paths.result_package_swift),
        )
        return output.strip()

    def build_package(self, version: str) -> str:
        """
        Archive both xcframeworks and write the final Package.swift.

        Returns:
            Path of Package.swift
        """
        package_swift = self.paths.result_package_swift
        artifacts = [package_swift] + [self.archive_path(f) for f in FLAVORS]
        if self.skip_existing and all(self.fm.exists(a) for a in artifacts):
            self.log.info("Skipping creation of %s because they already exist", ", ".join(artifacts))
            return package_swift
        for artifact in artifacts:
            self.fm.ensure_parent_directory(artifact)
            self.fm.ensure_file_deleted(artifact)

        for flavor in FLAVORS:
            self.create_xcframework_zip(flavor)

        # placeholder package, local paths only
        self.fm.write_text(package_swift, self.generate_package_swift())

        checksums = {flavor: self.calculate_checksum(self.archive_path(flavor)) for flavor in FLAVORS}
        for flavor, checksum in checksums.items():
            self.log.info("Checksum of %s archive: %s", flavor, checksum)

        self.fm.write_text(package_swift, self.generate_package_swift(version, checksums))
        return package_swift
