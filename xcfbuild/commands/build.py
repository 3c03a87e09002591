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

import argparse
import logging
import sys
from typing import Any, Dict, List, Optional

from xcfbuild.build_scripts.introspect import SdkVersionResolution
from xcfbuild.build_scripts.pipeline import PipelineResult, XCFrameworkPipeline
from xcfbuild.utils.config import OVERRIDE_FAMILIES, load_config
from xcfbuild.utils.context.command import CliCommand, setup_logging
from xcfbuild.utils.context.context import CliContext
from xcfbuild.utils.context.namespace import CliNameSpace
from xcfbuild.utils.errors import XcfBuildError

log = logging.getLogger(__name__)

# Options mapped 1:1 on BuildConfig fields
CONFIG_OPTIONS = [
    "files_path",
    "workdir",
    "resultdir",
    "openssl_base_url",
    "openssl_version",
    "expected_tarball_shasum",
    "product_name",
    "library_name",
    "bundle_id_prefix",
    "build_version",
    "disable_bitcode",
    "clean",
    "skip_existing_artifacts",
    "package",
    "package_url_template",
    "sdk_version_resolution",
    "parallel_targets",
    "developer_dir",
    "targets",
]


def overrides_from_args(args: CliNameSpace) -> Dict[str, Any]:
    """BuildConfig values given on the command line (None when not given)."""
    overrides = {name: getattr(args, name, None) for name in CONFIG_OPTIONS}
    sdk_versions = {}
    min_sdk_versions = {}
    for family in OVERRIDE_FAMILIES:
        sdk_version = getattr(args, f"{family}_sdk_version", None)
        min_sdk_version = getattr(args, f"{family}_min_sdk_version", None)
        if sdk_version is not None:
            sdk_versions[family] = sdk_version
        if min_sdk_version is not None:
            min_sdk_versions[family] = min_sdk_version
    overrides["sdk_versions"] = sdk_versions or None
    overrides["min_sdk_versions"] = min_sdk_versions or None
    return overrides


class Build(CliCommand):
    def description(self) -> str:
        return """
        This is a subcommand to build the static and dynamic xcframeworks.

        The source tarball is downloaded (once), built for every target,
        then the per-target libraries and headers are merged per platform
        and sdk, and assembled in <product>-static.xcframework and
        <product>-dynamic.xcframework in the result dir.

        Settings are read from XCFBUILD.toml in the current directory (or
        the file given with --config); command line options override them.

        Examples:
            xcfbuild build
            xcfbuild build --skip-existing-artifacts --parallel-targets 4
            xcfbuild build --targets macOS-macOS-arm64 --targets macOS-macOS-x86_64
            xcfbuild build --ios-min-sdk-version 12.0 --package
        """

    def cli(self, argv: Optional[List[str]] = None) -> CliNameSpace:
        parser = argparse.ArgumentParser(
            prog="xcfbuild build",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            description=self.description(),
        )
        parser.add_argument("--config", type=str, help="Config file (default: ./XCFBUILD.toml if present)")
        parser.add_argument("--files-path", type=str, help="Dir with the native build configs and the bundle templates")
        parser.add_argument("--workdir", type=str, help="Working dir (default: ./openssl-workdir)")
        parser.add_argument("--resultdir", type=str, help="Dir of the final xcframeworks (default: workdir)")
        parser.add_argument("--openssl-base-url", type=str, help="Tarball URL template, with a {{ version }} placeholder")
        parser.add_argument("--openssl-version", type=str, help="Version to build (default: 1.1.1k)")
        parser.add_argument("--expected-tarball-shasum", type=str, help="SHA-256 of the tarball")
        parser.add_argument("--product-name", type=str, help="Name of the frameworks (default: COpenSSL)")
        parser.add_argument("--library-name", type=str, help="Include dir name of the library headers (default: openssl)")
        parser.add_argument("--bundle-id-prefix", type=str, help="Prefix of the frameworks bundle identifier")
        parser.add_argument("--build-version", type=int, help="Integer build version of the frameworks")
        parser.add_argument(
            "--disable-bitcode",
            action="store_true",
            default=None,
            help="Do not embed bitcode in the built binaries",
        )
        parser.add_argument(
            "--clean",
            action="store_true",
            default=None,
            help="Delete the previous build and xcframeworks first",
        )
        parser.add_argument(
            "--skip-existing-artifacts",
            action="store_true",
            default=None,
            help="Reuse the artifacts of a previous build when they exist",
        )
        parser.add_argument(
            "--package",
            action="store_true",
            default=None,
            help="Zip the xcframeworks and write Package.swift",
        )
        parser.add_argument(
            "--package-url-template",
            type=str,
            help="Remote URL of the zips ({{ product }}, {{ version }}, {{ flavor }})",
        )
        parser.add_argument(
            "--sdk-version-resolution",
            type=str,
            choices=[r.value for r in SdkVersionResolution],
            help="How to pick the sdk versions when binaries disagree (default: error)",
        )
        parser.add_argument("--parallel-targets", type=int, help="Number of targets built at the same time")
        parser.add_argument("--developer-dir", type=str, help="Xcode developer dir (default: xcode-select -print-path)")
        parser.add_argument(
            "--targets",
            action="append",
            metavar="SDK-PLATFORM-ARCH",
            help="Target to build (repeatable, default: all supported targets)",
        )
        for family in OVERRIDE_FAMILIES:
            parser.add_argument(f"--{family}-sdk-version", type=str, help=f"SDK version for {family}")
            parser.add_argument(f"--{family}-min-sdk-version", type=str, help=f"Minimum OS version for {family}")
        parser.add_argument("-v", "--verbose", action="store_true", help="Log the output of the external tools")
        return parser.parse_args(argv, namespace=CliNameSpace())

    def print_summary(self, result: PipelineResult):
        print("\n==================Build Summary====================")
        for group in result.groups:
            print(f"  {group.group}: {', '.join(t.arch for t in group.targets)}")
        if result.static_xcframework:
            print(f"  Static xcframework:  {result.static_xcframework}")
        if result.dynamic_xcframework:
            print(f"  Dynamic xcframework: {result.dynamic_xcframework}")
        if result.package_swift:
            print(f"  Package.swift:       {result.package_swift}")
        print("===================================================\n")

    def exec(self, context: CliContext, args: CliNameSpace):
        setup_logging(args.verbose)
        print("==================Build xcframeworks====================")
        try:
            config = load_config(args.config, overrides_from_args(args), cwd=context.cwd)
            print(f"Version: {config.openssl_version}, product: {config.product_name}, {len(config.targets)} target(s)")
            result = XCFrameworkPipeline(config).run()
        except XcfBuildError as e:
            log.debug("Build failed", exc_info=True)
            print(f"ERROR: {e}")
            sys.exit(1)
        self.print_summary(result)
        print("Build succeeded")
