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
import sys
from typing import List, Optional

from xcfbuild.model.build_paths import BuildPaths
from xcfbuild.utils.config import load_config
from xcfbuild.utils.context.command import CliCommand, setup_logging
from xcfbuild.utils.context.context import CliContext
from xcfbuild.utils.context.namespace import CliNameSpace
from xcfbuild.utils.errors import XcfBuildError
from xcfbuild.utils.fs import FileManager


class Clean(CliCommand):
    def description(self) -> str:
        return """
        This is a subcommand to clean the build artifacts.

        Deletes:
        - <workdir>/build/                      # All the intermediate steps
        - <resultdir>/<product>-static.xcframework
        - <resultdir>/<product>-dynamic.xcframework

        The downloaded tarball is kept.

        Examples:
            xcfbuild clean
            xcfbuild clean --workdir ./openssl-workdir --dry-run
        """

    def cli(self, argv: Optional[List[str]] = None) -> CliNameSpace:
        parser = argparse.ArgumentParser(
            prog="xcfbuild clean",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            description=self.description(),
        )
        parser.add_argument("--config", type=str, help="Config file (default: ./XCFBUILD.toml if present)")
        parser.add_argument("--workdir", type=str, help="Working dir (default: ./openssl-workdir)")
        parser.add_argument("--resultdir", type=str, help="Dir of the final xcframeworks (default: workdir)")
        parser.add_argument("--product-name", type=str, help="Name of the frameworks (default: COpenSSL)")
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be cleaned without actually deleting",
        )
        parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
        return parser.parse_args(argv, namespace=CliNameSpace())

    def exec(self, context: CliContext, args: CliNameSpace):
        setup_logging(args.verbose)
        print("Cleaning build artifacts...\n")
        fm = FileManager()
        try:
            config = load_config(
                args.config,
                {"workdir": args.workdir, "resultdir": args.resultdir, "product_name": args.product_name},
                cwd=context.cwd,
            )
            paths = BuildPaths.create(
                product_name=config.product_name,
                files_dir=config.files_path,
                work_dir=config.workdir,
                result_dir=config.resultdir,
                developer_dir="",
            )
            to_clean = [
                p for p in (paths.build_dir, paths.result_xcframework_static, paths.result_xcframework_dynamic)
                if fm.exists(p)
            ]
            if not to_clean:
                print("Nothing to clean.")
                return
            for path in to_clean:
                print(f"  {'Would remove' if args.dry_run else 'Removing'}: {path}")
            if not args.dry_run:
                paths.clean(fm)
        except XcfBuildError as e:
            print(f"ERROR: {e}")
            sys.exit(1)
        print("\nClean finished.")
