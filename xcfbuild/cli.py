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
import importlib
import os
import sys
from typing import List, Optional

from xcfbuild.utils.context.command import CliCommand
from xcfbuild.utils.context.context import CliContext
from xcfbuild.utils.context.namespace import CliNameSpace

SCRIPT_PATH = os.path.split(os.path.realpath(__file__))[0]
PACKAGE_NAME = os.path.basename(SCRIPT_PATH)


# Root Class for Command Line Interface
class Cli(CliCommand):
    def description(self) -> str:
        return """XCFBUILD - Multi-platform XCFramework Builder

Downloads the source tarball of a C library (OpenSSL by default), builds it
for every requested Apple target and packages the results as a static and a
dynamic xcframework (plus, optionally, a Swift package manifest).

USAGE:
    xcfbuild <command> [options]

COMMANDS:
    build       Build the xcframeworks
    clean       Delete the build directory and the xcframeworks

EXAMPLES:
    xcfbuild build                                  # Build with the defaults
    xcfbuild build --openssl-version 1.1.1k --skip-existing-artifacts
    xcfbuild build --targets iOS-iOS-arm64 --targets iOS-iOS_Simulator-arm64
    xcfbuild build --package                        # Also zip and write Package.swift
    xcfbuild clean --workdir ./openssl-workdir

For more information on a specific command:
    xcfbuild <command> --help
        """

    def get_command_list(self) -> list:
        arr = []
        for command in os.listdir(os.path.join(SCRIPT_PATH, "commands")):
            if not command.startswith("_") and command.endswith(".py"):
                arr.append(os.path.splitext(os.path.basename(command))[0])
        return sorted(arr)

    def _parser(self, add_help: bool) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog="xcfbuild",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            description=self.description(),
            add_help=add_help,
        )
        parser.add_argument(
            "subcommand",
            metavar=f"{self.get_command_list()}",
            type=str,
            nargs="?",
            choices=self.get_command_list(),
        )
        return parser

    def cli(self, argv: Optional[List[str]] = None) -> CliNameSpace:
        argv = sys.argv[1:] if argv is None else argv
        # Help of the main command only (not of "xcfbuild build --help")
        if len(argv) == 1 and argv[0] in ["--help", "-h"]:
            self._parser(add_help=True).print_help()
            sys.exit(0)

        # parse only known args - the rest belongs to the subcommand
        args, unknown = self._parser(add_help=False).parse_known_args(argv, namespace=CliNameSpace())
        args.subcommand_argv = unknown
        return args

    def exec(self, context: CliContext, args: CliNameSpace):
        if not args.subcommand:
            print("ERROR: No command specified\n")
            self._parser(add_help=True).print_help()
            sys.exit(1)

        # commands.<name> defines class <Name>
        module = importlib.import_module(f"{PACKAGE_NAME}.commands.{args.subcommand}")
        command = getattr(module, args.subcommand.capitalize())()
        command.exec(context, command.cli(args.subcommand_argv))


def main(argv: Optional[List[str]] = None):
    cmd = Cli()
    cmd.exec(CliContext(), cmd.cli(argv))


if __name__ == "__main__":
    main()
