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
Mach-O metadata extraction from built binaries.

The native build system does not report the target SDK, minimum OS version
or bitcode status of what it builds. We read them from the load commands
dumped by ``otool -l``.

Depending on the minimum OS version, the versions look like this for modern
binaries::

    Load command 1
           cmd LC_BUILD_VERSION
       cmdsize 24
      platform 8
           sdk 13.2                   <-- target SDK
         minos 12.0                   <-- minimum OS
        ntools 0

or like this for older ones, with a platform-dependent command name::

    Load command 1
          cmd LC_VERSION_MIN_WATCHOS
      cmdsize 16
      version 4.0                     <-- minimum OS
          sdk 6.1                     <-- target SDK
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Set, Tuple

from xcfbuild.utils.cmd.cmd_util import CommandRunner, xcrun
from xcfbuild.utils.errors import AmbiguousSdkVersionError, NoSdkVersionFoundError

log = logging.getLogger(__name__)

LLVM_SEGMENT_MARKER = "__LLVM"
BITCODE_SECTION_MARKER = "__bitcode"
NOT_AVAILABLE = "n/a"

SDK_FIELD = "sdk"
MIN_SDK_FIELD = "min sdk"


class SdkVersionResolution(Enum):
    """What to do when binaries disagree on a version."""

    ERROR = "error"
    MIN = "min"
    MAX = "max"


@dataclass(frozen=True)
class SdkVersionInfo:
    sdk: str
    min_sdk: str


def version_key(version: str) -> Tuple[int, ...]:
    """Numeric sort key of a dotted version (``12.10`` > ``12.9``)."""
    key = []
    for component in version.split("."):
        match = re.match(r"\d+", component)
        key.append(int(match.group(0)) if match else 0)
    return tuple(key)


def _is_build_version_command(command: Optional[str]) -> bool:
    return command == "LC_BUILD_VERSION"


def _is_version_min_command(command: Optional[str]) -> bool:
    return bool(command) and command.startswith("LC_VERSION_MIN_")


class _LoadCommandParser:
    """Line handler collecting the sdk/min sdk values of an otool dump."""

    def __init__(self, stop_on_conflict: bool):
        self.stop_on_conflict = stop_on_conflict
        self.last_command: Optional[str] = None
        self.values: Dict[str, Set[str]] = {SDK_FIELD: set(), MIN_SDK_FIELD: set()}
        self.conflict: Optional[str] = None

    def _add(self, field: str, value: str):
        if value == NOT_AVAILABLE:
            return
        self.values[field].add(value)
        if self.stop_on_conflict and len(self.values[field]) > 1 and self.conflict is None:
            self.conflict = field

    def __call__(self, line: str):
        if self.conflict is not None:
            return
        trimmed = line.strip()
        words = trimmed.split()
        last_word = words[-1] if words else ""
        if trimmed.startswith("Load command "):
            self.last_command = None
        elif trimmed.startswith("cmd "):
            self.last_command = last_word
        elif trimmed.startswith("minos ") and _is_build_version_command(self.last_command):
            self._add(MIN_SDK_FIELD, last_word)
        elif trimmed.startswith("version ") and _is_version_min_command(self.last_command):
            self._add(MIN_SDK_FIELD, last_word)
        elif trimmed.startswith("sdk ") and (
            _is_build_version_command(self.last_command) or _is_version_min_command(self.last_command)
        ):
            self._add(SDK_FIELD, last_word)


class BinaryIntrospector:
    """Reads linker metadata of binaries with ``xcrun otool -l``."""

    def __init__(self, runner: CommandRunner, logger: Optional[logging.Logger] = None):
        self.runner = runner
        self.log = logger or log

    def _dump(self, lib: str, handler):
        self.runner.run(xcrun("otool", "-l", lib), output_handler=handler)

    def get_sdk_versions(
        self,
        libs: Sequence[str],
        resolution: SdkVersionResolution = SdkVersionResolution.ERROR,
    ) -> SdkVersionInfo:
        """
        Get the target SDK and minimum OS versions of a set of binaries.

        Args:
            libs: Paths of the binaries to inspect
            resolution: Policy when the binaries disagree on a value

        Returns:
            SdkVersionInfo with the resolved sdk and min sdk versions

        Raises:
            AmbiguousSdkVersionError: Multiple values found with the error
                policy (no further binary is inspected).
            NoSdkVersionFoundError: A value was found in none of the binaries.
        """
        parser = _LoadCommandParser(stop_on_conflict=resolution is SdkVersionResolution.ERROR)
        for lib in libs:
            self._dump(lib, parser)
            if parser.conflict is not None:
                values = parser.values[parser.conflict]
                self.log.error("found multiple %s versions %s in %s", parser.conflict, sorted(values), lib)
                raise AmbiguousSdkVersionError(parser.conflict, values, libs)

        resolved: Dict[str, str] = {}
        for field in (SDK_FIELD, MIN_SDK_FIELD):
            values = parser.values[field]
            if not values:
                raise NoSdkVersionFoundError(field, libs)
            if resolution is SdkVersionResolution.MAX:
                resolved[field] = max(values, key=version_key)
            else:
                resolved[field] = min(values, key=version_key)
        return SdkVersionInfo(sdk=resolved[SDK_FIELD], min_sdk=resolved[MIN_SDK_FIELD])

    def check_for_bitcode(self, libs: Sequence[str]) -> bool:
        """
        Tell whether any of the binaries contains bitcode.

        Scanning stops at the first binary with an __LLVM segment or a
        __bitcode section. Finding only one of the two logs a warning
        (expected for dynamic libs).
        """
        for lib in libs:
            markers: List[bool] = [False, False]

            def handler(line: str):
                markers[0] = markers[0] or LLVM_SEGMENT_MARKER in line
                markers[1] = markers[1] or BITCODE_SECTION_MARKER in line

            self._dump(lib, handler)
            lib_has_llvm, lib_has_bitcode = markers
            if lib_has_llvm and not lib_has_bitcode:
                self.log.warning("__LLVM found in %s, but __bitcode was not (expected if the lib is dynamic)", lib)
            elif lib_has_bitcode and not lib_has_llvm:
                self.log.warning("__bitcode found in %s, but __LLVM was not", lib)
            if lib_has_llvm or lib_has_bitcode:
                return True
        return False
