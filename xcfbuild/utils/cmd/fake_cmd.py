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
Recording CommandRunner for tests.

No process is spawned: each known tool is simulated by creating the files
the real tool would create, so the build steps can run end to end.
"""

import hashlib
import os
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from xcfbuild.model.target import Target
from xcfbuild.model.tarball import tarball_stem
from xcfbuild.utils.cmd.cmd_util import XCRUN, CommandRunner
from xcfbuild.utils.errors import ExternalToolError

FAKE_DEVELOPER_DIR = "/Applications/Xcode.app/Contents/Developer"

MODERN_OTOOL_OUTPUT = """\
{lib}:
Load command 0
      cmd LC_SEGMENT_64
  cmdsize 72
  segname __TEXT
Load command 1
      cmd LC_BUILD_VERSION
  cmdsize 24
 platform 2
      sdk {sdk}
    minos {min_sdk}
   ntools 0
"""

BITCODE_OTOOL_SECTION = """\
Section
  sectname __bitcode
   segname __LLVM
"""


def otool_output(lib: str, sdk: str = "14.5", min_sdk: str = "12.0", bitcode: bool = False) -> str:
    text = MODERN_OTOOL_OUTPUT.format(lib=lib, sdk=sdk, min_sdk=min_sdk)
    if bitcode:
        text += BITCODE_OTOOL_SECTION
    return text


def default_install(prefix: str, target: Target):
    """Install what a minimal native build of the library would."""
    files = {
        os.path.join("include", "openssl", "foo.h"): b"int foo(void);\n",
        os.path.join("lib", "libcrypto.a"): f"crypto-{target.arch}".encode(),
    }
    for relative_path, content in files.items():
        path = os.path.join(prefix, relative_path)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(content)


def _read(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def _write(path: str, content: bytes):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(content)


@dataclass
class RecordedCommand:
    args: List[str]
    cwd: Optional[str]
    env: Optional[Dict[str, Optional[str]]]

    @property
    def tool(self) -> str:
        if self.args[0] == XCRUN:
            return self.args[1]
        return os.path.basename(self.args[0])


class FakeCommandRunner(CommandRunner):
    """
    Args:
        install: Called with (prefix, target) on ``make install_sw``
        otool: Returns the ``otool -l`` output of a lib
        failing_tools: Tools exiting with status 1
    """

    def __init__(
        self,
        install: Callable[[str, Target], None] = default_install,
        otool: Callable[[str], str] = otool_output,
        failing_tools: Sequence[str] = (),
    ):
        super().__init__()
        self.install = install
        self.otool = otool
        self.failing_tools = set(failing_tools)
        self.commands: List[RecordedCommand] = []
        self._configured: Dict[str, tuple] = {}
        self._lock = threading.Lock()

    def calls(self, tool: str) -> List[RecordedCommand]:
        return [c for c in self.commands if c.tool == tool]

    def _record(self, args, cwd, env) -> RecordedCommand:
        command = RecordedCommand([str(a) for a in args], cwd, dict(env) if env is not None else None)
        with self._lock:
            self.commands.append(command)
        if command.tool in self.failing_tools:
            raise ExternalToolError(command.args, 1)
        return command

    def run(self, args, cwd=None, env=None, output_handler=None):
        command = self._record(args, cwd, env)
        handler = output_handler or self._log_line
        simulate = getattr(self, "_sim_" + command.tool.replace("-", "_"), None)
        if simulate is not None:
            simulate(command, handler)

    def get_output(self, args, cwd=None, env=None) -> str:
        command = self._record(args, cwd, env)
        if command.tool == "xcode-select":
            return FAKE_DEVELOPER_DIR + "\n"
        if command.tool == "swift":
            archive = command.args[-1]
            return hashlib.sha256(_read(archive)).hexdigest() + "\n"
        return ""

    # region Simulated tools

    def _sim_tar(self, command, handler):
        tarball, dest = command.args[2], command.args[4]
        os.makedirs(os.path.join(dest, tarball_stem(os.path.basename(tarball))), exist_ok=True)

    def _sim_Configure(self, command, handler):
        target = Target.parse(command.args[1])
        prefix = next(a.split("=", 1)[1] for a in command.args if a.startswith("--prefix="))
        self._configured[command.cwd] = (prefix, target)

    def _sim_make(self, command, handler):
        if "install_sw" in command.args:
            prefix, target = self._configured[command.cwd]
            self.install(prefix, target)

    def _sim_lipo(self, command, handler):
        inputs = command.args[command.args.index("-create") + 1:command.args.index("-output")]
        dest = command.args[command.args.index("-output") + 1]
        _write(dest, b"FAT:" + b"|".join(_read(i) for i in inputs))

    def _sim_libtool(self, command, handler):
        dest = command.args[command.args.index("-o") + 1]
        inputs = command.args[command.args.index("-o") + 2:]
        _write(dest, b"MERGED:" + b"|".join(_read(i) for i in inputs))

    def _sim_ar(self, command, handler):
        lib = command.args[-1]
        stem = os.path.splitext(os.path.basename(lib))[0]
        _write(os.path.join(command.cwd, f"{stem}-obj.o"), b"OBJ:" + _read(lib))

    def _sim_ld(self, command, handler):
        dest = command.args[command.args.index("-o") + 1]
        arch = command.args[command.args.index("-arch") + 1]
        _write(dest, f"DYLIB:{arch}".encode())

    def _sim_otool(self, command, handler):
        for line in self.otool(command.args[-1]).splitlines():
            handler(line)

    def _sim_xcodebuild(self, command, handler):
        dest = command.args[command.args.index("-output") + 1]
        inputs = command.args[command.args.index("-create-xcframework") + 1:command.args.index("-output")]
        _write(os.path.join(dest, "Info.plist"), "\n".join(os.path.basename(i) for i in inputs).encode())

    def _sim_zip(self, command, handler):
        archive, source = command.args[3], command.args[4]
        _write(archive, f"ZIP:{source}".encode())

    # endregion
