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

import logging
import os
import subprocess
from typing import Callable, List, Mapping, Optional, Sequence

from xcfbuild.utils.errors import ExternalToolError

log = logging.getLogger(__name__)

# Apple tools are located through the active developer dir
XCRUN = "xcrun"

OutputHandler = Callable[[str], None]
EnvOverrides = Mapping[str, Optional[str]]


def decode_bytes(input: bytes) -> str:
    """
    Decode bytes to string with fallback encoding support.

    Args:
        input: Bytes object to decode

    Returns:
        str: Decoded string
    """
    try:
        return bytes.decode(input, "UTF-8")
    except UnicodeDecodeError:
        return bytes.decode(input, "latin-1")


def merge_env(env: Optional[EnvOverrides]) -> Optional[dict]:
    """
    Overlay environment overrides on the current process environment.

    A value of None removes the variable from the child environment. The
    current process environment itself is never modified.
    """
    if env is None:
        return None
    merged = dict(os.environ)
    for key, value in env.items():
        if value is None:
            merged.pop(key, None)
        else:
            merged[key] = value
    return merged


def xcrun(tool: str, *args: str) -> List[str]:
    """Build the argument list for an Apple tool resolved via xcrun."""
    return [XCRUN, tool, *args]


class CommandRunner:
    """
    Blocking child-process execution with line-by-line output streaming.

    Working directory and environment are per-invocation parameters, so
    concurrent invocations never race on process-global state.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.log = logger or log

    def _log_line(self, line: str):
        self.log.debug("stdout: %s", line)

    def run(
        self,
        args: Sequence[str],
        cwd: Optional[str] = None,
        env: Optional[EnvOverrides] = None,
        output_handler: Optional[OutputHandler] = None,
    ) -> None:
        """
        Run a command, streaming combined stdout/stderr lines to a handler.

        Args:
            args: Executable and its arguments (no shell involved)
            cwd: Working directory of the child process
            env: Environment overrides for the child process
            output_handler: Called with each output line (default: debug log)

        Raises:
            ExternalToolError: The command could not be spawned, exited with a
                non-zero status or was killed by a signal.
        """
        args = [str(a) for a in args]
        handler = output_handler or self._log_line
        self.log.debug("Running %s (cwd=%s)", " ".join(args), cwd or ".")
        try:
            process = subprocess.Popen(
                args,
                cwd=cwd,
                env=merge_env(env),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
        except OSError as e:
            raise ExternalToolError(args, 127, f"Cannot run {args[0]}: {e}") from e

        with process.stdout:
            for raw_line in iter(process.stdout.readline, b""):
                handler(decode_bytes(raw_line).rstrip("\r\n"))
        returncode = process.wait()
        if returncode != 0:
            raise ExternalToolError(args, returncode)

    def get_output(
        self,
        args: Sequence[str],
        cwd: Optional[str] = None,
        env: Optional[EnvOverrides] = None,
    ) -> str:
        """
        Run a command and return its standard output.

        Standard error is logged at debug level and not returned.
        """
        args = [str(a) for a in args]
        self.log.debug("Running %s (cwd=%s)", " ".join(args), cwd or ".")
        try:
            result = subprocess.run(
                args,
                cwd=cwd,
                env=merge_env(env),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise ExternalToolError(args, 127, f"Cannot run {args[0]}: {e}") from e

        for line in decode_bytes(result.stderr).splitlines():
            self.log.debug("stderr: %s", line)
        if result.returncode != 0:
            raise ExternalToolError(args, result.returncode)
        return decode_bytes(result.stdout)
