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
Native build of one target.

The native build system is driven through its Configure script, then make.
Its parameters (toolchain, SDK location, local configuration dir, ...) are
given as environment variables of the child processes only.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from xcfbuild.model.build_paths import BuildPaths
from xcfbuild.model.target import Target
from xcfbuild.model.tarball import Tarball
from xcfbuild.utils.cmd.cmd_util import CommandRunner, xcrun
from xcfbuild.utils.errors import BuildFailedError, ExternalToolError
from xcfbuild.utils.fs import FileManager

log = logging.getLogger(__name__)


def number_of_cores() -> Optional[int]:
    return os.cpu_count()


def make_jobs_args(jobs: Optional[int]) -> List[str]:
    return ["-j", str(jobs)] if jobs else []


@dataclass(frozen=True)
class BuiltTarget:
    """
    Result of a native build. All artifact paths are relative to install_dir.
    """

    target: Target
    source_dir: str
    install_dir: str

    static_libraries: Tuple[str, ...] = field(default_factory=tuple)
    dynamic_libraries: Tuple[str, ...] = field(default_factory=tuple)
    headers: Tuple[str, ...] = field(default_factory=tuple)
    resources: Tuple[str, ...] = field(default_factory=tuple)

    def absolute(self, relative_path: str) -> str:
        return os.path.join(self.install_dir, *relative_path.split("/"))

    @property
    def absolute_static_libraries(self) -> List[str]:
        return [self.absolute(p) for p in self.static_libraries]


def classify_artifacts(
    install_dir: str,
    target: Target,
    fm: FileManager,
    library_name: str = "openssl",
    logger: Optional[logging.Logger] = None,
) -> Tuple[List[str], List[str]]:
    """
    Scan an install dir and sort its files.

    Args:
        install_dir: Install prefix of the native build
        target: The built target (used in warnings)
        fm: File manager
        library_name: Name of the include subdirectory of the library headers

    Returns:
        Tuple of (headers, static libraries), relative to install_dir
    """
    logger = logger or log
    headers: List[str] = []
    static_libs: List[str] = []

    def check_location(relative_path: str, expected: str, file_type: str):
        if os.path.dirname(relative_path) != expected:
            logger.warning(
                "found %s at unexpected location: %s (target %s, root %s)",
                file_type, relative_path, target, install_dir,
            )

    for full_path, relative_path, is_dir in fm.iterate_files(install_dir):
        if is_dir:
            continue
        ext = os.path.splitext(full_path)[1]
        if ext == ".a":
            check_location(relative_path, "lib", "lib")
            static_libs.append(relative_path)
        elif ext == ".h":
            check_location(relative_path, f"include/{library_name}", "header")
            headers.append(relative_path)
        elif ext == "":
            # binaries are not used, only checked
            check_location(relative_path, "bin", "binary")
        elif ext == ".pc":
            check_location(relative_path, "lib/pkgconfig", "pc file")
        else:
            logger.warning("found unknown file: %s (target %s, root %s)", relative_path, target, install_dir)
    return headers, static_libs


class SingleTargetBuilder:
    """
    Configure, build and install the sources for one target.

    Args:
        target: The target to build
        tarball: The (downloaded) source tarball
        paths: Build paths
        version: Version of the built library
        runner: Runner for the external processes
        sdk_version: SDK version override (None for the latest SDK)
        min_sdk_version: Minimum OS version override
        disable_bitcode: Do not embed bitcode in the built objects
        skip_existing: Skip the build if the install dir exists
    """

    def __init__(
        self,
        target: Target,
        tarball: Tarball,
        paths: BuildPaths,
        version: str,
        runner: CommandRunner,
        fm: Optional[FileManager] = None,
        sdk_version: Optional[str] = None,
        min_sdk_version: Optional[str] = None,
        disable_bitcode: bool = False,
        skip_existing: bool = False,
        library_name: str = "openssl",
        jobs: Optional[int] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.target = target
        self.tarball = tarball
        self.paths = paths
        self.version = version
        self.runner = runner
        self.fm = fm or FileManager()
        self.sdk_version = sdk_version
        self.min_sdk_version = min_sdk_version
        self.disable_bitcode = disable_bitcode
        self.skip_existing = skip_existing
        self.library_name = library_name
        self.jobs = jobs if jobs is not None else number_of_cores()
        self.log = logger or log

    @property
    def source_dir(self) -> str:
        return self.paths.source_dir(self.target)

    @property
    def install_dir(self) -> str:
        return self.paths.install_dir(self.target)

    def build_environment(self, config_dir: str) -> Dict[str, Optional[str]]:
        """Environment overrides given to the native build system."""
        developer_dir = self.paths.developer_dir
        legacy_name = self.target.platform_legacy_name
        return {
            "CROSS_COMPILE": os.path.join(developer_dir, "Toolchains", "XcodeDefault.xctoolchain", "usr", "bin") + "/",
            "OPENSSLBUILD_SDKs_LOCATION": os.path.join(developer_dir, "Platforms", f"{legacy_name}.platform", "Developer"),
            "OPENSSLBUILD_SDK": f"{legacy_name}{self.sdk_version or ''}.sdk",
            "OPENSSL_LOCAL_CONFIG_DIR": config_dir,
            "OPENSSLBUILD_SDKVERSION": self.sdk_version,
            "OPENSSLBUILD_MIN_SDKVERSION": self.min_sdk_version,
            "OPENSSLBUILD_DISABLE_BITCODE": "true" if self.disable_bitcode else None,
        }

    def configure_args(self, extracted_dir: str) -> List[str]:
        args = [
            os.path.join(extracted_dir, "Configure"),
            self.target.config_name,
            f"--prefix={self.install_dir}",
            "no-async",
            "no-shared",
            "no-tests",
        ]
        if self.target.is_64_bit:
            args.append("enable-ec_nistp_64_gcc_128")
        return args

    def _run_build_step(self, args: List[str], cwd: str, env: Dict[str, Optional[str]]):
        try:
            self.runner.run(args, cwd=cwd, env=env)
        except ExternalToolError as e:
            raise BuildFailedError(self.target, e.args_list, e.returncode) from e

    def build(self) -> BuiltTarget:
        """
        Build the target (unless already built) and return its artifacts.

        The install dir is always scanned, so a skipped build reports the same
        artifacts as the run that produced it.

        Raises:
            NoConfigForVersionError: No native config dir for the version.
            BuildFailedError: Configure, make or make install failed.
        """
        config_dir = self.paths.configs_dir_for_version(self.version, self.fm)

        if self.skip_existing and self.fm.exists(self.install_dir):
            self.log.info("Skipping building of target %s because %s exists", self.target, self.install_dir)
        else:
            self._extract_build_and_install(config_dir)

        headers, static_libs = classify_artifacts(
            self.install_dir, self.target, self.fm, self.library_name, self.log,
        )
        return BuiltTarget(
            target=self.target,
            source_dir=self.source_dir,
            install_dir=self.install_dir,
            static_libraries=tuple(static_libs),
            headers=tuple(headers),
        )

    def _extract_build_and_install(self, config_dir: str):
        # tar overwrites existing files but keeps additional ones
        extracted_dir = self.tarball.extract(self.source_dir, self.runner)

        self.log.info("Building for target %s", self.target)
        env = self.build_environment(config_dir)
        jobs_args = make_jobs_args(self.jobs)

        self._run_build_step(self.configure_args(extracted_dir), extracted_dir, env)
        self._run_build_step(xcrun("make", *jobs_args), extracted_dir, env)
        self._run_build_step(xcrun("make", "install_sw", *jobs_args), extracted_dir, env)
