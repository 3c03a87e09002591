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
Build configuration.

Settings come from, in increasing priority: the defaults below, an optional
XCFBUILD.toml file and the command line. Example file::

    [build]
    openssl_version = "1.1.1k"
    workdir = "${HOME}/openssl-workdir"
    skip_existing_artifacts = true
    targets = ["iOS-iOS-arm64", "iOS-iOS_Simulator-arm64"]

    [sdk_versions]
    ios = "14.5"

    [min_sdk_versions]
    ios = "12.0"
    catalyst = "13.1"
"""

import dataclasses
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from xcfbuild.build_scripts.build_framework import DEFAULT_BUNDLE_ID_PREFIX
from xcfbuild.build_scripts.introspect import SdkVersionResolution
from xcfbuild.model.target import DEFAULT_TARGETS, Target
from xcfbuild.utils.apple.spm import DEFAULT_PACKAGE_URL_TEMPLATE
from xcfbuild.utils.errors import ConfigurationError

CONFIG_FILE_NAME = "XCFBUILD.toml"
DEFAULT_FILES_PATH = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "files")
DEFAULT_BASE_URL = "https://www.openssl.org/source/openssl-{{ version }}.tar.gz"
DEFAULT_VERSION = "1.1.1k"
DEFAULT_WORKDIR = "./openssl-workdir"

# Keys of the SDK version override tables
OVERRIDE_FAMILIES = ("macos", "ios", "tvos", "watchos", "catalyst")


def expand_env(value: Any) -> Any:
    """Expand ${VAR} and $VAR in strings (recursively in lists)."""
    if isinstance(value, str):
        return os.path.expandvars(value)
    if isinstance(value, list):
        return [expand_env(v) for v in value]
    return value


@dataclass
class BuildConfig:
    files_path: str = DEFAULT_FILES_PATH
    workdir: str = DEFAULT_WORKDIR
    resultdir: Optional[str] = None

    openssl_base_url: str = DEFAULT_BASE_URL
    openssl_version: str = DEFAULT_VERSION
    expected_tarball_shasum: Optional[str] = None

    product_name: str = "COpenSSL"
    library_name: str = "openssl"
    bundle_id_prefix: str = DEFAULT_BUNDLE_ID_PREFIX
    build_version: int = 1

    disable_bitcode: bool = False
    clean: bool = False
    skip_existing_artifacts: bool = False
    package: bool = False
    package_url_template: str = DEFAULT_PACKAGE_URL_TEMPLATE
    sdk_version_resolution: SdkVersionResolution = SdkVersionResolution.ERROR
    parallel_targets: int = 1
    developer_dir: Optional[str] = None

    targets: List[Target] = field(default_factory=lambda: list(DEFAULT_TARGETS))
    sdk_versions: Dict[str, str] = field(default_factory=dict)
    min_sdk_versions: Dict[str, str] = field(default_factory=dict)

    def sdk_version_for(self, target: Target) -> Optional[str]:
        family = target.override_family
        return self.sdk_versions.get(family) if family else None

    def min_sdk_version_for(self, target: Target) -> Optional[str]:
        family = target.override_family
        return self.min_sdk_versions.get(family) if family else None

    def merged_with(self, values: Mapping[str, Any]) -> "BuildConfig":
        """
        Return a copy with the given values applied; None values are ignored.

        Raises:
            ConfigurationError: Unknown key or invalid value.
        """
        known = {f.name for f in dataclasses.fields(self)}
        changes: Dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                continue
            if key not in known:
                raise ConfigurationError(f"Unknown configuration key: {key}")
            changes[key] = _coerce(key, value)
        for key in ("sdk_versions", "min_sdk_versions"):
            if key in changes:
                changes[key] = {**getattr(self, key), **changes[key]}
        return dataclasses.replace(self, **changes)


def _coerce(key: str, value: Any) -> Any:
    if key == "targets":
        if not isinstance(value, list) or not value:
            raise ConfigurationError("targets must be a non-empty list", context={"targets": value})
        return [v if isinstance(v, Target) else Target.parse(str(v)) for v in value]
    if key == "sdk_version_resolution":
        if isinstance(value, SdkVersionResolution):
            return value
        try:
            return SdkVersionResolution(str(value))
        except ValueError as e:
            raise ConfigurationError(
                "Invalid SDK version resolution.",
                hint="Use one of error, min, max.",
                context={"sdk_version_resolution": value},
            ) from e
    if key in ("sdk_versions", "min_sdk_versions"):
        if not isinstance(value, Mapping):
            raise ConfigurationError(f"{key} must be a table", context={key: value})
        unknown = set(value) - set(OVERRIDE_FAMILIES)
        if unknown:
            raise ConfigurationError(
                f"Unknown platform family in {key}.",
                hint=f"Valid families: {', '.join(OVERRIDE_FAMILIES)}",
                context={"families": ", ".join(sorted(unknown))},
            )
        return {k: str(expand_env(v)) for k, v in value.items()}
    if key in ("build_version", "parallel_targets"):
        try:
            number = int(value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"{key} must be an integer", context={key: value}) from e
        if number < 1:
            raise ConfigurationError(f"{key} must be at least 1", context={key: value})
        return number
    return expand_env(value)


def find_config_file(explicit_path: Optional[str] = None, cwd: Optional[str] = None) -> Optional[str]:
    """The config file to use: the explicit one, else ./XCFBUILD.toml if present."""
    if explicit_path:
        if not os.path.isfile(explicit_path):
            raise ConfigurationError("Config file not found.", context={"path": explicit_path})
        return explicit_path
    candidate = os.path.join(cwd or os.getcwd(), CONFIG_FILE_NAME)
    return candidate if os.path.isfile(candidate) else None


def load_toml(path: str) -> Dict[str, Any]:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML: {e}", context={"path": path}) from e


def values_from_toml(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Flatten the tables of a config file into BuildConfig values."""
    unknown_tables = set(data) - {"build", "sdk_versions", "min_sdk_versions"}
    if unknown_tables:
        raise ConfigurationError(
            "Unknown table in config file.",
            context={"tables": ", ".join(sorted(unknown_tables))},
        )
    values = dict(data.get("build", {}))
    for table in ("sdk_versions", "min_sdk_versions"):
        if table in data:
            values[table] = data[table]
    return values


def load_config(
    config_path: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    cwd: Optional[str] = None,
) -> BuildConfig:
    """
    Build the configuration from defaults, config file and overrides.

    Args:
        config_path: Explicit config file (else ./XCFBUILD.toml if present)
        overrides: Values from the command line; None means not given

    Returns:
        BuildConfig
    """
    config = BuildConfig()
    path = find_config_file(config_path, cwd)
    if path:
        config = config.merged_with(values_from_toml(load_toml(path)))
    if overrides:
        config = config.merged_with(overrides)
    return config
