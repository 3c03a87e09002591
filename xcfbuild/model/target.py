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
Build targets and the platform/sdk groups they are merged in.

A target is one (sdk, platform, arch) triple, e.g. ``iOS-iOS_Simulator-arm64``.
Targets sharing platform and sdk are merged in one FAT binary, because an
xcframework splits its content on platform+sdk, not platform+sdk+arch.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional

from xcfbuild.utils.errors import InvalidTargetError

log = logging.getLogger(__name__)

TARGET_SEPARATOR = "-"


class PlatformFamily(Enum):
    """
    Supported Apple platforms.

    Each value carries (platform name, legacy SDK dir name, linker platform
    version name, bundle family used for SDK version overrides).
    """

    MACOS = ("macOS", "MacOSX", "macos", "macos")
    IOS = ("iOS", "iPhoneOS", "ios", "ios")
    IOS_SIMULATOR = ("iOS_Simulator", "iPhoneSimulator", "ios-simulator", "ios")
    TVOS = ("tvOS", "AppleTVOS", "tvos", "tvos")
    TVOS_SIMULATOR = ("tvOS_Simulator", "AppleTVSimulator", "tvos-simulator", "tvos")
    WATCHOS = ("watchOS", "WatchOS", "watchos", "watchos")
    WATCHOS_SIMULATOR = ("watchOS_Simulator", "WatchSimulator", "watchos-simulator", "watchos")
    UNKNOWN = ("", "", "", "")

    def __init__(self, platform_name: str, legacy_name: str, version_name: str, override_family: str):
        self.platform_name = platform_name
        self.legacy_name = legacy_name
        self.version_name = version_name
        self.override_family = override_family

    @classmethod
    def from_platform(cls, platform: str) -> "PlatformFamily":
        for family in cls:
            if family is not cls.UNKNOWN and family.platform_name == platform:
                return family
        return cls.UNKNOWN

    @property
    def uses_versioned_bundle(self) -> bool:
        """macOS frameworks use the Versions/A layout."""
        return self is PlatformFamily.MACOS


@dataclass(frozen=True)
class Target:
    sdk: str
    platform: str
    arch: str

    def __post_init__(self):
        for value in (self.sdk, self.platform, self.arch):
            if not value or "/" in value or TARGET_SEPARATOR in value:
                raise InvalidTargetError(TARGET_SEPARATOR.join((self.sdk, self.platform, self.arch)))

    @classmethod
    def parse(cls, argument: str) -> "Target":
        """Parse a target written ``sdk-platform-arch``."""
        components = argument.split(TARGET_SEPARATOR)
        if len(components) != 3:
            raise InvalidTargetError(argument)
        return cls(sdk=components[0], platform=components[1], arch=components[2])

    def __str__(self) -> str:
        return self.config_name

    @property
    def config_name(self) -> str:
        """The name of the target in the native build system configuration."""
        return TARGET_SEPARATOR.join((self.sdk, self.platform, self.arch))

    @property
    def path_component(self) -> str:
        return self.config_name

    @property
    def group(self) -> "PlatformSdkGroup":
        return PlatformSdkGroup(platform=self.platform, sdk=self.sdk)

    @property
    def family(self) -> PlatformFamily:
        return PlatformFamily.from_platform(self.platform)

    @property
    def is_catalyst(self) -> bool:
        return self.family is PlatformFamily.MACOS and self.sdk == "iOS"

    @property
    def is_64_bit(self) -> bool:
        return self.arch.endswith("64")

    @property
    def platform_legacy_name(self) -> str:
        return self.group.platform_legacy_name

    @property
    def platform_version_name(self) -> str:
        if self.is_catalyst:
            return "mac-catalyst"
        family = self.family
        if family is PlatformFamily.UNKNOWN:
            log.warning("Unknown platform %s; deriving its platform version name", self.platform)
            return self.platform.lower().replace("_", "-")
        return family.version_name

    @property
    def override_family(self) -> Optional[str]:
        """Key of the SDK/min SDK version overrides applying to this target."""
        if self.is_catalyst:
            return "catalyst"
        family = self.family
        if family is PlatformFamily.UNKNOWN:
            return None
        return family.override_family


@dataclass(frozen=True)
class PlatformSdkGroup:
    platform: str
    sdk: str

    def __str__(self) -> str:
        # sdk and platform are validated by Target, they never contain a dash
        return TARGET_SEPARATOR.join((self.sdk, self.platform))

    @property
    def path_component(self) -> str:
        return str(self)

    @property
    def family(self) -> PlatformFamily:
        return PlatformFamily.from_platform(self.platform)

    @property
    def platform_legacy_name(self) -> str:
        """Name of the platform dir in the developer dir (e.g. iPhoneSimulator)."""
        family = self.family
        if family is PlatformFamily.UNKNOWN:
            log.warning("Unknown platform %s; deriving its legacy SDK name", self.platform)
            return self.platform.replace("_", "")
        return family.legacy_name


def group_targets(targets: Iterable[Target]) -> Dict[PlatformSdkGroup, List[Target]]:
    """Group targets by platform+sdk, keeping the order of first appearance."""
    groups: Dict[PlatformSdkGroup, List[Target]] = {}
    for target in targets:
        groups.setdefault(target.group, []).append(target)
    return groups


DEFAULT_TARGETS = [
    Target(sdk="macOS", platform="macOS", arch="arm64"),
    Target(sdk="macOS", platform="macOS", arch="x86_64"),

    Target(sdk="iOS", platform="iOS", arch="arm64"),
    Target(sdk="iOS", platform="iOS", arch="arm64e"),

    Target(sdk="iOS", platform="iOS_Simulator", arch="arm64"),
    Target(sdk="iOS", platform="iOS_Simulator", arch="x86_64"),

    Target(sdk="iOS", platform="macOS", arch="arm64"),
    Target(sdk="iOS", platform="macOS", arch="x86_64"),

    Target(sdk="tvOS", platform="tvOS", arch="arm64"),
    Target(sdk="tvOS", platform="tvOS_Simulator", arch="x86_64"),

    Target(sdk="watchOS", platform="watchOS", arch="armv7k"),
    Target(sdk="watchOS", platform="watchOS", arch="arm64_32"),

    Target(sdk="watchOS", platform="watchOS_Simulator", arch="arm64"),
    Target(sdk="watchOS", platform="watchOS_Simulator", arch="x86_64"),
    Target(sdk="watchOS", platform="watchOS_Simulator", arch="i386"),
]
