"""
Tests for targets and platform/sdk groups.

Run with: python3 -m pytest xcfbuild/model/test_target.py
"""

import unittest

from xcfbuild.model.target import (
    DEFAULT_TARGETS,
    PlatformFamily,
    PlatformSdkGroup,
    Target,
    group_targets,
)
from xcfbuild.utils.errors import ConfigurationError, InvalidTargetError


class TestTarget(unittest.TestCase):
    """Test target parsing and derived names."""

    def test_parse(self):
        target = Target.parse("iOS-iOS_Simulator-arm64")
        self.assertEqual(target, Target(sdk="iOS", platform="iOS_Simulator", arch="arm64"))
        self.assertEqual(str(target), "iOS-iOS_Simulator-arm64")
        self.assertEqual(target.path_component, "iOS-iOS_Simulator-arm64")

    def test_parse_invalid(self):
        for value in ["iOS-iOS", "iOS-iOS-arm64-extra", "", "iOS--arm64"]:
            with self.assertRaises(InvalidTargetError):
                Target.parse(value)

    def test_fields_cannot_contain_separators(self):
        with self.assertRaises(ConfigurationError):
            Target(sdk="iOS", platform="iOS/Simulator", arch="arm64")
        with self.assertRaises(ConfigurationError):
            Target(sdk="iOS", platform="iOS", arch="arm-64")

    def test_hashable(self):
        a = Target.parse("macOS-macOS-arm64")
        b = Target.parse("macOS-macOS-arm64")
        self.assertEqual(len({a, b}), 1)
        self.assertEqual({a: 1}[b], 1)

    def test_group(self):
        target = Target.parse("tvOS-tvOS_Simulator-x86_64")
        self.assertEqual(target.group, PlatformSdkGroup(platform="tvOS_Simulator", sdk="tvOS"))
        self.assertEqual(str(target.group), "tvOS-tvOS_Simulator")

    def test_platform_names(self):
        simulator = Target.parse("iOS-iOS_Simulator-x86_64")
        self.assertEqual(simulator.platform_legacy_name, "iPhoneSimulator")
        self.assertEqual(simulator.platform_version_name, "ios-simulator")
        watch = Target.parse("watchOS-watchOS-arm64_32")
        self.assertEqual(watch.platform_legacy_name, "WatchOS")
        self.assertEqual(watch.platform_version_name, "watchos")

    def test_catalyst(self):
        catalyst = Target.parse("iOS-macOS-x86_64")
        self.assertTrue(catalyst.is_catalyst)
        self.assertEqual(catalyst.platform_legacy_name, "MacOSX")
        self.assertEqual(catalyst.platform_version_name, "mac-catalyst")
        self.assertEqual(catalyst.override_family, "catalyst")
        self.assertFalse(Target.parse("macOS-macOS-x86_64").is_catalyst)

    def test_override_family(self):
        self.assertEqual(Target.parse("iOS-iOS_Simulator-arm64").override_family, "ios")
        self.assertEqual(Target.parse("watchOS-watchOS_Simulator-i386").override_family, "watchos")
        self.assertEqual(Target.parse("macOS-macOS-arm64").override_family, "macos")

    def test_unknown_platform_warns(self):
        target = Target.parse("xrOS-xrOS_Simulator-arm64")
        self.assertIs(target.family, PlatformFamily.UNKNOWN)
        self.assertIsNone(target.override_family)
        with self.assertLogs("xcfbuild.model.target", level="WARNING"):
            self.assertEqual(target.platform_legacy_name, "xrOSSimulator")
        with self.assertLogs("xcfbuild.model.target", level="WARNING"):
            self.assertEqual(target.platform_version_name, "xros-simulator")

    def test_is_64_bit(self):
        self.assertTrue(Target.parse("iOS-iOS-arm64").is_64_bit)
        self.assertTrue(Target.parse("macOS-macOS-x86_64").is_64_bit)
        self.assertFalse(Target.parse("watchOS-watchOS-armv7k").is_64_bit)
        self.assertFalse(Target.parse("watchOS-watchOS-arm64_32").is_64_bit)


class TestGroupTargets(unittest.TestCase):
    """Test grouping of targets by platform and sdk."""

    def test_groups_keep_order(self):
        groups = group_targets(DEFAULT_TARGETS)
        self.assertEqual(len(DEFAULT_TARGETS), 15)
        self.assertEqual(
            [str(g) for g in groups],
            [
                "macOS-macOS",
                "iOS-iOS",
                "iOS-iOS_Simulator",
                "iOS-macOS",
                "tvOS-tvOS",
                "tvOS-tvOS_Simulator",
                "watchOS-watchOS",
                "watchOS-watchOS_Simulator",
            ],
        )
        simulator = groups[PlatformSdkGroup(platform="watchOS_Simulator", sdk="watchOS")]
        self.assertEqual([t.arch for t in simulator], ["arm64", "x86_64", "i386"])

    def test_every_target_in_one_group(self):
        groups = group_targets(DEFAULT_TARGETS)
        self.assertEqual(sum(len(t) for t in groups.values()), len(DEFAULT_TARGETS))


if __name__ == "__main__":
    unittest.main()
