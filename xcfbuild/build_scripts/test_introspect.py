"""
Tests for the Mach-O metadata extraction.

Run with: python3 -m pytest xcfbuild/build_scripts/test_introspect.py
"""

import unittest

from xcfbuild.build_scripts.introspect import (
    BinaryIntrospector,
    SdkVersionInfo,
    SdkVersionResolution,
    version_key,
)
from xcfbuild.utils.cmd.fake_cmd import FakeCommandRunner, otool_output
from xcfbuild.utils.errors import AmbiguousSdkVersionError, NoSdkVersionFoundError

LEGACY_OTOOL_OUTPUT = """\
/tmp/libold.a(a.o):
Load command 1
      cmd LC_VERSION_MIN_WATCHOS
  cmdsize 16
  version 4.0
      sdk 6.1
"""

NOT_AVAILABLE_OTOOL_OUTPUT = """\
/tmp/libna.a(a.o):
Load command 1
      cmd LC_VERSION_MIN_IPHONEOS
  cmdsize 16
  version 9.0
      sdk n/a
Load command 2
      cmd LC_BUILD_VERSION
      sdk 14.5
    minos 9.0
"""

UNRELATED_OTOOL_OUTPUT = """\
/tmp/libx.a(a.o):
Load command 0
      cmd LC_SEGMENT_64
  segname __TEXT
      sdk 99.0
"""


def runner_with(outputs):
    """Fake runner whose otool output is looked up by lib path."""
    return FakeCommandRunner(otool=lambda lib: outputs[lib])


class TestSdkVersions(unittest.TestCase):
    """Test SDK and minimum OS version extraction."""

    def test_modern_format(self):
        runner = runner_with({"a": otool_output("a", sdk="14.5", min_sdk="12.0")})
        info = BinaryIntrospector(runner).get_sdk_versions(["a"])
        self.assertEqual(info, SdkVersionInfo(sdk="14.5", min_sdk="12.0"))
        self.assertEqual(runner.commands[0].args, ["xcrun", "otool", "-l", "a"])

    def test_legacy_format(self):
        runner = runner_with({"old": LEGACY_OTOOL_OUTPUT})
        info = BinaryIntrospector(runner).get_sdk_versions(["old"])
        self.assertEqual(info, SdkVersionInfo(sdk="6.1", min_sdk="4.0"))

    def test_not_available_is_ignored(self):
        runner = runner_with({"na": NOT_AVAILABLE_OTOOL_OUTPUT})
        info = BinaryIntrospector(runner).get_sdk_versions(["na"])
        self.assertEqual(info, SdkVersionInfo(sdk="14.5", min_sdk="9.0"))

    def test_values_outside_version_commands_are_ignored(self):
        runner = runner_with({"x": UNRELATED_OTOOL_OUTPUT, "a": otool_output("a")})
        with self.assertRaises(NoSdkVersionFoundError) as ctx:
            BinaryIntrospector(runner).get_sdk_versions(["x"])
        self.assertEqual(ctx.exception.field, "sdk")

    def test_conflict_is_an_error(self):
        runner = runner_with({
            "a": otool_output("a", sdk="14.5"),
            "b": otool_output("b", sdk="14.4"),
            "c": otool_output("c"),
        })
        with self.assertRaises(AmbiguousSdkVersionError) as ctx:
            BinaryIntrospector(runner).get_sdk_versions(["a", "b", "c"])
        self.assertEqual(ctx.exception.field, "sdk")
        self.assertEqual(ctx.exception.values, ["14.4", "14.5"])
        # no lib inspected after the conflict
        self.assertEqual([c.args[-1] for c in runner.commands], ["a", "b"])

    def test_min_sdk_conflict(self):
        runner = runner_with({
            "a": otool_output("a", min_sdk="12.0"),
            "b": otool_output("b", min_sdk="13.0"),
        })
        with self.assertRaises(AmbiguousSdkVersionError) as ctx:
            BinaryIntrospector(runner).get_sdk_versions(["a", "b"])
        self.assertEqual(ctx.exception.field, "min sdk")

    def test_resolution_policies(self):
        outputs = {
            "a": otool_output("a", sdk="14.10", min_sdk="9.0"),
            "b": otool_output("b", sdk="14.9", min_sdk="12.0"),
        }
        introspector = BinaryIntrospector(runner_with(outputs))
        self.assertEqual(
            introspector.get_sdk_versions(["a", "b"], SdkVersionResolution.MIN),
            SdkVersionInfo(sdk="14.9", min_sdk="9.0"),
        )
        self.assertEqual(
            introspector.get_sdk_versions(["a", "b"], SdkVersionResolution.MAX),
            SdkVersionInfo(sdk="14.10", min_sdk="12.0"),
        )

    def test_version_key(self):
        self.assertGreater(version_key("12.10"), version_key("12.9"))
        self.assertEqual(version_key("1.1.1k"), (1, 1, 1))


class TestBitcode(unittest.TestCase):
    """Test bitcode detection."""

    def test_bitcode_found(self):
        runner = runner_with({
            "a": otool_output("a"),
            "b": otool_output("b", bitcode=True),
            "c": otool_output("c", bitcode=True),
        })
        self.assertTrue(BinaryIntrospector(runner).check_for_bitcode(["a", "b", "c"]))
        self.assertEqual([c.args[-1] for c in runner.commands], ["a", "b"])

    def test_no_bitcode(self):
        runner = runner_with({"a": otool_output("a")})
        self.assertFalse(BinaryIntrospector(runner).check_for_bitcode(["a"]))
        self.assertFalse(BinaryIntrospector(runner).check_for_bitcode([]))

    def test_llvm_segment_only_warns(self):
        runner = runner_with({"dylib": otool_output("dylib") + "  segname __LLVM\n"})
        with self.assertLogs("xcfbuild.build_scripts.introspect", level="WARNING"):
            self.assertTrue(BinaryIntrospector(runner).check_for_bitcode(["dylib"]))


if __name__ == "__main__":
    unittest.main()
