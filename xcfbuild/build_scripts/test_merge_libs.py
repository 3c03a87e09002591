"""
Tests for group validation and library merging.

Run with: python3 -m pytest xcfbuild/build_scripts/test_merge_libs.py
"""

import os
import tempfile
import unittest

from xcfbuild.build_scripts.build_target import BuiltTarget
from xcfbuild.build_scripts.merge_libs import (
    ArtifactMerger,
    normalize_version,
    validate_group_consistency,
)
from xcfbuild.model.build_paths import BuildPaths
from xcfbuild.model.target import Target
from xcfbuild.utils.cmd.fake_cmd import FAKE_DEVELOPER_DIR, FakeCommandRunner, otool_output
from xcfbuild.utils.errors import InconsistentArtifactsError


def _write(path, content):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(content)


def _read(path):
    with open(path, "rb") as f:
        return f.read()


class TestNormalizeVersion(unittest.TestCase):
    """Test the linker version format."""

    def test_normalize(self):
        self.assertEqual(normalize_version("1.1.1k"), "1.1.111")
        self.assertEqual(normalize_version("1.1.1j"), "1.1.110")
        self.assertEqual(normalize_version("1.1.1a"), "1.1.101")
        self.assertEqual(normalize_version("3.0.0-beta1"), "3.0.0")
        self.assertEqual(normalize_version("3.0.0"), "3.0.0")


class TestGroupConsistency(unittest.TestCase):
    """Test the validation of the targets of a group."""

    def built(self, arch, headers=("include/openssl/a.h",), libs=("lib/libcrypto.a",)):
        return BuiltTarget(
            target=Target(sdk="iOS", platform="iOS", arch=arch),
            source_dir="/src",
            install_dir=f"/install/{arch}",
            static_libraries=tuple(libs),
            headers=tuple(headers),
        )

    def test_consistent(self):
        validate_group_consistency([self.built("arm64"), self.built("arm64e")])
        validate_group_consistency([self.built("arm64")])
        validate_group_consistency([])

    def test_order_does_not_matter(self):
        validate_group_consistency([
            self.built("arm64", libs=("lib/libcrypto.a", "lib/libssl.a")),
            self.built("arm64e", libs=("lib/libssl.a", "lib/libcrypto.a")),
        ])

    def test_header_mismatch(self):
        with self.assertRaises(InconsistentArtifactsError) as ctx:
            validate_group_consistency([
                self.built("arm64"),
                self.built("arm64e", headers=("include/openssl/a.h", "include/openssl/b.h")),
            ])
        error = ctx.exception
        self.assertEqual(error.kind, "headers")
        self.assertEqual(error.ref_target.arch, "arm64")
        self.assertEqual(error.current_target.arch, "arm64e")
        self.assertEqual(error.diff, {"only_in_ref": [], "only_in_current": ["include/openssl/b.h"]})

    def test_library_mismatch(self):
        with self.assertRaises(InconsistentArtifactsError) as ctx:
            validate_group_consistency([
                self.built("arm64", libs=("lib/libcrypto.a", "lib/libssl.a")),
                self.built("arm64e"),
            ])
        self.assertEqual(ctx.exception.kind, "static libraries")
        self.assertEqual(ctx.exception.diff["only_in_ref"], ["lib/libssl.a"])


class MergerTestCase(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.paths = BuildPaths.create(
            product_name="COpenSSL",
            files_dir=os.path.join(self.tmp.name, "files"),
            work_dir=os.path.join(self.tmp.name, "work"),
            result_dir=None,
            developer_dir=FAKE_DEVELOPER_DIR,
        )
        self.runner = FakeCommandRunner()
        self.targets = [Target.parse("iOS-iOS_Simulator-arm64"), Target.parse("iOS-iOS_Simulator-x86_64")]
        self.group = self.targets[0].group
        self.built = [self.make_built(t) for t in self.targets]

    def make_built(self, target):
        install_dir = self.paths.install_dir(target)
        libs = ("lib/libcrypto.a", "lib/libssl.a")
        for lib in libs:
            _write(os.path.join(install_dir, lib), f"{os.path.basename(lib)}-{target.arch}".encode())
        return BuiltTarget(
            target=target,
            source_dir=self.paths.source_dir(target),
            install_dir=install_dir,
            static_libraries=libs,
        )

    def merger(self, **kwargs):
        return ArtifactMerger(self.paths, self.runner, **kwargs)


class TestStaticMerge(MergerTestCase):
    """Test FAT static lib creation and static lib merging."""

    def test_fat_static_libs(self):
        fat_libs = self.merger().build_group_fat_static_libs(self.group, self.built)
        self.assertEqual(
            fat_libs,
            [
                self.paths.fat_static_lib_path(self.group, "lib/libcrypto.a"),
                self.paths.fat_static_lib_path(self.group, "lib/libssl.a"),
            ],
        )
        self.assertEqual(_read(fat_libs[0]), b"FAT:libcrypto.a-arm64|libcrypto.a-x86_64")
        lipo = self.runner.calls("lipo")[0]
        self.assertEqual(
            lipo.args,
            ["xcrun", "lipo", "-create"]
            + [b.absolute("lib/libcrypto.a") for b in self.built]
            + ["-output", fat_libs[0]],
        )

    def test_merge_static_libs(self):
        merger = self.merger()
        fat_libs = merger.build_group_fat_static_libs(self.group, self.built)
        dest = self.paths.merged_static_lib_path(self.group)
        self.assertEqual(merger.merge_static_libraries(fat_libs, dest), dest)
        self.assertEqual(self.runner.calls("libtool")[0].args, ["xcrun", "libtool", "-static", "-o", dest] + fat_libs)
        self.assertTrue(_read(dest).startswith(b"MERGED:FAT:libcrypto.a-arm64"))

    def test_empty_inputs_do_nothing(self):
        merger = self.merger()
        dest = self.paths.merged_static_lib_path(self.group)
        with self.assertLogs("xcfbuild.build_scripts.merge_libs", level="WARNING"):
            self.assertIsNone(merger.merge_static_libraries([], dest))
        with self.assertLogs("xcfbuild.build_scripts.merge_libs", level="WARNING"):
            self.assertIsNone(merger.build_fat_library([], dest))
        self.assertEqual(self.runner.commands, [])
        self.assertFalse(os.path.exists(dest))

    def test_destination_is_rebuilt(self):
        dest = self.paths.merged_static_lib_path(self.group)
        _write(dest, b"stale")
        self.merger().merge_static_libraries([self.built[0].absolute("lib/libssl.a")], dest)
        self.assertEqual(_read(dest), b"MERGED:libssl.a-arm64")

    def test_skip_existing(self):
        dest = self.paths.merged_static_lib_path(self.group)
        _write(dest, b"previous")
        merger = self.merger(skip_existing=True)
        self.assertEqual(merger.merge_static_libraries([self.built[0].absolute("lib/libssl.a")], dest), dest)
        self.assertEqual(_read(dest), b"previous")
        self.assertEqual(self.runner.commands, [])


class TestDynamicLibrary(MergerTestCase):
    """Test dylib synthesis from static lib objects."""

    def test_extract_objects(self):
        objects_dir = self.merger().extract_objects(self.built[0])
        self.assertEqual(objects_dir, self.paths.lib_objects_dir_for(self.targets[0]))
        self.assertEqual(sorted(os.listdir(objects_dir)), ["libcrypto-obj.o", "libssl-obj.o"])
        for command in self.runner.calls("ar"):
            self.assertEqual(command.cwd, objects_dir)
            self.assertEqual(command.args[:3], ["xcrun", "ar", "-x"])

    def test_link(self):
        dylib = self.merger().build_dynamic_library(self.built[0], "1.1.1k")
        self.assertEqual(dylib, self.paths.dylib_path(self.targets[0]))
        self.assertEqual(_read(dylib), b"DYLIB:arm64")

        objects_dir = self.paths.lib_objects_dir_for(self.targets[0])
        ld = self.runner.calls("ld")[0]
        syslibroot = os.path.join(
            FAKE_DEVELOPER_DIR, "Platforms", "iPhoneSimulator.platform", "Developer", "SDKs", "iPhoneSimulator.sdk",
        )
        self.assertEqual(
            ld.args,
            [
                "xcrun", "ld",
                os.path.join(objects_dir, "libcrypto-obj.o"),
                os.path.join(objects_dir, "libssl-obj.o"),
                "-dylib", "-lSystem",
                "-application_extension",
                "-arch", "arm64",
                "-platform_version", "ios-simulator", "12.0", "14.5",
                "-syslibroot", syslibroot,
                "-compatibility_version", "1.1.111",
                "-current_version", "1.1.111",
                "-o", dylib,
            ],
        )

    def test_link_with_bitcode(self):
        self.runner.otool = lambda lib: otool_output(lib, bitcode=True)
        self.merger().build_dynamic_library(self.built[0], "1.1.1k")
        self.assertIn("-bitcode_bundle", self.runner.calls("ld")[0].args)

    def test_disable_bitcode(self):
        self.runner.otool = lambda lib: otool_output(lib, bitcode=True)
        self.merger(disable_bitcode=True).build_dynamic_library(self.built[0], "1.1.1k")
        self.assertNotIn("-bitcode_bundle", self.runner.calls("ld")[0].args)

    def test_skip_existing(self):
        merger = self.merger(skip_existing=True)
        merger.build_dynamic_libraries(self.built, "1.1.1k")
        count = len(self.runner.commands)
        self.assertEqual(len(self.runner.calls("ld")), 2)
        merger.build_dynamic_libraries(self.built, "1.1.1k")
        self.assertEqual(len(self.runner.commands), count)


if __name__ == "__main__":
    unittest.main()
