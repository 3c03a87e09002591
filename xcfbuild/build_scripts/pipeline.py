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
The whole build, from the source tarball to the xcframeworks.

Steps:
1. Download the tarball (at most once)
2. Build every target (optionally several at a time)
3. For every platform/sdk group: validate the artifacts, build the FAT and
   merged libs, merge the headers, assemble the framework and static bundle
4. Create the static and dynamic xcframeworks
5. Optionally archive them and write Package.swift
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import requests

from xcfbuild.build_scripts.build_framework import PackageAssembler, StaticBundle
from xcfbuild.build_scripts.build_target import BuiltTarget, SingleTargetBuilder
from xcfbuild.build_scripts.introspect import BinaryIntrospector, SdkVersionResolution
from xcfbuild.build_scripts.merge_headers import HeaderMerger, include_rewrite_patch
from xcfbuild.build_scripts.merge_libs import ArtifactMerger, validate_group_consistency
from xcfbuild.model.build_paths import DYNAMIC_FLAVOR, STATIC_FLAVOR, BuildPaths
from xcfbuild.model.target import PlatformSdkGroup, Target, group_targets
from xcfbuild.model.tarball import Tarball
from xcfbuild.utils.apple.spm import SPMPackager
from xcfbuild.utils.apple.templates import TemplateRenderer
from xcfbuild.utils.cmd.cmd_util import CommandRunner
from xcfbuild.utils.config import BuildConfig
from xcfbuild.utils.fs import FileManager

log = logging.getLogger(__name__)


@dataclass
class GroupResult:
    group: PlatformSdkGroup
    targets: List[Target]
    framework: Optional[str] = None
    static_bundle: Optional[StaticBundle] = None


@dataclass
class PipelineResult:
    paths: BuildPaths
    groups: List[GroupResult] = field(default_factory=list)
    static_xcframework: Optional[str] = None
    dynamic_xcframework: Optional[str] = None
    package_swift: Optional[str] = None


class XCFrameworkPipeline:
    """
    Drives the build of the xcframeworks for a configuration.

    Args:
        config: The build configuration
        runner: Runner for all the external processes
        fm: File manager
        session: requests session for the tarball download
        renderer: Bundle metadata renderer (default: the files_path templates)
    """

    def __init__(
        self,
        config: BuildConfig,
        runner: Optional[CommandRunner] = None,
        fm: Optional[FileManager] = None,
        session: Optional[requests.Session] = None,
        renderer: Optional[TemplateRenderer] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.log = logger or log
        self.runner = runner or CommandRunner(self.log)
        self.fm = fm or FileManager()
        self.session = session
        self.renderer = renderer

    def resolve_developer_dir(self) -> str:
        if self.config.developer_dir:
            return self.config.developer_dir
        return self.runner.get_output(["xcode-select", "-print-path"]).strip()

    def create_paths(self) -> BuildPaths:
        return BuildPaths.create(
            product_name=self.config.product_name,
            files_dir=self.config.files_path,
            work_dir=self.config.workdir,
            result_dir=self.config.resultdir,
            developer_dir=self.resolve_developer_dir(),
        )

    def run(self) -> PipelineResult:
        config = self.config
        paths = self.create_paths()
        self.log.info("Developer dir: %s", paths.developer_dir)

        if config.clean:
            self.log.info("Cleaning previous build in %s", paths.work_dir)
            paths.clean(self.fm)
        paths.ensure_all_directories_exist(self.fm)

        tarball = Tarball.from_template(
            config.openssl_base_url,
            config.openssl_version,
            paths.work_dir,
            expected_shasum=config.expected_tarball_shasum,
            session=self.session,
            fm=self.fm,
            logger=self.log,
        )
        tarball.ensure_downloaded()

        built_targets = self.build_targets(paths, tarball)

        introspector = BinaryIntrospector(self.runner, self.log)
        merger = ArtifactMerger(
            paths, self.runner, introspector, self.fm,
            skip_existing=config.skip_existing_artifacts,
            disable_bitcode=config.disable_bitcode,
            sdk_version_resolution=config.sdk_version_resolution,
            logger=self.log,
        )
        header_merger = HeaderMerger(self.fm, config.skip_existing_artifacts, self.log)
        assembler = PackageAssembler(
            paths, self.runner,
            renderer=self.renderer,
            fm=self.fm,
            skip_existing=config.skip_existing_artifacts,
            bundle_id_prefix=config.bundle_id_prefix,
            build_version=config.build_version,
            logger=self.log,
        )

        result = PipelineResult(paths=paths)
        frameworks: Dict[PlatformSdkGroup, str] = {}
        static_bundles: Dict[PlatformSdkGroup, StaticBundle] = {}
        for group, group_built in self.group_built_targets(built_targets).items():
            group_result = self.build_group(group, group_built, paths, merger, introspector, header_merger, assembler)
            result.groups.append(group_result)
            if group_result.framework:
                frameworks[group] = group_result.framework
            if group_result.static_bundle:
                static_bundles[group] = group_result.static_bundle

        result.static_xcframework = assembler.build_xcframework_static(static_bundles)
        result.dynamic_xcframework = assembler.build_xcframework_dynamic(frameworks)

        if config.package:
            packager = SPMPackager(
                paths, self.runner, self.fm,
                url_template=config.package_url_template,
                skip_existing=config.skip_existing_artifacts,
                logger=self.log,
            )
            result.package_swift = packager.build_package(config.openssl_version)
        return result

    def target_builder(self, target: Target, paths: BuildPaths, tarball: Tarball) -> SingleTargetBuilder:
        config = self.config
        return SingleTargetBuilder(
            target, tarball, paths, config.openssl_version, self.runner,
            fm=self.fm,
            sdk_version=config.sdk_version_for(target),
            min_sdk_version=config.min_sdk_version_for(target),
            disable_bitcode=config.disable_bitcode,
            skip_existing=config.skip_existing_artifacts,
            library_name=config.library_name,
            logger=self.log,
        )

    def build_targets(self, paths: BuildPaths, tarball: Tarball) -> List[BuiltTarget]:
        """Build all the targets; the results are in the order of the targets."""
        builders = [self.target_builder(t, paths, tarball) for t in self.config.targets]
        workers = min(self.config.parallel_targets, len(builders))
        if workers <= 1:
            return [b.build() for b in builders]
        self.log.info("Building %d targets, %d at a time", len(builders), workers)
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(lambda b: b.build(), builders))

    @staticmethod
    def group_built_targets(built_targets: List[BuiltTarget]) -> Dict[PlatformSdkGroup, List[BuiltTarget]]:
        by_target = {b.target: b for b in built_targets}
        return {
            group: [by_target[t] for t in targets]
            for group, targets in group_targets(b.target for b in built_targets).items()
        }

    def build_group(
        self,
        group: PlatformSdkGroup,
        group_built: List[BuiltTarget],
        paths: BuildPaths,
        merger: ArtifactMerger,
        introspector: BinaryIntrospector,
        header_merger: HeaderMerger,
        assembler: PackageAssembler,
    ) -> GroupResult:
        config = self.config
        self.log.info("Merging artifacts of %s (%s)", group, ", ".join(b.target.arch for b in group_built))
        validate_group_consistency(group_built)
        result = GroupResult(group=group, targets=[b.target for b in group_built])

        fat_static_libs = merger.build_group_fat_static_libs(group, group_built)
        merged_static_lib = merger.merge_static_libraries(fat_static_libs, paths.merged_static_lib_path(group))

        dylibs = merger.build_dynamic_libraries(group_built, config.openssl_version) if fat_static_libs else []
        fat_dylib = merger.build_fat_library(dylibs, paths.fat_dylib_path(group))

        headers_dirs = {}
        for flavor, modular in ((STATIC_FLAVOR, False), (DYNAMIC_FLAVOR, True)):
            headers_dir = paths.merged_headers_dir_for(group, flavor)
            if not config.skip_existing_artifacts:
                # headers no longer installed must not survive a rebuild
                self.fm.ensure_directory_deleted(headers_dir)
            patches = [include_rewrite_patch(config.library_name, config.product_name, modular)]
            headers = header_merger.merge_group_headers(group_built, patches, headers_dir, config.library_name)
            header_merger.build_umbrella_header(
                headers, config.product_name, modular,
                os.path.join(headers_dir, f"{config.product_name}.h"),
            )
            self.fm.ensure_directory(headers_dir)
            headers_dirs[flavor] = headers_dir

        if fat_dylib:
            # the least restrictive min OS of the group archs
            all_static_libs = [lib for b in group_built for lib in b.absolute_static_libraries]
            min_os = introspector.get_sdk_versions(all_static_libs, SdkVersionResolution.MIN).min_sdk
            result.framework = assembler.build_framework(
                group, fat_dylib, headers_dirs[DYNAMIC_FLAVOR], config.openssl_version, min_os,
            )
        else:
            self.log.warning("No dynamic lib for %s; not creating its framework", group)

        if merged_static_lib:
            result.static_bundle = assembler.build_static_bundle(group, merged_static_lib, headers_dirs[STATIC_FLAVOR])
        else:
            self.log.warning("No static lib for %s; not creating its static bundle", group)
        return result
