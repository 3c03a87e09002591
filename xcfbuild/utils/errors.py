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
Error model for xcfbuild.

Every failure of the pipeline is fatal and surfaces as one of the kinds below.
Each error carries a stable code, an optional hint and a context mapping that
is printed by the CLI when the build aborts.
"""

from typing import Dict, Iterable, Mapping, Optional


class XcfBuildError(Exception):
    """Base error class that carries code, optional hint, and context."""

    code = "E_XCFBUILD"

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        context: Optional[Mapping[str, object]] = None,
    ):
        super().__init__(message)
        self.hint = hint
        self.context: Dict[str, str] = {
            k: str(v) for k, v in (context or {}).items()
        }

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        for k, v in self.context.items():
            if v:
                parts.append(f"  {k}: {v}")
        return "\n".join(parts)

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "code": self.code,
            "message": str(self),
            "context": dict(self.context),
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        return payload


# region Configuration


class ConfigurationError(XcfBuildError):
    code = "E_CONFIGURATION"


class InvalidURLError(ConfigurationError):
    def __init__(self, url: str):
        super().__init__(
            "Tarball URL is not valid.",
            hint="Check --openssl-base-url; the version placeholder is written {{ version }}.",
            context={"url": url},
        )
        self.url = url


class InvalidVersionError(ConfigurationError):
    def __init__(self, version: str):
        super().__init__("Invalid version string.", context={"version": version})
        self.version = version


class InvalidProductNameError(ConfigurationError):
    def __init__(self, product_name: str):
        super().__init__(
            "Invalid product name.",
            hint="Only ASCII letters, digits and underscores are allowed.",
            context={"product_name": product_name},
        )
        self.product_name = product_name


class InvalidTargetError(ConfigurationError):
    def __init__(self, value: str):
        super().__init__(
            "Invalid target.",
            hint="A target is written sdk-platform-arch, e.g. iOS-iOS_Simulator-arm64.",
            context={"target": value},
        )
        self.value = value


class NoConfigForVersionError(ConfigurationError):
    def __init__(self, version: str, configs_dir: object):
        super().__init__(
            "No build configuration found for version.",
            hint="Add a configuration directory for this version (or a less specific one).",
            context={"version": version, "configs_dir": configs_dir},
        )
        self.version = version


# endregion
# region Network / integrity


class NetworkError(XcfBuildError):
    code = "E_NETWORK"


class DownloadError(NetworkError):
    def __init__(self, url: str, reason: str, status_code: Optional[int] = None):
        super().__init__(
            f"Download failed: {reason}",
            context={"url": url, "status": "" if status_code is None else status_code},
        )
        self.url = url
        self.status_code = status_code


class IntegrityError(XcfBuildError):
    code = "E_INTEGRITY"


class ChecksumMismatchError(IntegrityError):
    def __init__(self, path_or_url: str, expected: str, actual: str):
        super().__init__(
            "Downloaded content hash mismatch.",
            hint="Update --expected-tarball-shasum or the source URL.",
            context={"source": path_or_url, "expected": expected, "actual": actual},
        )
        self.expected = expected
        self.actual = actual


# endregion
# region External tools


class ExternalToolError(XcfBuildError):
    code = "E_EXTERNAL_TOOL"

    def __init__(self, args: Iterable[str], returncode: int, message: Optional[str] = None):
        self.args_list = [str(a) for a in args]
        self.returncode = returncode
        super().__init__(
            message or f"Command failed with status {returncode}: {self.args_list[0] if self.args_list else '?'}",
            context={"command": " ".join(self.args_list), "status": returncode},
        )


class BuildFailedError(ExternalToolError):
    def __init__(self, target: object, args: Iterable[str], returncode: int):
        super().__init__(args, returncode, message=f"Native build failed for target {target}")
        self.target = target
        self.context["target"] = str(target)


# endregion
# region Consistency


class ConsistencyError(XcfBuildError):
    code = "E_CONSISTENCY"


class InconsistentArtifactsError(ConsistencyError):
    def __init__(self, kind: str, ref_target: object, current_target: object, diff: Mapping[str, Iterable[str]]):
        super().__init__(
            f"Incompatible {kind} between targets of the same platform and sdk.",
            context={
                "ref_target": ref_target,
                "current_target": current_target,
                "only_in_ref": ", ".join(sorted(diff.get("only_in_ref", []))),
                "only_in_current": ", ".join(sorted(diff.get("only_in_current", []))),
            },
        )
        self.kind = kind
        self.ref_target = ref_target
        self.current_target = current_target
        self.diff = {k: sorted(v) for k, v in diff.items()}


class AmbiguousSdkVersionError(ConsistencyError):
    def __init__(self, field: str, values: Iterable[str], libs: Iterable[object]):
        super().__init__(
            f"Found multiple {field} versions.",
            hint="Use --sdk-version-resolution min or max to pick one.",
            context={"values": ", ".join(sorted(values)), "libs": ", ".join(str(l) for l in libs)},
        )
        self.field = field
        self.values = sorted(values)


class NoSdkVersionFoundError(ConsistencyError):
    def __init__(self, field: str, libs: Iterable[object]):
        super().__init__(
            f"Cannot get {field} version from binaries.",
            context={"libs": ", ".join(str(l) for l in libs)},
        )
        self.field = field


# endregion
# region Filesystem


class FilesystemError(XcfBuildError):
    code = "E_FILESYSTEM"


class ExtractionError(FilesystemError):
    def __init__(self, expected_path: object):
        super().__init__(
            "Extracted tarball not found.",
            context={"expected_path": expected_path},
        )
        self.expected_path = expected_path


class ExpectedDirectoryError(FilesystemError):
    def __init__(self, path: object):
        super().__init__("Expected a directory, found a file.", context={"path": path})
        self.path = path


class ExpectedFileError(FilesystemError):
    def __init__(self, path: object):
        super().__init__("Expected a file, found a directory.", context={"path": path})
        self.path = path


# endregion

__all__ = [
    "AmbiguousSdkVersionError",
    "BuildFailedError",
    "ChecksumMismatchError",
    "ConfigurationError",
    "ConsistencyError",
    "DownloadError",
    "ExpectedDirectoryError",
    "ExpectedFileError",
    "ExternalToolError",
    "ExtractionError",
    "FilesystemError",
    "InconsistentArtifactsError",
    "IntegrityError",
    "InvalidProductNameError",
    "InvalidTargetError",
    "InvalidURLError",
    "InvalidVersionError",
    "NetworkError",
    "NoConfigForVersionError",
    "NoSdkVersionFoundError",
    "XcfBuildError",
]
