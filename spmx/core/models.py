"""Immutable value types passed between pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Literal

__all__ = [
    "PackageProduct",
    "PackageDump",
    "PlatformBuildTarget",
    "BUILD_TARGETS",
    "SliceStatus",
    "SliceBuildResult",
    "BuiltProduct",
    "ProductBuildFailure",
    "FrameworkBuildResult",
    "DependencyKind",
    "ExportedDependency",
    "ExportResult",
    "SourceMetadata",
]


@dataclass(frozen=True, slots=True)
class PackageProduct:
    name: str
    is_library: bool
    library_type: str = "automatic"

    @property
    def is_static(self) -> bool:
        return self.library_type.lower() == "static"


@dataclass(frozen=True, slots=True)
class PackageDump:
    """Projection of ``swift package dump-package`` output.

    Attributes:
        name: Package name.
        platforms: Declared platform names, lower-cased. Empty means the
            package does not restrict platforms.
        products: Products in declaration order.
    """

    name: str
    platforms: frozenset[str] = frozenset()
    products: tuple[PackageProduct, ...] = ()

    @property
    def library_products(self) -> tuple[PackageProduct, ...]:
        return tuple(p for p in self.products if p.is_library)

    def declares(self, platform: str) -> bool:
        """True if ``platform`` is declared, or nothing is declared at all."""
        return not self.platforms or platform in self.platforms


@dataclass(frozen=True, slots=True)
class PlatformBuildTarget:
    """One buildable slice of a product.

    Attributes:
        key: Slice key recorded in the manifest (``ios``, ``macos``, ...).
        destination: Value passed to ``xcodebuild -destination``.
        output_dirs: Candidate ``Build/Products`` sub-directories.
        required_platforms: The package must declare one of these (or none at all).
    """

    key: str
    destination: str
    output_dirs: tuple[str, ...]
    required_platforms: tuple[str, ...]

    def is_supported_by(self, dump: PackageDump) -> bool:
        if not dump.platforms:
            return True
        return any(p in dump.platforms for p in self.required_platforms)


BUILD_TARGETS: tuple[PlatformBuildTarget, ...] = (
    PlatformBuildTarget("ios", "generic/platform=iOS", ("Release-iphoneos",), ("ios",)),
    PlatformBuildTarget(
        "ios-simulator",
        "generic/platform=iOS Simulator",
        ("Release-iphonesimulator",),
        ("ios",),
    ),
    PlatformBuildTarget(
        "macos",
        "generic/platform=macOS",
        ("Release", "Release-macosx"),
        ("macos",),
    ),
    PlatformBuildTarget(
        "maccatalyst",
        "generic/platform=macOS,variant=Mac Catalyst",
        ("Release-maccatalyst",),
        ("ios", "macos"),
    ),
)


class SliceStatus(Enum):
    BUILT = "built"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class SliceBuildResult:
    """Outcome of building one product for one target."""

    target: str
    status: SliceStatus
    artifact_kind: Literal["framework", "library"] | None = None
    artifact_path: Path | None = None
    headers_path: Path | None = None
    symbol_paths: tuple[Path, ...] = ()
    message: str | None = None

    @property
    def is_built(self) -> bool:
        return self.status is SliceStatus.BUILT


@dataclass(frozen=True, slots=True)
class BuiltProduct:
    name: str
    source_package_path: Path
    library_type: str
    xcframework_path: Path
    slices: tuple[SliceBuildResult, ...]
    symbol_paths: tuple[Path, ...] = ()

    @property
    def built_slices(self) -> tuple[str, ...]:
        return tuple(s.target for s in self.slices if s.is_built)


@dataclass(frozen=True, slots=True)
class ProductBuildFailure:
    name: str
    source_package_path: Path
    library_type: str
    reason: str


@dataclass(frozen=True, slots=True)
class FrameworkBuildResult:
    built_products: tuple[BuiltProduct, ...] = ()
    failures: tuple[ProductBuildFailure, ...] = ()


DependencyKind = Literal["xcframework", "binary-xcframework", "build-failure"]


@dataclass(frozen=True, slots=True)
class ExportedDependency:
    """One manifest row."""

    name: str
    identity: str
    source_path: str
    output_path: str
    kind: DependencyKind
    source_url: str | None = None
    version: str | None = None
    revision: str | None = None
    branch: str | None = None
    symbol_paths: tuple[str, ...] = ()
    built_slices: tuple[str, ...] | None = None
    error: str | None = None

    @property
    def is_failure(self) -> bool:
        return self.kind == "build-failure"


@dataclass(frozen=True, slots=True)
class ExportResult:
    output_path: Path
    manifest_path: Path
    exported_count: int
    exported_paths: tuple[Path, ...] = field(default_factory=tuple)


@dataclass(frozen=True, slots=True)
class SourceMetadata:
    """Where built products came from, recorded on their manifest rows."""

    url: str | None = None
    version: str | None = None
    branch: str | None = None
    revision: str | None = None
