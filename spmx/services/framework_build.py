"""Framework build engine.

Builds every library product of a Swift package into an XCFramework:
- reads the package description (``swift package dump-package``),
- lists Xcode schemes (``xcodebuild -list -json``),
- builds up to four platform slices per product, walking an ordered list of
  linkage plans until one produces an artifact,
- assembles the built slices with ``xcodebuild -create-xcframework``.

Per-slice and per-product failures are reported as data. Only faults that
make the whole package unbuildable (unreadable package description) are
returned as ``Err``.
"""

from __future__ import annotations

import shutil
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from spmx.core.config import Timeouts, format_duration
from spmx.core.errors import ResolveError
from spmx.core.models import (
    BUILD_TARGETS,
    BuiltProduct,
    FrameworkBuildResult,
    PackageDump,
    PackageProduct,
    PlatformBuildTarget,
    ProductBuildFailure,
    SliceBuildResult,
    SliceStatus,
)
from spmx.core.result import Err, Ok, Result
from spmx.core.structured import (
    as_obj_list,
    as_str_dict,
    get_list,
    get_str,
    get_table,
    parse_json_object,
)
from spmx.output.events import NullEventSink
from spmx.platform.cancel import raise_if_cancelled
from spmx.platform.files import unique_child_path

from .schemes import resolve_scheme, sanitize_identity

if TYPE_CHECKING:
    from spmx.output.events import EventSink
    from spmx.platform.cancel import CancelToken
    from spmx.platform.process import ProcessError, ProcessRunner

__all__ = [
    "DYNAMIC_PLANS",
    "STATIC_PLANS",
    "FrameworkBuilder",
    "SchemeDiscovery",
    "SliceArtifact",
    "SliceBuildPlan",
    "failure_summary",
    "gather_symbol_paths",
    "is_macro_flag_unsupported",
    "parse_package_dump",
    "parse_scheme_list",
    "plans_for",
    "slice_build_args",
]

MACRO_VALIDATION_FLAG = "-skipMacroValidation"
NO_SLICES_PREFIX = "No buildable slices were produced."
CREATE_FAILED_PREFIX = "Failed to create XCFramework."
UNSUPPORTED_TARGET_MESSAGE = "Package does not declare support for this target."
NO_ARTIFACT_MESSAGE = "Build completed but no framework or static library artifacts were found."


# -----------------------------------------------------------------------------
# Plans
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SliceBuildPlan:
    """One linkage attempt for a slice.

    Attributes:
        force_dynamic: Pass ``MACH_O_TYPE=mh_dylib``.
        distribution: ``BUILD_LIBRARY_FOR_DISTRIBUTION=YES``.
        success_message: Recorded on the slice when this (fallback) plan wins.
    """

    force_dynamic: bool
    distribution: bool
    success_message: str | None = None


DYNAMIC_PLANS: tuple[SliceBuildPlan, ...] = (
    SliceBuildPlan(force_dynamic=True, distribution=True),
    SliceBuildPlan(
        force_dynamic=False,
        distribution=True,
        success_message="Dynamic build was unavailable; used package default linkage.",
    ),
    SliceBuildPlan(
        force_dynamic=True,
        distribution=False,
        success_message="Build-for-distribution was unavailable; used compatibility mode.",
    ),
    SliceBuildPlan(
        force_dynamic=False,
        distribution=False,
        success_message=(
            "Dynamic build and build-for-distribution were unavailable; used compatibility mode."
        ),
    ),
)

STATIC_PLANS: tuple[SliceBuildPlan, ...] = (
    SliceBuildPlan(force_dynamic=False, distribution=True),
    SliceBuildPlan(
        force_dynamic=False,
        distribution=False,
        success_message="Build-for-distribution was unavailable; used compatibility mode.",
    ),
)


def plans_for(product: PackageProduct) -> tuple[SliceBuildPlan, ...]:
    """Static products never force dynamic linkage."""
    return STATIC_PLANS if product.is_static else DYNAMIC_PLANS


def slice_build_args(
    scheme: str,
    target: PlatformBuildTarget,
    derived_data: Path,
    plan: SliceBuildPlan,
    *,
    skip_macro_validation: bool = True,
) -> list[str]:
    """Full ``xcodebuild`` command line for one slice attempt."""
    args = [
        "xcodebuild",
        "-scheme",
        scheme,
        "-destination",
        target.destination,
        "-configuration",
        "Release",
        "-derivedDataPath",
        str(derived_data),
        "-skipPackagePluginValidation",
    ]
    if skip_macro_validation:
        args.append(MACRO_VALIDATION_FLAG)
    args += [
        "-quiet",
        "SKIP_INSTALL=NO",
        f"BUILD_LIBRARY_FOR_DISTRIBUTION={'YES' if plan.distribution else 'NO'}",
        "DEBUG_INFORMATION_FORMAT=dwarf-with-dsym",
    ]
    if plan.force_dynamic:
        args.append("MACH_O_TYPE=mh_dylib")
    args.append("build")
    return args


def is_macro_flag_unsupported(output: str) -> bool:
    """True when xcodebuild rejected ``-skipMacroValidation`` (older Xcode)."""
    lower = output.lower()
    flag = MACRO_VALIDATION_FLAG.lower()
    return any(
        f"{word} option '{flag}'" in lower for word in ("invalid", "unknown", "unrecognized")
    )


# -----------------------------------------------------------------------------
# Tool output parsing
# -----------------------------------------------------------------------------


def _parse_product(data: object) -> PackageProduct | None:
    product = as_str_dict(data)
    if product is None:
        return None
    name = get_str(product, "name")
    if name is None:
        return None
    product_type = get_table(product, "type") or {}
    library = get_list(product_type, "library") or []
    kinds = [k for k in library if isinstance(k, str) and k]
    if not kinds:
        return PackageProduct(name=name, is_library=False)
    return PackageProduct(name=name, is_library=True, library_type=kinds[0])


def parse_package_dump(text: str) -> PackageDump | None:
    """Parse ``swift package dump-package`` JSON.

    Returns:
        PackageDump, or None when the output has no usable package name.
    """
    data = parse_json_object(text)
    if data is None:
        return None
    name = get_str(data, "name")
    if name is None:
        return None

    platforms: set[str] = set()
    for entry in as_obj_list(data.get("platforms")) or []:
        platform = as_str_dict(entry)
        platform_name = get_str(platform, "platformName") if platform else None
        if platform_name:
            platforms.add(platform_name.lower())

    products = tuple(
        p for p in (_parse_product(item) for item in as_obj_list(data.get("products")) or []) if p
    )
    return PackageDump(name=name, platforms=frozenset(platforms), products=products)


def parse_scheme_list(text: str) -> frozenset[str] | None:
    """Union of workspace and project schemes from ``xcodebuild -list -json``."""
    data = parse_json_object(text)
    if data is None:
        return None
    schemes: set[str] = set()
    for section in ("workspace", "project"):
        table = get_table(data, section)
        if table is None:
            continue
        for scheme in get_list(table, "schemes") or []:
            if isinstance(scheme, str) and scheme.strip():
                schemes.add(scheme.strip())
    return frozenset(schemes)


@dataclass(frozen=True, slots=True)
class SchemeDiscovery:
    schemes: frozenset[str] = frozenset()
    timed_out: bool = False
    failure: str | None = None

    def missing_reason(self) -> str:
        """Why no scheme could be chosen for a product."""
        if self.timed_out:
            return "Scheme discovery timed out while running xcodebuild -list."
        if self.failure:
            return f"Scheme discovery failed: {self.failure}"
        return "No matching Xcode scheme was found for this product."


# -----------------------------------------------------------------------------
# Artifacts
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SliceArtifact:
    kind: Literal["framework", "library"]
    path: Path
    headers_path: Path | None = None
    symbol_paths: tuple[Path, ...] = ()


@dataclass(frozen=True, slots=True)
class _Attempt:
    artifact: SliceArtifact | None = None
    error: str | None = None
    timed_out: bool = False


def _dedupe(paths: list[Path]) -> tuple[Path, ...]:
    seen: set[str] = set()
    unique: list[Path] = []
    for path in paths:
        key = str(path).lower()
        if key not in seen:
            seen.add(key)
            unique.append(path)
    return tuple(unique)


def gather_symbol_paths(products_dir: Path, product: str) -> tuple[Path, ...]:
    """dSYM bundles and BCSymbolMaps next to a built artifact."""
    paths: list[Path] = []
    for name in (f"{product}.framework.dSYM", f"{product}.dSYM"):
        if (products_dir / name).is_dir():
            paths.append(products_dir / name)
    paths += sorted(p for p in products_dir.glob("*.dSYM") if p.is_dir())

    maps_dir = products_dir / "BCSymbolMaps"
    if maps_dir.is_dir():
        paths += sorted(p for p in maps_dir.glob("*.bcsymbolmap") if p.is_file())
    return _dedupe(paths)


def failure_summary(slices: Sequence[SliceBuildResult], prefix: str) -> str:
    """``prefix`` followed by ``key: message`` of every failed slice."""
    failed = [f"{s.target}: {s.message}" for s in slices if s.status is SliceStatus.FAILED]
    if not failed:
        return prefix
    return f"{prefix} {' | '.join(failed)}"


def _first_match(root: Path, name: str, *, want_dir: bool) -> Path | None:
    for path in sorted(root.rglob(name)):
        if path.is_dir() if want_dir else path.is_file():
            return path
    return None


# -----------------------------------------------------------------------------
# Builder
# -----------------------------------------------------------------------------


class FrameworkBuilder:
    """Builds XCFrameworks for every library product of a package."""

    def __init__(
        self,
        runner: ProcessRunner,
        *,
        events: EventSink | None = None,
        timeouts: Timeouts | None = None,
    ) -> None:
        self._runner = runner
        self._events: EventSink = events or NullEventSink()
        self._timeouts = timeouts or Timeouts()

    def build(
        self,
        package_root: Path,
        scratch_dir: Path,
        *,
        cancel: CancelToken | None = None,
    ) -> Result[FrameworkBuildResult, ResolveError]:
        """Build all library products.

        Returns:
            Ok(FrameworkBuildResult) holding built products and per-product
            failures; Err(ResolveError) if the package cannot be described.

        Raises:
            OperationCancelled: If ``cancel`` fires.
        """
        dump = self.load_package_dump(package_root, cancel=cancel)
        if isinstance(dump, Err):
            return dump
        package = dump.value
        discovery = self.discover_schemes(package_root, cancel=cancel)

        products = package.library_products
        self._events.info(f"Discovered {len(products)} buildable library product(s).")

        built: list[BuiltProduct] = []
        failures: list[ProductBuildFailure] = []
        for index, product in enumerate(products, start=1):
            raise_if_cancelled(cancel)
            self._events.product_started(index, len(products), product.name, product.library_type)

            scheme = resolve_scheme(product.name, package, discovery.schemes)
            if scheme is None:
                failures.append(
                    ProductBuildFailure(
                        name=product.name,
                        source_package_path=package_root,
                        library_type=product.library_type,
                        reason=discovery.missing_reason(),
                    )
                )
                continue

            built_product = self.build_product(
                package_root, scratch_dir, package, product, scheme, cancel=cancel
            )
            match built_product:
                case Ok(product_result):
                    built.append(product_result)
                case Err(failure):
                    failures.append(failure)

        return Ok(FrameworkBuildResult(built_products=tuple(built), failures=tuple(failures)))

    def load_package_dump(
        self, package_root: Path, *, cancel: CancelToken | None = None
    ) -> Result[PackageDump, ResolveError]:
        result = self._runner.run(
            ["swift", "package", "--package-path", str(package_root), "dump-package"],
            cwd=package_root,
            timeout=self._timeouts.dump_package,
            cancel=cancel,
        )
        match result:
            case Err(e) if e.timed_out:
                return Err(
                    ResolveError(
                        "timeout",
                        "Timed out running 'swift package dump-package' after "
                        f"{format_duration(self._timeouts.dump_package)}.",
                    )
                )
            case Err(e) if e.kind in ("not_found", "start_failed"):
                return Err(ResolveError("tool_missing", e.describe()))
            case Err(e):
                return Err(ResolveError("command_failed", e.describe()))
            case Ok(stdout):
                dump = parse_package_dump(stdout)
                if dump is None:
                    return Err(
                        ResolveError(
                            "invalid_metadata",
                            f"Failed to parse dump-package output for {package_root}.",
                        )
                    )
                return Ok(dump)

    def discover_schemes(
        self, package_root: Path, *, cancel: CancelToken | None = None
    ) -> SchemeDiscovery:
        """List schemes; failures degrade to an empty set with a reason."""
        result = self._runner.run(
            ["xcodebuild", "-list", "-json"],
            cwd=package_root,
            timeout=self._timeouts.scheme_list,
            cancel=cancel,
        )
        match result:
            case Err(e) if e.timed_out:
                self._events.warning(
                    "Timed out listing schemes after "
                    f"{format_duration(self._timeouts.scheme_list)}."
                )
                return SchemeDiscovery(timed_out=True)
            case Err(e):
                self._events.warning(f"Failed to list Xcode schemes: {e.describe()}")
                return SchemeDiscovery(failure=e.describe())
            case Ok(stdout):
                schemes = parse_scheme_list(stdout)
                if schemes is None:
                    reason = "xcodebuild -list returned invalid JSON."
                    self._events.warning(f"Failed to list Xcode schemes: {reason}")
                    return SchemeDiscovery(failure=reason)
                return SchemeDiscovery(schemes=schemes)

    def build_product(
        self,
        package_root: Path,
        scratch_dir: Path,
        package: PackageDump,
        product: PackageProduct,
        scheme: str,
        *,
        cancel: CancelToken | None = None,
    ) -> Result[BuiltProduct, ProductBuildFailure]:
        """Build every supported slice of ``product`` and assemble them.

        Each product gets its own build root, so names that sanitize to the same
        identity (``Foo.Bar`` and ``Foo-Bar``) never share DerivedData or bundles.
        """

        def failure(reason: str) -> Err[ProductBuildFailure]:
            return Err(
                ProductBuildFailure(
                    name=product.name,
                    source_package_path=package_root,
                    library_type=product.library_type,
                    reason=reason,
                )
            )

        allocated = unique_child_path(
            scratch_dir / "framework-build", sanitize_identity(product.name), keep_extension=False
        )
        if isinstance(allocated, Err):
            return failure(allocated.error.message)
        product_root = allocated.value
        product_root.mkdir(parents=True)

        slices: list[SliceBuildResult] = []
        artifacts: list[SliceArtifact] = []
        for target in BUILD_TARGETS:
            raise_if_cancelled(cancel)
            if not target.is_supported_by(package):
                result = SliceBuildResult(
                    target=target.key,
                    status=SliceStatus.SKIPPED,
                    message=UNSUPPORTED_TARGET_MESSAGE,
                )
            else:
                result, artifact = self.build_slice(
                    package_root, product, scheme, target, product_root, cancel=cancel
                )
                if artifact is not None:
                    artifacts.append(artifact)
            slices.append(result)
            self._events.slice_result(product.name, result)

        if not artifacts:
            return failure(failure_summary(slices, NO_SLICES_PREFIX))

        created = self.create_xcframework(
            package_root, product.name, product_root, artifacts, cancel=cancel
        )
        if isinstance(created, Err):
            return failure(failure_summary(slices, created.error))

        return Ok(
            BuiltProduct(
                name=product.name,
                source_package_path=package_root,
                library_type=product.library_type,
                xcframework_path=created.value,
                slices=tuple(slices),
                symbol_paths=_dedupe([p for a in artifacts for p in a.symbol_paths]),
            )
        )

    def build_slice(
        self,
        package_root: Path,
        product: PackageProduct,
        scheme: str,
        target: PlatformBuildTarget,
        product_root: Path,
        *,
        cancel: CancelToken | None = None,
    ) -> tuple[SliceBuildResult, SliceArtifact | None]:
        """Walk the linkage plans until one yields an artifact.

        A timed-out attempt ends the walk; the remaining plans would run the
        same build again.
        """
        last: _Attempt | None = None
        for plan in plans_for(product):
            attempt = self._try_slice(
                package_root, product.name, scheme, target, product_root, plan, cancel
            )
            if attempt.artifact is not None:
                artifact = attempt.artifact
                return (
                    SliceBuildResult(
                        target=target.key,
                        status=SliceStatus.BUILT,
                        artifact_kind=artifact.kind,
                        artifact_path=artifact.path,
                        headers_path=artifact.headers_path,
                        symbol_paths=artifact.symbol_paths,
                        message=plan.success_message,
                    ),
                    artifact,
                )
            last = attempt
            if attempt.timed_out:
                break

        message = last.error if last is not None and last.error else "Slice build failed."
        return SliceBuildResult(target=target.key, status=SliceStatus.FAILED, message=message), None

    def _try_slice(
        self,
        package_root: Path,
        product: str,
        scheme: str,
        target: PlatformBuildTarget,
        product_root: Path,
        plan: SliceBuildPlan,
        cancel: CancelToken | None,
    ) -> _Attempt:
        slice_root = product_root / target.key
        derived_data = slice_root / "DerivedData"
        slice_root.mkdir(parents=True, exist_ok=True)

        result = self._run_slice_build(
            package_root, slice_build_args(scheme, target, derived_data, plan), cancel
        )
        if isinstance(result, Err):
            if result.error.timed_out:
                return _Attempt(
                    error="Slice build timed out after "
                    f"{format_duration(self._timeouts.slice_build)}.",
                    timed_out=True,
                )
            return _Attempt(error=result.error.describe())

        headers_stub = slice_root / "headers"
        headers_stub.mkdir(parents=True, exist_ok=True)

        found = self.find_slice_artifact(product, target, derived_data, headers_stub, cancel=cancel)
        if isinstance(found, Err):
            return _Attempt(error=found.error, timed_out=True)
        if found.value is None:
            return _Attempt(error=NO_ARTIFACT_MESSAGE)
        return _Attempt(artifact=found.value)

    def _run_slice_build(
        self, package_root: Path, args: list[str], cancel: CancelToken | None
    ) -> Result[str, ProcessError]:
        timeout = self._timeouts.slice_build
        result = self._runner.run(args, cwd=package_root, timeout=timeout, cancel=cancel)
        if (
            isinstance(result, Err)
            and MACRO_VALIDATION_FLAG in args
            and not result.error.timed_out
            and is_macro_flag_unsupported(result.error.output)
        ):
            retry_args = [a for a in args if a != MACRO_VALIDATION_FLAG]
            return self._runner.run(retry_args, cwd=package_root, timeout=timeout, cancel=cancel)
        return result

    def find_slice_artifact(
        self,
        product: str,
        target: PlatformBuildTarget,
        derived_data: Path,
        headers_stub: Path,
        *,
        cancel: CancelToken | None = None,
    ) -> Result[SliceArtifact | None, str]:
        """Locate the framework or static library a slice build produced.

        Returns:
            Ok(artifact or None). Err(message) when synthesizing a static
            library from a lone object file timed out.
        """
        products_root = derived_data / "Build" / "Products"
        for hint in target.output_dirs:
            products_dir = products_root / hint
            if not products_dir.is_dir():
                continue

            framework_name = f"{product}.framework"
            framework = products_dir / framework_name
            if not framework.is_dir():
                framework = _first_match(products_dir, framework_name, want_dir=True) or framework
            if framework.is_dir():
                return Ok(
                    SliceArtifact(
                        kind="framework",
                        path=framework,
                        symbol_paths=gather_symbol_paths(products_dir, product),
                    )
                )

            library_name = f"lib{product}.a"
            library = products_dir / library_name
            object_file = products_dir / f"{product}.o"
            if not library.is_file() and object_file.is_file():
                synthesized = self._ensure_static_library(object_file, product, cancel)
                if isinstance(synthesized, Err):
                    return synthesized
            if not library.is_file():
                library = _first_match(products_dir, library_name, want_dir=False) or library

            if library.is_file():
                headers = products_dir / "include"
                return Ok(
                    SliceArtifact(
                        kind="library",
                        path=library,
                        headers_path=headers if headers.is_dir() else headers_stub,
                        symbol_paths=gather_symbol_paths(products_dir, product),
                    )
                )

        return Ok(None)

    def _ensure_static_library(
        self, object_file: Path, product: str, cancel: CancelToken | None
    ) -> Result[Path | None, str]:
        """Wrap ``<product>.o`` into ``lib<product>.a`` with libtool."""
        library = object_file.parent / f"lib{product}.a"
        result = self._runner.run(
            ["libtool", "-static", "-o", str(library), str(object_file)],
            cwd=object_file.parent,
            timeout=self._timeouts.artifact_discovery,
            cancel=cancel,
        )
        match result:
            case Err(e) if e.timed_out:
                return Err(
                    "Artifact discovery timed out after "
                    f"{format_duration(self._timeouts.artifact_discovery)}."
                )
            case Err(_):
                return Ok(None)
            case Ok(_):
                return Ok(library if library.is_file() else None)

    def create_xcframework(
        self,
        package_root: Path,
        product: str,
        product_root: Path,
        artifacts: list[SliceArtifact],
        *,
        cancel: CancelToken | None = None,
    ) -> Result[Path, str]:
        """Assemble slices into ``<product root>/<product>.xcframework``.

        Returns:
            Ok(path), or Err(message) describing why assembly failed.
        """
        output = product_root / f"{sanitize_identity(product)}.xcframework"
        if output.exists():
            shutil.rmtree(output)

        args = ["xcodebuild", "-create-xcframework"]
        for artifact in artifacts:
            if artifact.kind == "framework":
                args += ["-framework", str(artifact.path)]
                continue
            if artifact.headers_path is None:
                return Err(
                    f"Slice artifact '{artifact.path}' is missing required headers "
                    "for XCFramework creation."
                )
            args += ["-library", str(artifact.path), "-headers", str(artifact.headers_path)]
        args += ["-output", str(output)]

        result = self._runner.run(
            args, cwd=package_root, timeout=self._timeouts.create_xcframework, cancel=cancel
        )
        match result:
            case Err(e) if e.timed_out:
                return Err(
                    "XCFramework assembly timed out after "
                    f"{format_duration(self._timeouts.create_xcframework)}."
                )
            case Err(e):
                return Err(f"{CREATE_FAILED_PREFIX} {e.describe()}")
            case Ok(_):
                return Ok(output)
