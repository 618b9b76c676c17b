"""Dependency exporter.

Copies build outputs and binary artifacts into the output directory and
writes ``manifest.json`` describing them. The output directory is only ever
deleted when it is empty or carries a manifest from an earlier run.
"""

from __future__ import annotations

import hashlib
import shutil
from collections.abc import Iterable
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING

from spmx.core.errors import ResolveError
from spmx.core.models import (
    BuiltProduct,
    ExportedDependency,
    ExportResult,
    FrameworkBuildResult,
    SourceMetadata,
)
from spmx.core.result import Err, Ok, Result
from spmx.output.events import NullEventSink
from spmx.platform.files import atomic_write_text, copy_tree, unique_child_path
from spmx.platform.paths import (
    is_parent_path,
    normalize_and_validate_output_path,
    sanitize_file_name,
)

from .manifest import MANIFEST_FILENAME, serialize
from .package_resolved import ResolvedPin, read_pins
from .source import find_xcframeworks

if TYPE_CHECKING:
    from spmx.output.events import EventSink

__all__ = ["DependencyExporter", "dedupe_identities", "prebuilt_identity"]

_XCFRAMEWORK_SUFFIX = ".xcframework"
_SKIPPED_ARTIFACT_DIRS = frozenset({"extract", "prebuilt"})


def prebuilt_identity(relative_path: str) -> str:
    """``<slug>-<sha256[:8]>`` for a bundle path relative to the prebuilt root."""
    normalized = relative_path.replace("\\", "/").strip("/")
    if normalized.lower().endswith(_XCFRAMEWORK_SUFFIX):
        normalized = normalized[: -len(_XCFRAMEWORK_SUFFIX)]
    slug = normalized.replace("/", "-")
    digest = hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:8]
    return sanitize_file_name(f"{slug}-{digest}", "artifact")


def dedupe_identities(rows: Iterable[ExportedDependency]) -> list[ExportedDependency]:
    """Give repeated identities ``-2``, ``-3``, ... suffixes (first one wins)."""
    seen: set[str] = set()
    unique: list[ExportedDependency] = []
    for row in rows:
        identity = row.identity
        n = 2
        while identity.lower() in seen:
            identity = f"{row.identity}-{n}"
            n += 1
        seen.add(identity.lower())
        unique.append(row if identity == row.identity else replace(row, identity=identity))
    return unique


def _strip_bundle_suffix(name: str) -> str:
    if name.lower().endswith(_XCFRAMEWORK_SUFFIX):
        return name[: -len(_XCFRAMEWORK_SUFFIX)]
    return name


def _unsafe(message: str) -> Err[ResolveError]:
    return Err(ResolveError("destination_unsafe", message))


def _escapes(destination: Path, output: Path) -> Err[ResolveError]:
    return _unsafe(f"Resolved output path '{destination}' escapes output directory '{output}'.")


def _nested_in_source(destination: Path, source: Path) -> Err[ResolveError]:
    return _unsafe(
        f"Output path '{destination}' cannot be inside source directory '{source}'."
    )


class DependencyExporter:
    """Writes the export directory and its manifest."""

    def __init__(self, *, events: EventSink | None = None) -> None:
        self._events: EventSink = events or NullEventSink()

    def export(
        self,
        output_path: Path,
        scratch_path: Path,
        build_result: FrameworkBuildResult,
        *,
        source: SourceMetadata | None = None,
        package_root: Path | None = None,
    ) -> Result[ExportResult, ResolveError]:
        """Export built products, prebuilt payloads and binary artifacts.

        Args:
            output_path: Requested output directory.
            scratch_path: Workspace scratch directory (holds ``artifacts/``).
            build_result: Products and failures from the build engine.
            source: Remote origin recorded on built-product rows.
            package_root: Package whose Package.resolved enriches binary rows.

        Returns:
            Ok(ExportResult), or Err(ResolveError) when the output directory is
            unsafe or unmanaged, or when nothing could be exported.
        """
        validated = normalize_and_validate_output_path(output_path)
        if isinstance(validated, Err):
            return validated
        output = validated.value

        reset = self._reset_output(output)
        if isinstance(reset, Err):
            return reset

        rows: list[ExportedDependency] = []
        for product in build_result.built_products:
            row = self._export_product(product, output, source)
            if isinstance(row, Err):
                return row
            rows.append(row.value)

        artifacts_root = scratch_path / "artifacts"
        prebuilt = self._export_prebuilt(artifacts_root / "prebuilt", output)
        if isinstance(prebuilt, Err):
            return prebuilt
        rows += prebuilt.value

        if not prebuilt.value:
            pins = read_pins(package_root) if package_root is not None else {}
            binaries = self._export_binary_artifacts(artifacts_root, output, pins)
            if isinstance(binaries, Err):
                return binaries
            rows += binaries.value

        for failure in build_result.failures:
            rows.append(
                ExportedDependency(
                    name=failure.name,
                    identity=sanitize_file_name(failure.name, "failed-product"),
                    source_path=str(failure.source_package_path),
                    output_path="",
                    kind="build-failure",
                    error=failure.reason,
                )
            )

        exported = [r for r in rows if not r.is_failure]
        if not exported:
            if build_result.failures:
                # One line per product; continuation lines of a reason are indented.
                summary = "\n".join(
                    f"{f.name}: " + f.reason.replace("\n", "\n  ") for f in build_result.failures
                )
            else:
                summary = "No buildable products or binary XCFramework artifacts were found."
            return Err(
                ResolveError("no_outputs", f"No XCFramework outputs were produced. {summary}")
            )

        manifest_path = output / MANIFEST_FILENAME
        try:
            atomic_write_text(manifest_path, serialize(dedupe_identities(rows)))
        except OSError as e:
            return Err(ResolveError("io_error", f"Failed to write manifest {manifest_path}: {e}"))

        return Ok(
            ExportResult(
                output_path=output,
                manifest_path=manifest_path,
                exported_count=len(exported),
                exported_paths=tuple(Path(r.output_path) for r in exported),
            )
        )

    # -------------------------------------------------------------------------
    # Output directory
    # -------------------------------------------------------------------------

    def _reset_output(self, output: Path) -> Result[None, ResolveError]:
        if output.exists():
            if not output.is_dir():
                return _unsafe(f"Output path exists and is not a directory: {output}")
            has_entries = any(output.iterdir())
            if has_entries and not (output / MANIFEST_FILENAME).is_file():
                return Err(
                    ResolveError(
                        "unmanaged_output",
                        "Refusing to delete a non-empty output directory "
                        "that was not previously created by spmx.",
                        hint="Choose an empty or new --output directory.",
                    )
                )
            try:
                shutil.rmtree(output)
            except OSError as e:
                return Err(
                    ResolveError("io_error", f"Failed to clear output directory {output}: {e}")
                )

        output.mkdir(parents=True, exist_ok=True)
        return Ok(None)

    def _destination(self, output: Path, name: str, source: Path) -> Result[Path, ResolveError]:
        """Unique child of ``output`` that neither escapes it nor nests in ``source``."""
        candidate = unique_child_path(output, name)
        if isinstance(candidate, Err):
            return candidate
        destination = candidate.value
        if not is_parent_path(output, destination) or destination == output:
            return _escapes(destination, output)
        if is_parent_path(source, destination):
            return _nested_in_source(destination, source)
        return Ok(destination)

    # -------------------------------------------------------------------------
    # Built products
    # -------------------------------------------------------------------------

    def _export_product(
        self, product: BuiltProduct, output: Path, source: SourceMetadata | None
    ) -> Result[ExportedDependency, ResolveError]:
        name = sanitize_file_name(product.name, "product")
        destination = self._destination(
            output, f"{name}{_XCFRAMEWORK_SUFFIX}", product.xcframework_path
        )
        if isinstance(destination, Err):
            return destination
        copied = copy_tree(product.xcframework_path, destination.value)
        if isinstance(copied, Err):
            return copied

        # Manifest identity follows the destination so collisions stay distinct.
        identity = _strip_bundle_suffix(destination.value.name)
        symbols = self._copy_symbols(product.symbol_paths, output, identity)
        if isinstance(symbols, Err):
            return symbols

        self._events.info(f"Exported {product.name} -> {destination.value.name}")
        meta = source or SourceMetadata()
        return Ok(
            ExportedDependency(
                name=product.name,
                identity=identity,
                source_url=meta.url,
                source_path=str(product.xcframework_path),
                output_path=str(destination.value),
                version=meta.version,
                revision=meta.revision,
                branch=meta.branch,
                kind="xcframework",
                symbol_paths=symbols.value,
                built_slices=product.built_slices,
            )
        )

    def _copy_symbols(
        self, symbol_paths: tuple[Path, ...], output: Path, identity: str
    ) -> Result[tuple[str, ...], ResolveError]:
        """Copy dSYMs (by name) and BCSymbolMaps into ``<identity>.symbols``."""
        if not symbol_paths:
            return Ok(())

        root = output / f"{identity}.symbols"
        copied: list[str] = []
        seen: set[str] = set()
        for path in symbol_paths:
            if str(path).lower() in seen:
                continue
            seen.add(str(path).lower())

            if path.is_dir():
                destination = root / path.name
                if is_parent_path(path, destination):
                    return _nested_in_source(destination, path)
                result = copy_tree(path, destination)
                if isinstance(result, Err):
                    return result
                copied.append(str(destination))
            elif path.is_file():
                destination = root / "BCSymbolMaps" / path.name
                try:
                    destination.parent.mkdir(parents=True, exist_ok=True)
                    shutil.copy2(path, destination)
                except OSError as e:
                    return Err(ResolveError("io_error", f"Failed to copy symbol file {path}: {e}"))
                copied.append(str(destination))
        return Ok(tuple(copied))

    # -------------------------------------------------------------------------
    # Binary artifacts
    # -------------------------------------------------------------------------

    def _export_prebuilt(
        self, prebuilt_root: Path, output: Path
    ) -> Result[list[ExportedDependency], ResolveError]:
        """Copy a staged release payload verbatim; one row per bundle inside."""
        bundles = find_xcframeworks(prebuilt_root)
        if not bundles:
            return Ok([])

        copied = copy_tree(prebuilt_root, output)
        if isinstance(copied, Err):
            return copied

        rows: list[ExportedDependency] = []
        for bundle in bundles:
            relative = bundle.relative_to(prebuilt_root).as_posix()
            destination = output / relative
            if not is_parent_path(output, destination):
                return _escapes(destination, output)
            rows.append(
                ExportedDependency(
                    name=_strip_bundle_suffix(bundle.name),
                    identity=prebuilt_identity(relative),
                    source_path=str(bundle),
                    output_path=str(destination),
                    kind="binary-xcframework",
                )
            )
        self._events.info(f"Exported {len(rows)} prebuilt XCFramework(s) from release assets.")
        return Ok(rows)

    def _export_binary_artifacts(
        self, artifacts_root: Path, output: Path, pins: dict[str, ResolvedPin]
    ) -> Result[list[ExportedDependency], ResolveError]:
        """Copy binary targets SwiftPM downloaded into ``artifacts/<package>/``."""
        if not artifacts_root.is_dir():
            return Ok([])

        by_identity = {pin.identity.lower(): pin for pin in pins.values()}
        rows: list[ExportedDependency] = []
        for package_dir in sorted(artifacts_root.iterdir()):
            if not package_dir.is_dir() or package_dir.name.lower() in _SKIPPED_ARTIFACT_DIRS:
                continue
            pin = by_identity.get(package_dir.name.lower())

            for bundle in find_xcframeworks(package_dir):
                destination = self._destination(output, bundle.name, bundle)
                if isinstance(destination, Err):
                    return destination
                copied = copy_tree(bundle, destination.value)
                if isinstance(copied, Err):
                    return copied

                identity = _strip_bundle_suffix(destination.value.name)
                rows.append(
                    ExportedDependency(
                        name=_strip_bundle_suffix(bundle.name),
                        identity=identity,
                        source_url=pin.location if pin else None,
                        source_path=str(bundle),
                        output_path=str(destination.value),
                        version=pin.version if pin else None,
                        revision=pin.revision if pin else None,
                        branch=pin.branch if pin else None,
                        kind="binary-xcframework",
                    )
                )
        return Ok(rows)
