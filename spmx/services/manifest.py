"""manifest.json serialization."""

from __future__ import annotations

import json
from collections.abc import Iterable
from datetime import UTC, datetime

from spmx.core.models import ExportedDependency

__all__ = ["MANIFEST_FILENAME", "dependency_to_dict", "serialize"]

MANIFEST_FILENAME = "manifest.json"


def dependency_to_dict(dep: ExportedDependency) -> dict[str, object]:
    """camelCase row with every key present."""
    return {
        "name": dep.name,
        "identity": dep.identity,
        "sourceUrl": dep.source_url,
        "sourcePath": dep.source_path,
        "outputPath": dep.output_path,
        "version": dep.version,
        "revision": dep.revision,
        "branch": dep.branch,
        "kind": dep.kind,
        "symbolPaths": list(dep.symbol_paths),
        "builtSlices": list(dep.built_slices) if dep.built_slices is not None else None,
        "error": dep.error,
    }


def _timestamp(moment: datetime) -> str:
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def serialize(
    dependencies: Iterable[ExportedDependency], *, generated_at: datetime | None = None
) -> str:
    """Render the manifest; rows are sorted by identity (ordinal)."""
    rows = sorted(dependencies, key=lambda d: d.identity)
    manifest = {
        "generatedAtUtc": _timestamp(generated_at or datetime.now(UTC)),
        "dependencies": [dependency_to_dict(d) for d in rows],
    }
    return json.dumps(manifest, indent=2, ensure_ascii=False) + "\n"
