"""Package.resolved pin reader (format v1 and v2/v3)."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

from spmx.core.structured import as_obj_list, as_str_dict, get_str, get_table

__all__ = [
    "ResolvedPin",
    "find_package_resolved",
    "normalize_location",
    "parse_pins",
    "read_pins",
]


@dataclass(frozen=True, slots=True)
class ResolvedPin:
    identity: str
    location: str
    version: str | None = None
    revision: str | None = None
    branch: str | None = None


def normalize_location(location: str) -> str:
    """Comparable form of a repository URL: no ``.git``, no trailing ``/``, lower-case."""
    normalized = location.strip().rstrip("/")
    if normalized.lower().endswith(".git"):
        normalized = normalized[:-4]
    return normalized.rstrip("/").lower()


def _fallback_identity(location: str) -> str:
    last = location.rstrip("/").split("/")[-1]
    return last[:-4] if last.lower().endswith(".git") else last


def find_package_resolved(package_root: Path) -> Path | None:
    for candidate in (
        package_root / "Package.resolved",
        package_root / ".swiftpm" / "Package.resolved",
    ):
        if candidate.is_file():
            return candidate
    return None


def parse_pins(data: object) -> dict[str, ResolvedPin]:
    """Pins keyed by normalized location.

    v1 files nest pins under ``object`` and use ``repositoryURL``; later
    versions list them at the top level with ``location`` and ``identity``.
    """
    root = as_str_dict(data)
    if root is None:
        return {}
    pins_obj = root.get("pins")
    if pins_obj is None:
        nested = get_table(root, "object")
        pins_obj = nested.get("pins") if nested else None

    pins: dict[str, ResolvedPin] = {}
    for item in as_obj_list(pins_obj) or []:
        entry = as_str_dict(item)
        if entry is None:
            continue
        location = get_str(entry, "location") or get_str(entry, "repositoryURL")
        if not location:
            continue
        state = get_table(entry, "state") or {}
        pin = ResolvedPin(
            identity=get_str(entry, "identity") or _fallback_identity(location),
            location=location,
            version=get_str(state, "version"),
            revision=get_str(state, "revision"),
            branch=get_str(state, "branch"),
        )
        pins[normalize_location(location)] = pin
    return pins


def read_pins(package_root: Path) -> dict[str, ResolvedPin]:
    """Read pins of the package at ``package_root`` (empty when absent or unreadable)."""
    path = find_package_resolved(package_root)
    if path is None:
        return {}
    try:
        data: object = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError):
        return {}
    return parse_pins(data)
