"""Path safety checks.

Every destination the pipeline writes to (archive entries, copied trees,
exported bundles) is checked here first. ``normalize_and_validate_output_path``
guards the user-supplied output directory, which the exporter later deletes
and recreates.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from spmx.core.errors import ResolveError
from spmx.core.result import Err, Ok, Result

__all__ = [
    "ALLOWED_SYSTEM_SYMLINKS",
    "are_same_path",
    "find_symlinked_ancestor",
    "is_parent_path",
    "is_path_safe",
    "normalize_and_validate_output_path",
    "sanitize_file_name",
]

# OS temp roots that are symlinks on macOS (/var -> /private/var, /tmp -> /private/tmp).
ALLOWED_SYSTEM_SYMLINKS = frozenset({"/var", "/tmp"})

_CASE_INSENSITIVE = sys.platform in ("darwin", "win32")


def _key(path: str) -> str:
    normalized = os.path.normcase(path)
    return normalized.casefold() if _CASE_INSENSITIVE else normalized


def _normalize(path: str | os.PathLike[str]) -> str:
    full = os.path.abspath(os.fspath(path))
    stripped = full.rstrip("/\\")
    return stripped or full


def _is_nested(parent: str, child: str) -> bool:
    parent_key = _key(parent)
    child_key = _key(child)
    if parent_key == child_key:
        return True
    prefix = parent_key if parent_key.endswith(os.sep) else parent_key + os.sep
    return child_key.startswith(prefix)


def is_path_safe(root: str | os.PathLike[str], candidate: str | os.PathLike[str]) -> bool:
    """True iff ``candidate`` resolves to ``root`` or somewhere beneath it.

    Both paths are fully resolved (``..`` segments and existing symlinks), so
    a candidate that escapes through a previously created link is rejected.
    """
    return _is_nested(os.path.realpath(root), os.path.realpath(candidate))


def are_same_path(left: str | os.PathLike[str], right: str | os.PathLike[str]) -> bool:
    return _key(_normalize(left)) == _key(_normalize(right))


def is_parent_path(parent: str | os.PathLike[str], child: str | os.PathLike[str]) -> bool:
    """Lexical check: ``child`` equals ``parent`` or lies beneath it."""
    return _is_nested(_normalize(parent), _normalize(child))


def find_symlinked_ancestor(path: str | os.PathLike[str]) -> Path | None:
    """Return the first existing symlink in ``path`` or its ancestors.

    Allowed OS temp-root symlinks are ignored. Returns None when the path is
    free of symlinks.
    """
    current = Path(_normalize(path))
    while True:
        if current.is_symlink() and str(current) not in ALLOWED_SYSTEM_SYMLINKS:
            return current
        if current.parent == current:
            return None
        current = current.parent


def normalize_and_validate_output_path(path: str | os.PathLike[str]) -> Result[Path, ResolveError]:
    """Return the absolute output path, or an error if writing there is dangerous.

    Rejected targets: empty paths, filesystem roots and their direct children,
    the home directory, the current directory or any of its ancestors, and
    paths with a symlinked ancestor.
    """
    raw = os.fspath(path)
    if not raw.strip():
        return Err(ResolveError("destination_unsafe", "Output path cannot be empty."))

    full = _normalize(raw.strip())
    anchor = Path(full).anchor

    if anchor and are_same_path(full, anchor):
        return Err(
            ResolveError("destination_unsafe", "Refusing to use filesystem root as output path.")
        )

    if anchor and are_same_path(os.path.dirname(full), anchor):
        return Err(
            ResolveError(
                "destination_unsafe",
                "Refusing to use a top-level root directory as output path.",
            )
        )

    home = os.path.expanduser("~")
    if home and home != "~" and are_same_path(full, home):
        return Err(
            ResolveError(
                "destination_unsafe",
                "Refusing to use the user home directory as output path.",
            )
        )

    if is_parent_path(full, os.getcwd()):
        return Err(
            ResolveError(
                "destination_unsafe",
                "Refusing to use the current directory or any parent directory as output path.",
            )
        )

    link = find_symlinked_ancestor(full)
    if link is not None:
        return Err(
            ResolveError("destination_unsafe", f"Refusing to use symlinked output path: {link}")
        )

    return Ok(Path(full))


_INVALID_FILENAME_CHARS = frozenset('/\\:*?"<>|\0')


def sanitize_file_name(name: str, fallback: str) -> str:
    """Replace characters that are invalid in file names with ``-``.

    Returns ``fallback`` when nothing usable remains (empty, ``.`` or ``..``).
    """
    sanitized = "".join(
        "-" if ch in _INVALID_FILENAME_CHARS or ord(ch) < 32 else ch for ch in name
    ).strip()
    if not sanitized or sanitized in (".", ".."):
        return fallback
    return sanitized
