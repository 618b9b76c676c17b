"""Filesystem helpers."""

from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path

from spmx.core.errors import ResolveError
from spmx.core.result import Err, Ok, Result

from .paths import find_symlinked_ancestor

__all__ = ["atomic_write_text", "copy_tree", "remove_path", "unique_child_path"]

_VCS_DIR = ".git"


def atomic_write_text(path: Path, content: str, *, encoding: str = "utf-8") -> None:
    """Write text to path atomically using temp file + replace."""
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.",
        suffix=".tmp",
        dir=str(path.parent),
    )
    tmp_path = Path(tmp_name)

    try:
        with os.fdopen(fd, "w", encoding=encoding, newline="") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)


def remove_path(path: Path) -> None:
    """Remove a file, symlink, or directory tree if present."""
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


def _copy_symlink(source: Path, destination: Path) -> None:
    target = os.readlink(source)
    remove_path(destination)
    os.symlink(target, destination, target_is_directory=source.is_dir())


def _copy_dir(source: Path, destination: Path) -> None:
    destination.mkdir(parents=True, exist_ok=True)
    for entry in sorted(source.iterdir()):
        target = destination / entry.name
        if entry.is_symlink():
            _copy_symlink(entry, target)
        elif entry.is_dir():
            if entry.name.lower() == _VCS_DIR:
                continue
            if target.is_symlink():
                target.unlink()
            _copy_dir(entry, target)
        else:
            if target.is_symlink():
                target.unlink()
            shutil.copy2(entry, target)


def copy_tree(source: Path, destination: Path) -> Result[None, ResolveError]:
    """Recursively copy ``source`` into ``destination``.

    Symlinks are re-created as links (never followed), ``.git`` directories
    are skipped, and existing files are overwritten. Copying is refused when
    the destination, or one of its existing ancestors, is a symlink.

    Args:
        source: Existing directory to copy.
        destination: Directory to create or merge into.

    Returns:
        Ok(None), or Err with kind ``io_error`` / ``destination_unsafe``.
    """
    if not source.is_dir():
        return Err(ResolveError("io_error", f"Source directory not found: {source}"))

    link = find_symlinked_ancestor(destination)
    if link is not None:
        return Err(
            ResolveError(
                "destination_unsafe",
                f"Refusing to write into symlinked destination path: {link}",
            )
        )

    try:
        _copy_dir(source, destination)
    except OSError as e:
        return Err(ResolveError("io_error", f"Failed to copy '{source}' to '{destination}': {e}"))

    return Ok(None)


_MAX_UNIQUE_SUFFIX = 10_000


def unique_child_path(
    parent: Path, name: str, *, keep_extension: bool = True
) -> Result[Path, ResolveError]:
    """First free ``parent/name``, then ``name-2``, ``name-3``, ...

    With ``keep_extension`` the counter goes before the last extension
    (``Lib-2.xcframework``).
    """
    candidate = parent / name
    if not candidate.exists() and not candidate.is_symlink():
        return Ok(candidate)

    stem, ext = name, ""
    if keep_extension:
        base = Path(name)
        if base.suffix and base.stem:
            stem, ext = base.stem, base.suffix

    for n in range(2, _MAX_UNIQUE_SUFFIX + 1):
        candidate = parent / f"{stem}-{n}{ext}"
        if not candidate.exists() and not candidate.is_symlink():
            return Ok(candidate)

    return Err(ResolveError("io_error", f"Unable to create a unique destination for '{name}'."))
