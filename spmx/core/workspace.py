"""Temporary workspace for one pipeline run.

The workspace root contains:
- package/  cloned sources (remote packages only)
- scratch/  build products, release assets, resolver scratch space

It is owned by exactly one run and removed when the ``with`` block exits,
whatever the exit path (success, error, cancellation), unless ``keep`` was
requested.
"""

from __future__ import annotations

import shutil
import tempfile
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from types import TracebackType

__all__ = ["TemporaryWorkspace"]

_WORKSPACE_PARENT = "spmx"


@dataclass(slots=True)
class TemporaryWorkspace:
    """Scoped scratch directory tree.

    Usage:
        with TemporaryWorkspace.create() as workspace:
            clone_into(workspace.package_dir)
    """

    root: Path
    keep: bool = False
    _closed: bool = field(default=False, init=False, repr=False)

    @classmethod
    def create(cls, *, keep: bool = False, base_dir: Path | None = None) -> TemporaryWorkspace:
        """Allocate a unique workspace under ``base_dir`` (system temp by default)."""
        parent = (base_dir or Path(tempfile.gettempdir())) / _WORKSPACE_PARENT
        workspace = cls(root=parent / uuid.uuid4().hex, keep=keep)
        workspace.package_dir.mkdir(parents=True, exist_ok=True)
        workspace.scratch_dir.mkdir(parents=True, exist_ok=True)
        return workspace

    @property
    def package_dir(self) -> Path:
        return self.root / "package"

    @property
    def scratch_dir(self) -> Path:
        return self.root / "scratch"

    @property
    def artifacts_dir(self) -> Path:
        """Binary artifacts (resolved binary targets, staged release payloads)."""
        return self.scratch_dir / "artifacts"

    @property
    def prebuilt_dir(self) -> Path:
        return self.artifacts_dir / "prebuilt"

    @property
    def release_assets_dir(self) -> Path:
        return self.scratch_dir / "release-assets"

    def close(self) -> None:
        """Delete the tree unless ``keep`` is set. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        if not self.keep and self.root.exists():
            shutil.rmtree(self.root, ignore_errors=True)

    def __enter__(self) -> TemporaryWorkspace:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
