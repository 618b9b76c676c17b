"""Result type for explicit error handling.

Pipeline stages return ``Result[T, E]`` instead of raising, so every caller
decides explicitly whether a failure is fatal, recorded, or downgraded to a
warning.

Usage:
    def read_manifest(root: Path) -> Result[Path, ResolveError]:
        manifest = root / "Package.swift"
        if not manifest.is_file():
            return Err(ResolveError("manifest_not_found", f"No Package.swift in {root}"))
        return Ok(manifest)

    match read_manifest(root):
        case Ok(path):
            print(path)
        case Err(error):
            print(error.message)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeAlias, TypeVar

__all__ = ["Ok", "Err", "Result"]

T = TypeVar("T")
E = TypeVar("E")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """A successful result carrying ``value``."""

    value: T

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """A failed result carrying ``error``."""

    error: E

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


Result: TypeAlias = Ok[T] | Err[E]
