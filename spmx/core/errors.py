"""Error codes and the pipeline error value.

``ErrorCode`` maps to shell exit codes. ``ResolveError`` is the single error
value carried by ``Err`` results across the pipeline; its ``kind`` tells the
presentation layer which family of failure occurred.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Literal

__all__ = ["ErrorCode", "ResolveError", "ResolveErrorKind"]


class ErrorCode(IntEnum):
    """Exit codes for the CLI.

    These values are used as process exit codes and should remain stable:
    - 0: At least one artifact was exported
    - 1: Validation, build, or I/O failure
    - 130: Cancelled by the user (SIGINT convention)
    """

    OK = 0
    FAILURE = 1
    CANCELLED = 130

    def __str__(self) -> str:
        """Return human-readable name."""
        return self.name.lower().replace("_", " ")


ResolveErrorKind = Literal[
    "invalid_request",
    "invalid_config",
    "manifest_not_found",
    "destination_unsafe",
    "unsafe_archive_entry",
    "unsupported_archive",
    "archive_invalid",
    "unmanaged_output",
    "no_outputs",
    "tool_missing",
    "command_failed",
    "timeout",
    "invalid_metadata",
    "io_error",
]


@dataclass(frozen=True, slots=True)
class ResolveError:
    """A pipeline-terminating failure.

    Attributes:
        kind: Failure family (validation, safety, infrastructure, ...).
        message: Human-readable description.
        hint: Optional remediation shown below the message.
    """

    kind: ResolveErrorKind
    message: str
    hint: str | None = None

    def __str__(self) -> str:
        return self.message

    @property
    def is_safety_violation(self) -> bool:
        """True for filesystem-safety failures, which are never retried."""
        return self.kind in ("destination_unsafe", "unsafe_archive_entry", "unmanaged_output")
