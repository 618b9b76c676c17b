"""Error presentation utilities.

Centralized error formatting and exit code mapping for consistent UX.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from spmx.core.errors import ErrorCode, ResolveError
from spmx.output.console import Style

if TYPE_CHECKING:
    from spmx.output.console import ConsoleProtocol

__all__ = ["print_resolve_error", "resolve_error_exit_code"]


def print_resolve_error(error: ResolveError, console: ConsoleProtocol) -> None:
    """Print an error (one line per message line) and its hint."""
    match error:
        case ResolveError(kind="invalid_request", message=message):
            for line in message.splitlines():
                console.error(line)
        case ResolveError(kind="no_outputs", message=message):
            head, _, details = message.partition(". ")
            console.error(f"{head}." if details else message)
            for part in details.splitlines():
                console.print(f"  {part}", Style.DIM)
        case ResolveError(message=message):
            console.error(message)

    if error.hint:
        console.print(f"hint: {error.hint}", Style.DIM)


def resolve_error_exit_code(error: ResolveError) -> int:
    """Get exit code for a resolve error (every kind is a plain failure)."""
    return int(ErrorCode.FAILURE)
