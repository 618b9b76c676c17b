"""Cooperative cancellation.

A run owns one root ``CancelToken``; the CLI cancels it from a SIGINT handler.
Child tokens created with ``link()`` observe their parent, so a caller can
cancel one invocation without affecting the rest of the process.
"""

from __future__ import annotations

import threading

__all__ = ["CancelToken", "OperationCancelled", "raise_if_cancelled"]


class OperationCancelled(Exception):
    """Raised when a run is cancelled. Never converted into an Err."""

    def __init__(self, message: str = "Operation cancelled") -> None:
        super().__init__(message)


class CancelToken:
    def __init__(self, parent: CancelToken | None = None) -> None:
        self._event = threading.Event()
        self._parent = parent

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._parent is not None and self._parent.cancelled

    def link(self) -> CancelToken:
        """Create a child token cancelled together with this one."""
        return CancelToken(parent=self)

    def raise_if_cancelled(self) -> None:
        """Raise OperationCancelled if this token (or a parent) was cancelled."""
        if self.cancelled:
            raise OperationCancelled()


def raise_if_cancelled(cancel: CancelToken | None) -> None:
    """Convenience for optional tokens."""
    if cancel is not None:
        cancel.raise_if_cancelled()
