"""Structured progress events.

Pipeline services never print. They report through an injected
``EventSink``; the CLI attaches a ``ConsoleEventSink`` and tests attach a
``RecordingEventSink``. ``NullEventSink`` keeps the core silent by default.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal, Protocol

from spmx.core.models import SliceStatus

from .console import Style

if TYPE_CHECKING:
    from spmx.core.models import SliceBuildResult

    from .console import ConsoleProtocol

__all__ = [
    "EventSink",
    "NullEventSink",
    "RecordingEventSink",
    "ConsoleEventSink",
    "Event",
]


class EventSink(Protocol):
    def info(self, message: str) -> None:
        """Report routine progress (workspace location, stage changes)."""
        ...

    def warning(self, message: str) -> None:
        """Report a recoverable problem; the run continues."""
        ...

    def product_started(self, index: int, total: int, product: str, library_type: str) -> None:
        """A library product is about to be built (``index`` is 1-based)."""
        ...

    def slice_result(self, product: str, result: SliceBuildResult) -> None:
        """One platform slice of ``product`` finished (built, skipped or failed)."""
        ...


class NullEventSink:
    """Discards every event."""

    def info(self, message: str) -> None:
        pass

    def warning(self, message: str) -> None:
        pass

    def product_started(self, index: int, total: int, product: str, library_type: str) -> None:
        pass

    def slice_result(self, product: str, result: SliceBuildResult) -> None:
        pass


EventKind = Literal["info", "warning", "product_started", "slice_result"]


@dataclass(frozen=True, slots=True)
class Event:
    kind: EventKind
    message: str
    product: str | None = None
    slice: SliceBuildResult | None = None


def _empty_events() -> list[Event]:
    return []


@dataclass
class RecordingEventSink:
    """Captures events for assertions in tests."""

    events: list[Event] = field(default_factory=_empty_events)

    def info(self, message: str) -> None:
        self.events.append(Event("info", message))

    def warning(self, message: str) -> None:
        self.events.append(Event("warning", message))

    def product_started(self, index: int, total: int, product: str, library_type: str) -> None:
        self.events.append(
            Event("product_started", f"[{index}/{total}] {product} ({library_type})", product)
        )

    def slice_result(self, product: str, result: SliceBuildResult) -> None:
        self.events.append(Event("slice_result", result.message or "", product, result))

    @property
    def warnings(self) -> list[str]:
        return [e.message for e in self.events if e.kind == "warning"]

    @property
    def slices(self) -> list[SliceBuildResult]:
        return [e.slice for e in self.events if e.slice is not None]

    def find(self, substring: str) -> list[Event]:
        """Events whose message contains ``substring``."""
        return [e for e in self.events if substring in e.message]


class ConsoleEventSink:
    """Renders events on a console."""

    def __init__(self, console: ConsoleProtocol) -> None:
        self._console = console

    def info(self, message: str) -> None:
        self._console.print(message, Style.DIM)

    def warning(self, message: str) -> None:
        self._console.warning(message)

    def product_started(self, index: int, total: int, product: str, library_type: str) -> None:
        self._console.header(f"[{index}/{total}] {product} ({library_type})")

    def slice_result(self, product: str, result: SliceBuildResult) -> None:
        suffix = f" ({result.message})" if result.message else ""
        match result.status:
            case SliceStatus.BUILT:
                self._console.success(f"{result.target}{suffix}")
            case SliceStatus.SKIPPED:
                self._console.print(f"- {result.target} skipped{suffix}", Style.DIM)
            case SliceStatus.FAILED:
                self._console.warning(f"{result.target} failed{suffix}")
