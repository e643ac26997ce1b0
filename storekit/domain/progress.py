"""Progress reporting for object transfers.

Observers receive cumulative byte counts. A ``ProgressTracker`` turns the raw
increments reported by a transport, or the per-part completions reported by
the chunked upload coordinator, into a monotonic stream of events whose last
entry equals the total size.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Protocol


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    bytes_transferred: int
    # None while the total size is not known up front
    total_bytes: int | None
    part_number: int | None = None

    @property
    def fraction(self) -> float | None:
        if self.total_bytes is None:
            return None
        if self.total_bytes <= 0:
            return 1.0
        return self.bytes_transferred / self.total_bytes


class ProgressObserver(Protocol):
    def on_progress(self, event: ProgressEvent) -> None:
        ...


class _CallbackObserver:
    def __init__(self, callback: Callable[[int, int | None], None]) -> None:
        self._callback = callback

    def on_progress(self, event: ProgressEvent) -> None:
        self._callback(event.bytes_transferred, event.total_bytes)


def callback_observer(callback: Callable[[int, int | None], None]) -> ProgressObserver:
    """Adapt a plain ``(bytes_transferred, total_bytes)`` callable."""
    return _CallbackObserver(callback)


class ProgressTracker:
    """Thread-safe accumulator that emits monotonic progress events.

    Negative increments (transports rewinding a body to retry) are ignored and
    the running count never exceeds a known ``total_bytes``.
    """

    def __init__(
        self, total_bytes: int | None, observer: ProgressObserver | None = None
    ) -> None:
        self._total = None if total_bytes is None else max(int(total_bytes), 0)
        self._observer = observer
        self._transferred = 0
        self._last_emitted: int | None = None
        self._lock = threading.Lock()

    @property
    def total_bytes(self) -> int | None:
        return self._total

    @property
    def transferred(self) -> int:
        with self._lock:
            return self._transferred

    def advance(self, amount: int, *, part_number: int | None = None) -> None:
        with self._lock:
            if amount > 0:
                self._transferred += amount
                if self._total is not None:
                    self._transferred = min(self._total, self._transferred)
            self._emit(part_number)

    def finish(self) -> None:
        """Emit a final event at the total size unless one was already sent."""
        with self._lock:
            resolved = self._total is None
            if resolved:
                self._total = self._transferred
            self._transferred = self._total
            if resolved or self._last_emitted != self._total:
                self._emit(None)

    def _emit(self, part_number: int | None) -> None:
        if self._observer is not None:
            self._observer.on_progress(
                ProgressEvent(
                    bytes_transferred=self._transferred,
                    total_bytes=self._total,
                    part_number=part_number,
                )
            )
        self._last_emitted = self._transferred
