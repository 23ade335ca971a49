from __future__ import annotations

import enum
import logging
import threading
import time
from collections.abc import Callable
from typing import Protocol

LOGGER = logging.getLogger(__name__)

INFORMER_SYNC_TIMEOUT_SECONDS = 10.0
SYNC_POLL_INTERVAL_SECONDS = 0.1


class StopSignal:
    """One-shot broadcast used as a controller's single teardown primitive.

    ``stop()`` may be called any number of times; only the first call fires
    the registered callbacks.  Callbacks registered after the signal fired
    run immediately on the registering thread, so a waiter that subscribes
    late still observes the stop.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout=timeout)

    def stop(self) -> bool:
        """Fire the signal.  Returns False when it had already been fired."""
        with self._lock:
            if self._event.is_set():
                return False
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        for callback in callbacks:
            try:
                callback()
            except Exception:
                LOGGER.exception("Stop callback %r failed", callback)
        return True

    def add_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def remove_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass


class WaitOutcome(enum.Enum):
    SYNCED = "synced"
    DEADLINE_EXCEEDED = "context deadline exceeded"
    CANCELLED = "context canceled"


class SyncWaitError(RuntimeError):
    """Raised when an informer did not finish its initial list in time."""

    def __init__(self, outcome: WaitOutcome) -> None:
        super().__init__(f"error waiting for informer sync: {outcome.value}")
        self.outcome = outcome


class Syncable(Protocol):
    @property
    def has_synced(self) -> bool: ...


class _DeadlineContext:
    """Deadline-bounded context that may also be cancelled from another thread."""

    def __init__(self, timeout: float) -> None:
        self._deadline = time.monotonic() + timeout
        self._done = threading.Event()
        self._lock = threading.Lock()
        self.outcome: WaitOutcome | None = None

    def cancel(self, outcome: WaitOutcome) -> None:
        with self._lock:
            if self.outcome is None:
                self.outcome = outcome
        self._done.set()

    def wait(self, interval: float) -> bool:
        """Wait up to *interval*; return True once the context is done."""
        remaining = self._deadline - time.monotonic()
        if remaining <= 0:
            self.cancel(WaitOutcome.DEADLINE_EXCEEDED)
            return True
        return self._done.wait(timeout=min(interval, remaining))


def bounded_wait(
    condition: Callable[[], bool],
    stop: StopSignal,
    timeout: float,
    poll_interval: float = SYNC_POLL_INTERVAL_SECONDS,
) -> WaitOutcome:
    """Poll *condition* until it holds, the deadline passes, or *stop* fires.

    The stop signal is linked through a callback, which runs immediately when
    the signal was already fired, so a wait started after shutdown returns
    at once instead of sitting out the full deadline.
    """
    if condition():
        return WaitOutcome.SYNCED

    ctx = _DeadlineContext(timeout)

    def _cancel_on_stop() -> None:
        ctx.cancel(WaitOutcome.CANCELLED)

    stop.add_callback(_cancel_on_stop)
    try:
        while True:
            if condition():
                return WaitOutcome.SYNCED
            if ctx.wait(poll_interval):
                return ctx.outcome or WaitOutcome.DEADLINE_EXCEEDED
    finally:
        stop.remove_callback(_cancel_on_stop)


def wait_for_sync(
    informer: Syncable,
    stop: StopSignal,
    timeout: float = INFORMER_SYNC_TIMEOUT_SECONDS,
    poll_interval: float = SYNC_POLL_INTERVAL_SECONDS,
) -> None:
    """Block until *informer* has synced; raise :class:`SyncWaitError` otherwise."""
    if informer.has_synced:
        return
    outcome = bounded_wait(
        lambda: informer.has_synced,
        stop,
        timeout=timeout,
        poll_interval=poll_interval,
    )
    if outcome is not WaitOutcome.SYNCED:
        raise SyncWaitError(outcome)
