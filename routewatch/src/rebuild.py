from __future__ import annotations

import logging
import threading
from typing import Protocol

LOGGER = logging.getLogger(__name__)


class RebuildQueue(Protocol):
    def enqueue_routes_rebuild(self, app_name: str) -> None: ...


class RoutesRebuildQueue:
    """In-process hand-off point for routes rebuild requests.

    Requests for the same app coalesce until the consumer drains them, so a
    burst of pod changes for one app yields a single pending rebuild.
    """

    def __init__(self) -> None:
        self._pending: dict[str, None] = {}
        self._lock = threading.Lock()

    def enqueue_routes_rebuild(self, app_name: str) -> None:
        with self._lock:
            self._pending[app_name] = None
        LOGGER.debug("Queued routes rebuild for app %s", app_name)

    def pending(self) -> list[str]:
        with self._lock:
            return list(self._pending)

    def drain(self) -> list[str]:
        """Return pending app names in first-enqueued order and clear them."""
        with self._lock:
            apps = list(self._pending)
            self._pending.clear()
        return apps

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)
