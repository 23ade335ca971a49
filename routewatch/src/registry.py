from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable

from routewatch.src.cluster_controller import ClusterController
from routewatch.src.kube import ClusterClient
from routewatch.src.metrics import METRICS

LOGGER = logging.getLogger(__name__)

ControllerFactory = Callable[[ClusterClient], ClusterController]


class ControllerRegistry:
    """Process-wide mapping from cluster name to its started controller.

    ``get_or_create`` is atomic per cluster name without holding the shared
    map lock across ``start()``, which may block for the whole sync timeout:
    a per-name creation lock serializes concurrent creators of one cluster
    while lookups for other clusters proceed.
    """

    def __init__(self, controller_factory: ControllerFactory) -> None:
        self.controller_factory = controller_factory
        self._controllers: dict[str, ClusterController] = {}
        self._creation_locks: dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    def get(self, name: str) -> ClusterController | None:
        with self._lock:
            return self._controllers.get(name)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._controllers

    def __len__(self) -> int:
        with self._lock:
            return len(self._controllers)

    def names(self) -> list[str]:
        with self._lock:
            return list(self._controllers)

    def _creation_lock(self, name: str) -> threading.Lock:
        # Caller holds self._lock.
        return self._creation_locks.setdefault(name, threading.Lock())

    def get_or_create(self, cluster: ClusterClient) -> ClusterController:
        while True:
            with self._lock:
                existing = self._controllers.get(cluster.name)
                if existing is not None:
                    return existing
                creation_lock = self._creation_lock(cluster.name)

            with creation_lock:
                with self._lock:
                    # A lock retired by remove() no longer guards this name.
                    if self._creation_locks.get(cluster.name) is not creation_lock:
                        continue
                    existing = self._controllers.get(cluster.name)
                    if existing is not None:
                        return existing

                controller = self.controller_factory(cluster)
                try:
                    controller.start()
                except Exception:
                    controller.stop()
                    raise

                with self._lock:
                    self._controllers[cluster.name] = controller
                    METRICS.active_controllers.set(len(self._controllers))
                return controller

    def remove(self, cluster: ClusterClient) -> None:
        """Stop and forget the controller for *cluster*.

        Waits for an in-flight ``get_or_create`` of the same cluster so the
        controller it is starting is removed too.
        """
        with self._lock:
            creation_lock = self._creation_lock(cluster.name)

        with creation_lock:
            with self._lock:
                controller = self._controllers.pop(cluster.name, None)
                METRICS.active_controllers.set(len(self._controllers))
            if controller is not None:
                controller.stop()
            with self._lock:
                if self._creation_locks.get(cluster.name) is creation_lock:
                    del self._creation_locks[cluster.name]

        if controller is not None:
            LOGGER.info("Removed watch controller for cluster %s", cluster.name)

    def init_all(self, clusters: Iterable[ClusterClient]) -> None:
        for cluster in clusters:
            self.get_or_create(cluster)

    def stop_all(self) -> None:
        with self._lock:
            controllers = list(self._controllers.values())
            self._controllers.clear()
            METRICS.active_controllers.set(0)
        for controller in controllers:
            controller.stop()
