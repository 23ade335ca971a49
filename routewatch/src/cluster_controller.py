from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from routewatch.src.handlers import PodEventDispatcher
from routewatch.src.informer import NODES, PODS, SERVICES, SharedInformer, SharedInformerFactory
from routewatch.src.kube import ClusterClient, build_informer_factory
from routewatch.src.labels import DEFAULT_LABEL_PREFIX
from routewatch.src.metrics import METRICS
from routewatch.src.rebuild import RebuildQueue
from routewatch.src.signals import (
    INFORMER_SYNC_TIMEOUT_SECONDS,
    StopSignal,
    SyncWaitError,
    wait_for_sync,
)

InformerFactoryBuilder = Callable[[ClusterClient], SharedInformerFactory]


class ControllerStoppedError(RuntimeError):
    """Raised when an informer is requested from a stopped controller."""


class ClusterController:
    """Owns the informers watching one cluster and reacts to its pod events.

    Informers are created lazily, at most once per resource kind, from a
    factory that is itself built on first use.  The controller lock covers
    only that create-or-reuse decision; sync waits happen outside it so a
    slow cluster does not block accessors for informers that already synced.

    ``stop_signal`` is the single teardown primitive: firing it ends every
    informer thread, unblocks pending sync waits with a cancellation error,
    and makes later accessor calls raise :class:`ControllerStoppedError`.
    """

    def __init__(
        self,
        cluster: ClusterClient,
        rebuild_queue: RebuildQueue,
        *,
        informer_factory_builder: InformerFactoryBuilder = build_informer_factory,
        label_prefix: str = DEFAULT_LABEL_PREFIX,
        sync_timeout: float = INFORMER_SYNC_TIMEOUT_SECONDS,
        logger: logging.Logger | None = None,
    ) -> None:
        self.cluster = cluster
        self.informer_factory_builder = informer_factory_builder
        self.sync_timeout = sync_timeout
        self.logger = logger or logging.getLogger(__name__)
        self.dispatcher = PodEventDispatcher(cluster, rebuild_queue, label_prefix=label_prefix)
        self.stop_signal = StopSignal()

        self._lock = threading.Lock()
        self._factory: SharedInformerFactory | None = None
        self._informers: dict[str, SharedInformer] = {}

    @property
    def stopped(self) -> bool:
        return self.stop_signal.is_set()

    def start(self) -> None:
        """Wait for the pod informer's initial list, then attach pod handlers."""
        informer = self.get_pod_informer(wait=False)
        self.wait_for_sync(informer)
        informer.add_event_handler(self.dispatcher.event_handler())
        self.logger.info("Started watch controller for cluster %s", self.cluster.name)

    def stop(self) -> None:
        if not self.stop_signal.stop():
            self.logger.warning("Controller for cluster %s was already stopped", self.cluster.name)
            return
        self.logger.info("Stopped watch controller for cluster %s", self.cluster.name)

    def get_pod_informer(self, wait: bool = True) -> SharedInformer:
        return self._get_informer(PODS, wait)

    def get_service_informer(self, wait: bool = True) -> SharedInformer:
        return self._get_informer(SERVICES, wait)

    def get_node_informer(self, wait: bool = True) -> SharedInformer:
        return self._get_informer(NODES, wait)

    def _get_informer(self, resource: str, wait: bool) -> SharedInformer:
        with self._lock:
            if self.stop_signal.is_set():
                raise ControllerStoppedError(
                    f"controller for cluster {self.cluster.name} is stopped"
                )
            informer = self._informers.get(resource)
            if informer is None:
                factory = self._get_factory()
                informer = factory.informer_for(resource)
                self._informers[resource] = informer
                factory.start(self.stop_signal)
        if wait:
            self.wait_for_sync(informer)
        return informer

    def _get_factory(self) -> SharedInformerFactory:
        if self._factory is None:
            self._factory = self.informer_factory_builder(self.cluster)
        return self._factory

    def wait_for_sync(self, informer: SharedInformer) -> None:
        started = time.monotonic()
        try:
            wait_for_sync(informer, self.stop_signal, timeout=self.sync_timeout)
        except SyncWaitError as exc:
            METRICS.sync_wait_failures_total.labels(
                cluster=self.cluster.name, outcome=exc.outcome.name.lower()
            ).inc()
            self.logger.warning(
                "Informer for %s in cluster %s did not sync: %s",
                informer.resource,
                self.cluster.name,
                exc,
            )
            raise
        METRICS.sync_wait_seconds.observe(time.monotonic() - started)
