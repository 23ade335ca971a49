from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from kubernetes.client import V1Pod

from routewatch.src.informer import DeletedFinalStateUnknown, ResourceEventHandler
from routewatch.src.labels import DEFAULT_LABEL_PREFIX, LabelSet
from routewatch.src.metrics import METRICS
from routewatch.src.rebuild import RebuildQueue


class EventKind(enum.Enum):
    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class PodEvent:
    """One pod notification.  ``old`` is only set for updates."""

    kind: EventKind
    new: Any
    old: Any = None


@dataclass(frozen=True)
class RebuildSignal:
    cluster: str
    app_name: str


class TombstoneError(ValueError):
    """Raised when a delete notification does not carry a pod."""


class RoutingCluster(Protocol):
    name: str

    def router_address_local(self, pool: str) -> bool: ...


class PodEventDispatcher:
    """Decides which pod notifications invalidate an app's routes.

    Holds no state between events.  The only side effect is at most one
    ``enqueue_routes_rebuild`` call per event, for pods that belong to an app,
    are not deploy or isolated-run pods, and live in a pool whose routers
    address pods locally on this cluster.
    """

    def __init__(
        self,
        cluster: RoutingCluster,
        rebuild_queue: RebuildQueue,
        label_prefix: str = DEFAULT_LABEL_PREFIX,
        logger: logging.Logger | None = None,
    ) -> None:
        self.cluster = cluster
        self.rebuild_queue = rebuild_queue
        self.label_prefix = label_prefix
        self.logger = logger or logging.getLogger(__name__)

    def handle(self, event: PodEvent) -> RebuildSignal | None:
        if event.kind is EventKind.ADD:
            return self.on_add(event.new)
        if event.kind is EventKind.UPDATE:
            return self.on_update(event.old, event.new)
        return self.on_delete(event.new)

    def on_add(self, obj: Any) -> RebuildSignal | None:
        # Pods are never ready on add.
        METRICS.pod_events_total.labels(cluster=self.cluster.name, kind="add").inc()
        return None

    def on_update(self, old_obj: Any, new_obj: Any) -> RebuildSignal | None:
        METRICS.pod_events_total.labels(cluster=self.cluster.name, kind="update").inc()
        old_version = getattr(getattr(old_obj, "metadata", None), "resource_version", None)
        new_version = getattr(getattr(new_obj, "metadata", None), "resource_version", None)
        if old_version == new_version:
            return None
        return self._pod_changed(new_obj)

    def on_delete(self, obj: Any) -> RebuildSignal | None:
        METRICS.pod_events_total.labels(cluster=self.cluster.name, kind="delete").inc()
        if isinstance(obj, V1Pod):
            return self._pod_changed(obj)
        if not isinstance(obj, DeletedFinalStateUnknown):
            raise TombstoneError(f"couldn't get object from tombstone {obj!r}")
        if not isinstance(obj.obj, V1Pod):
            raise TombstoneError(f"tombstone contained object that is not a Pod: {obj!r}")
        return self._pod_changed(obj.obj)

    def _pod_changed(self, pod: V1Pod) -> RebuildSignal | None:
        label_set = LabelSet.from_meta(pod.metadata, prefix=self.label_prefix)
        if not label_set.app_name:
            return None
        if label_set.is_deploy or label_set.is_isolated_run:
            return None
        try:
            router_local = self.cluster.router_address_local(label_set.app_pool)
        except Exception as exc:
            self.logger.debug(
                "Treating pool %r on cluster %s as not router-local: %s",
                label_set.app_pool,
                self.cluster.name,
                exc,
            )
            return None
        if not router_local:
            return None
        self.rebuild_queue.enqueue_routes_rebuild(label_set.app_name)
        METRICS.rebuilds_enqueued_total.labels(cluster=self.cluster.name).inc()
        return RebuildSignal(cluster=self.cluster.name, app_name=label_set.app_name)

    def event_handler(self) -> ResourceEventHandler:
        """Wrap the callbacks so handler errors are logged and never escape."""
        return ResourceEventHandler(
            on_add=self._guarded("add", self.on_add),
            on_update=self._guarded("update", self.on_update),
            on_delete=self._guarded("delete", self.on_delete),
        )

    def _guarded(self, kind: str, callback: Callable[..., Any]) -> Callable[..., None]:
        def _handle(*args: Any) -> None:
            try:
                callback(*args)
            except Exception:
                METRICS.handler_errors_total.labels(cluster=self.cluster.name, kind=kind).inc()
                self.logger.exception(
                    "Error handling %s pod event in cluster %s",
                    kind,
                    self.cluster.name,
                )

        return _handle
