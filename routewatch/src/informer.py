from __future__ import annotations

import logging
import random
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from kubernetes import watch
from kubernetes.client import ApiException, CoreV1Api

from routewatch.src.metrics import METRICS
from routewatch.src.signals import StopSignal

LOGGER = logging.getLogger(__name__)

PODS = "pods"
SERVICES = "services"
NODES = "nodes"

DEFAULT_RESYNC_PERIOD_SECONDS = 60
DEFAULT_WATCH_TIMEOUT_SECONDS = 300
MAX_BACKOFF_SECONDS = 30

TweakListOptions = Callable[[dict[str, Any]], None]


@dataclass(frozen=True)
class DeletedFinalStateUnknown:
    """Tombstone for an object that disappeared while no watch was observing it.

    Delivered to ``on_delete`` when a re-list no longer contains a key the
    store still held.  ``obj`` is the last snapshot the store had seen, which
    may be stale.
    """

    key: str
    obj: Any


@dataclass(frozen=True)
class ResourceEventHandler:
    on_add: Callable[[Any], None] | None = None
    on_update: Callable[[Any, Any], None] | None = None
    on_delete: Callable[[Any], None] | None = None


def object_key(obj: Any) -> str | None:
    """Return ``namespace/name`` (or ``name`` for cluster-scoped objects)."""
    metadata = getattr(obj, "metadata", None)
    name = getattr(metadata, "name", None)
    if not name:
        return None
    namespace = getattr(metadata, "namespace", None)
    if namespace:
        return f"{namespace}/{name}"
    return name


def resource_version_of(obj: Any) -> str | None:
    return getattr(getattr(obj, "metadata", None), "resource_version", None)


class SharedInformer:
    """List-then-watch cache for one resource kind with event handlers.

    The informer thread performs an initial list to seed the store, marks
    itself synced, then streams watch events from the list's
    ``resourceVersion``.  The store and handler dispatch share one re-entrant
    lock, so handlers observe events for a key in the order the API server
    produced them and a handler registered late replays the store without
    interleaving with live events.

    Recovery mirrors the usual controller loop:

    * ``410 Gone`` re-lists and diffs the store against the fresh listing.
      Keys that vanished are delivered as :class:`DeletedFinalStateUnknown`.
    * ``401`` / ``403`` are configuration errors (RBAC/auth) and end the loop.
    * Anything else backs off exponentially with jitter, capped at 30 s.

    Every ``resync_period_seconds`` the whole store is redelivered as
    ``on_update(obj, obj)`` at the next watch-stream boundary.
    """

    def __init__(
        self,
        resource: str,
        list_func: Callable[..., Any],
        *,
        list_kwargs: dict[str, Any] | None = None,
        tweak_list_options: TweakListOptions | None = None,
        resync_period_seconds: float = DEFAULT_RESYNC_PERIOD_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.resource = resource
        self._list_func = list_func
        self._list_kwargs = dict(list_kwargs or {})
        self._tweak_list_options = tweak_list_options
        self.resync_period_seconds = resync_period_seconds
        self._clock = clock

        self._lock = threading.RLock()
        self._store: dict[str, Any] = {}
        self._handlers: list[ResourceEventHandler] = []
        self._synced = threading.Event()
        self._needs_list = True
        self._resource_version: str | None = None
        self._next_resync: float | None = None

        self._thread: threading.Thread | None = None
        self._active_watcher: watch.Watch | None = None
        self._watcher_lock = threading.Lock()

    @property
    def has_synced(self) -> bool:
        return self._synced.is_set()

    @property
    def started(self) -> bool:
        return self._thread is not None

    @property
    def resource_version(self) -> str | None:
        return self._resource_version

    def list(self) -> list[Any]:
        with self._lock:
            return list(self._store.values())

    def get(self, key: str) -> Any | None:
        with self._lock:
            return self._store.get(key)

    def add_event_handler(self, handler: ResourceEventHandler) -> None:
        """Register *handler*; if already synced, replay the store as adds."""
        with self._lock:
            self._handlers.append(handler)
            if not self.has_synced:
                return
            for obj in self._store.values():
                self._call(handler, "add", obj)

    def start(self, stop: StopSignal) -> None:
        """Run the informer on a daemon thread until *stop* fires."""
        with self._lock:
            if self._thread is not None:
                return
            self._thread = threading.Thread(
                target=self.run,
                args=(stop,),
                name=f"informer-{self.resource}",
                daemon=True,
            )
            thread = self._thread
        thread.start()

    def run(self, stop: StopSignal) -> None:
        stop.add_callback(self._stop_active_watch)
        try:
            self._run(stop)
        finally:
            stop.remove_callback(self._stop_active_watch)
            LOGGER.debug("Informer for %s stopped", self.resource)

    def _stop_active_watch(self) -> None:
        with self._watcher_lock:
            active_watcher = self._active_watcher
        if active_watcher is not None:
            active_watcher.stop()

    def _run(self, stop: StopSignal) -> None:
        backoff_seconds = 1
        watch_stream_count = 0

        while not stop.is_set():
            try:
                if self._needs_list:
                    self._relist()
                if stop.is_set():
                    break
                if watch_stream_count > 0:
                    METRICS.watch_reconnects_total.labels(resource=self.resource).inc()
                watch_stream_count += 1
                self._watch(stop)
                backoff_seconds = 1
                self.resync_if_due()
            except ApiException as exc:
                # 410 Gone means etcd compacted past our resourceVersion.
                if exc.status == 410:
                    LOGGER.warning(
                        "Watch of %s expired at resourceVersion %s, re-listing",
                        self.resource,
                        self._resource_version,
                    )
                    METRICS.relists_total.labels(resource=self.resource).inc()
                    self._needs_list = True
                    continue

                METRICS.watch_errors_total.labels(resource=self.resource).inc()
                if exc.status in {401, 403}:
                    LOGGER.error(
                        "Kubernetes API access denied for %s (status=%s). "
                        "Check RBAC and cluster credentials.",
                        self.resource,
                        exc.status,
                    )
                    return
                LOGGER.exception("Kubernetes API error while watching %s", self.resource)
                backoff_seconds = self._backoff(stop, backoff_seconds)
            except Exception:
                METRICS.watch_errors_total.labels(resource=self.resource).inc()
                LOGGER.exception("Unexpected error while watching %s", self.resource)
                backoff_seconds = self._backoff(stop, backoff_seconds)

    @staticmethod
    def _backoff(stop: StopSignal, backoff_seconds: int) -> int:
        jittered = backoff_seconds * (0.5 + random.random())  # noqa: S311
        stop.wait(timeout=jittered)
        return min(backoff_seconds * 2, MAX_BACKOFF_SECONDS)

    def _call_kwargs(self) -> dict[str, Any]:
        kwargs = dict(self._list_kwargs)
        if self._tweak_list_options is not None:
            self._tweak_list_options(kwargs)
        return kwargs

    def _relist(self) -> None:
        result = self._list_func(**self._call_kwargs())
        items = getattr(result, "items", None) or []
        self.replace(items)
        self._resource_version = resource_version_of(result)
        self._needs_list = False

    def replace(self, items: list[Any]) -> None:
        """Swap the store for *items*, dispatching the difference.

        The first call marks the informer synced once every initial add has
        been dispatched.
        """
        fresh: dict[str, Any] = {}
        for item in items:
            key = object_key(item)
            if key is not None:
                fresh[key] = item

        with self._lock:
            previous = self._store
            self._store = fresh
            for key, obj in fresh.items():
                old = previous.get(key)
                if old is None:
                    self._distribute("add", obj)
                else:
                    self._distribute("update", old, obj)
            for key, old in previous.items():
                if key not in fresh:
                    self._distribute("delete", DeletedFinalStateUnknown(key=key, obj=old))
            if not self._synced.is_set():
                self._synced.set()
                self._next_resync = self._clock() + self.resync_period_seconds

    def _watch(self, stop: StopSignal) -> None:
        watcher = watch.Watch()
        with self._watcher_lock:
            self._active_watcher = watcher
        try:
            if stop.is_set():
                return
            kwargs = self._call_kwargs()
            kwargs.setdefault("timeout_seconds", DEFAULT_WATCH_TIMEOUT_SECONDS)
            if self._resource_version:
                kwargs["resource_version"] = self._resource_version
            for event in watcher.stream(self._list_func, **kwargs):
                if stop.is_set():
                    break
                self.handle_event(event)
        finally:
            watcher.stop()
            with self._watcher_lock:
                if self._active_watcher is watcher:
                    self._active_watcher = None

    def handle_event(self, event: dict[str, Any]) -> None:
        event_type = str(event.get("type", ""))
        if event_type == "BOOKMARK":
            raw_metadata = (event.get("raw_object") or {}).get("metadata") or {}
            if raw_metadata.get("resourceVersion"):
                self._resource_version = raw_metadata["resourceVersion"]
            return

        obj = event.get("object")
        key = object_key(obj)
        if key is None:
            return
        version = resource_version_of(obj)
        if version:
            self._resource_version = version

        with self._lock:
            if event_type in {"ADDED", "MODIFIED"}:
                old = self._store.get(key)
                self._store[key] = obj
                if old is None:
                    self._distribute("add", obj)
                else:
                    self._distribute("update", old, obj)
            elif event_type == "DELETED":
                self._store.pop(key, None)
                self._distribute("delete", obj)

    def resync_if_due(self) -> bool:
        """Redeliver every cached object as an update when the period elapsed."""
        if self.resync_period_seconds <= 0 or self._next_resync is None:
            return False
        now = self._clock()
        if now < self._next_resync:
            return False
        with self._lock:
            for obj in self._store.values():
                self._distribute("update", obj, obj)
        self._next_resync = now + self.resync_period_seconds
        return True

    def _distribute(self, kind: str, *args: Any) -> None:
        for handler in list(self._handlers):
            self._call(handler, kind, *args)

    def _call(self, handler: ResourceEventHandler, kind: str, *args: Any) -> None:
        callback = getattr(handler, f"on_{kind}")
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            LOGGER.exception("Handler for %s failed on %s event", self.resource, kind)


class SharedInformerFactory:
    """Per-cluster cache of informers, at most one per resource kind.

    ``namespace=None`` watches every namespace.  Nodes are cluster-scoped and
    ignore the namespace.
    """

    def __init__(
        self,
        core_api: CoreV1Api,
        *,
        namespace: str | None = None,
        tweak_list_options: TweakListOptions | None = None,
        resync_period_seconds: float = DEFAULT_RESYNC_PERIOD_SECONDS,
    ) -> None:
        self.core_api = core_api
        self.namespace = namespace
        self.tweak_list_options = tweak_list_options
        self.resync_period_seconds = resync_period_seconds
        self._informers: dict[str, SharedInformer] = {}
        self._lock = threading.Lock()

    def pods(self) -> SharedInformer:
        return self.informer_for(PODS)

    def services(self) -> SharedInformer:
        return self.informer_for(SERVICES)

    def nodes(self) -> SharedInformer:
        return self.informer_for(NODES)

    def informer_for(self, resource: str) -> SharedInformer:
        with self._lock:
            informer = self._informers.get(resource)
            if informer is None:
                list_func, list_kwargs = self._list_func_for(resource)
                informer = SharedInformer(
                    resource,
                    list_func,
                    list_kwargs=list_kwargs,
                    tweak_list_options=self.tweak_list_options,
                    resync_period_seconds=self.resync_period_seconds,
                )
                self._informers[resource] = informer
            return informer

    def _list_func_for(self, resource: str) -> tuple[Callable[..., Any], dict[str, Any]]:
        if resource == NODES:
            return self.core_api.list_node, {}
        if resource == PODS:
            if self.namespace is None:
                return self.core_api.list_pod_for_all_namespaces, {}
            return self.core_api.list_namespaced_pod, {"namespace": self.namespace}
        if resource == SERVICES:
            if self.namespace is None:
                return self.core_api.list_service_for_all_namespaces, {}
            return self.core_api.list_namespaced_service, {"namespace": self.namespace}
        raise ValueError(f"unsupported resource kind: {resource!r}")

    def start(self, stop: StopSignal) -> None:
        """Start every informer created so far that is not already running."""
        with self._lock:
            informers = list(self._informers.values())
        for informer in informers:
            informer.start(stop)
