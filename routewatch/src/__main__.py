from __future__ import annotations

import json
import logging
import os
import re
import signal
import threading
from functools import partial

from routewatch.src.cluster_controller import ClusterController
from routewatch.src.config import Settings, load_clusters, load_settings
from routewatch.src.health import start_health_server
from routewatch.src.kube import ClusterClient, build_informer_factory
from routewatch.src.metrics import METRICS
from routewatch.src.rebuild import RoutesRebuildQueue
from routewatch.src.registry import ControllerRegistry

RUNTIME_VERSION = "0.1.0"

# Cluster credentials reach log lines through kube client errors and
# clusters-file diagnostics.
_SECRET_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"(?i)(\bbearer\s+)[\w.~+/=-]+"),
    re.compile(
        r"(?i)(\b(?:authorization|token|client-key-data|client-certificate-data"
        r"|password|api[_-]?key)\b[\"']?\s*[:=]\s*[\"']?)[^\s,;\"']+"
    ),
)

LOGGER = logging.getLogger(__name__)


def redact_sensitive_text(value: str) -> str:
    for pattern in _SECRET_PATTERNS:
        value = pattern.sub(r"\1[REDACTED]", value)
    return value


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with cluster credentials masked.

    Each informer runs on its own thread, so the thread name is kept to tell
    pod, service and node watch output apart.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, str] = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName or "",
            "msg": redact_sensitive_text(record.getMessage()),
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["error"] = redact_sensitive_text(self.formatException(record.exc_info))
        return json.dumps(entry)


def configure_logging(level: str) -> None:
    log_handler = logging.StreamHandler()
    log_handler.setFormatter(JSONFormatter())
    logging.root.addHandler(log_handler)
    logging.root.setLevel(getattr(logging, level, logging.INFO))


def build_registry(settings: Settings, rebuild_queue: RoutesRebuildQueue) -> ControllerRegistry:
    factory_builder = partial(
        build_informer_factory,
        namespace=settings.watch_namespace,
        resync_period_seconds=settings.resync_seconds,
    )

    def _new_controller(cluster: ClusterClient) -> ClusterController:
        return ClusterController(
            cluster,
            rebuild_queue,
            informer_factory_builder=factory_builder,
            label_prefix=settings.label_prefix,
        )

    return ControllerRegistry(controller_factory=_new_controller)


def drain_rebuilds(rebuild_queue: RoutesRebuildQueue) -> list[str]:
    apps = rebuild_queue.drain()
    if apps:
        LOGGER.info("Handing off routes rebuild for %d app(s): %s", len(apps), ", ".join(apps))
    return apps


def main() -> None:
    """Entrypoint: configure logging, start one controller per cluster, and wait for a signal."""
    settings = load_settings()
    configure_logging(settings.log_level)
    METRICS.build_info.info(
        {
            "version": os.getenv("APP_VERSION", RUNTIME_VERSION),
            "revision": os.getenv("GIT_SHA", "unknown"),
        }
    )

    clusters = load_clusters(settings.clusters_file)
    rebuild_queue = RoutesRebuildQueue()
    registry = build_registry(settings, rebuild_queue)

    ready = threading.Event()
    health_server = start_health_server(
        ready=ready, port=settings.health_port, clusters=registry.names
    )

    shutdown_event = threading.Event()

    def _handle_signal(signum: int, frame: object) -> None:
        LOGGER.info("Received signal %d, shutting down", signum)
        shutdown_event.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    try:
        registry.init_all(clusters)
        ready.set()
        LOGGER.info("Watching %d cluster(s)", len(registry))
        while not shutdown_event.wait(timeout=settings.drain_interval_seconds):
            drain_rebuilds(rebuild_queue)
        drain_rebuilds(rebuild_queue)
    finally:
        ready.clear()
        registry.stop_all()
        health_server.shutdown()
        LOGGER.info("Controller stopped")


if __name__ == "__main__":
    main()
