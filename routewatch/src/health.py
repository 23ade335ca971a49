from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

LOGGER = logging.getLogger(__name__)

ClusterLister = Callable[[], list[str]]


def _no_clusters() -> list[str]:
    return []


class _HealthHandler(BaseHTTPRequestHandler):
    """Serves ``/healthz``, ``/readyz`` and ``/metrics``.

    ``/readyz`` answers with a JSON body naming the clusters whose
    controllers have started, so an operator can tell which watches are live
    while the process is still syncing.
    """

    ready_event: threading.Event
    list_clusters: ClusterLister

    def _send(self, status: int, body: bytes, content_type: str) -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _readiness(self) -> None:
        ready = self.ready_event.is_set()
        body = json.dumps({"ready": ready, "clusters": sorted(self.list_clusters())})
        self._send(200 if ready else 503, body.encode(), "application/json")

    def do_GET(self) -> None:
        path = self.path.split("?", 1)[0]
        if path == "/healthz":
            self._send(200, b"ok", "text/plain")
        elif path == "/readyz":
            self._readiness()
        elif path == "/metrics":
            self._send(200, generate_latest(), CONTENT_TYPE_LATEST)
        else:
            self._send(404, b"not found", "text/plain")

    def log_message(self, fmt: str, *args: Any) -> None:
        LOGGER.debug(fmt, *args)


def make_health_handler(
    ready: threading.Event, clusters: ClusterLister = _no_clusters
) -> type[_HealthHandler]:
    # HTTPServer instantiates handlers itself, so state rides on the class.
    return type(
        "_BoundHealthHandler",
        (_HealthHandler,),
        {"ready_event": ready, "list_clusters": staticmethod(clusters)},
    )


def start_health_server(
    ready: threading.Event, port: int, clusters: ClusterLister = _no_clusters
) -> ThreadingHTTPServer:
    """Serve health and metrics on *port* from a daemon thread."""
    server = ThreadingHTTPServer(("0.0.0.0", port), make_health_handler(ready, clusters))  # noqa: S104
    server.daemon_threads = True
    threading.Thread(target=server.serve_forever, name="health-server", daemon=True).start()
    LOGGER.info("Health server listening on :%d", server.server_address[1])
    return server
