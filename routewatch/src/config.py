from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from routewatch.src.informer import DEFAULT_RESYNC_PERIOD_SECONDS
from routewatch.src.kube import DEFAULT_CLUSTER_TIMEOUT_SECONDS, ClusterClient, parse_bool
from routewatch.src.labels import DEFAULT_LABEL_PREFIX


class ConfigError(RuntimeError):
    """Raised when the process configuration or clusters file is invalid."""


@dataclass(frozen=True)
class Settings:
    """Immutable process settings loaded at startup.

    Attributes:
        log_level:        Root logger level name.
        health_port:      Port for ``/healthz``, ``/readyz`` and ``/metrics``.
        clusters_file:    YAML file listing the clusters to watch.
        label_prefix:     Prefix of the app identity labels on pods.
        resync_seconds:   Informer resync period; ``0`` disables resync.
        watch_namespace:  Namespace for pods and services, or ``None`` for all.
        drain_interval_seconds: How often queued rebuilds are handed off.
    """

    log_level: str = "INFO"
    health_port: int = 8080
    clusters_file: str = "/etc/routewatch/clusters.yaml"
    label_prefix: str = DEFAULT_LABEL_PREFIX
    resync_seconds: int = DEFAULT_RESYNC_PERIOD_SECONDS
    watch_namespace: str | None = None
    drain_interval_seconds: int = 5


def env_int(
    name: str,
    default: int,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
    env: Mapping[str, str] | None = None,
) -> int:
    values = env if env is not None else os.environ
    raw = values.get(name)
    if raw is None:
        value = default
    else:
        try:
            value = int(raw)
        except ValueError as exc:
            raise ConfigError(f"{name} must be an integer") from exc

    if minimum is not None and value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got: {value}")
    if maximum is not None and value > maximum:
        raise ConfigError(f"{name} must be <= {maximum}, got: {value}")
    return value


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    values = env if env is not None else os.environ

    label_prefix = values.get("LABEL_PREFIX", DEFAULT_LABEL_PREFIX)
    if not label_prefix.strip():
        raise ConfigError("LABEL_PREFIX must be a non-empty string")

    return Settings(
        log_level=values.get("LOG_LEVEL", "INFO").upper(),
        health_port=env_int("HEALTH_PORT", 8080, minimum=0, maximum=65535, env=values),
        clusters_file=values.get("CLUSTERS_FILE", Settings.clusters_file),
        label_prefix=label_prefix,
        resync_seconds=env_int(
            "INFORMER_RESYNC_SECONDS", DEFAULT_RESYNC_PERIOD_SECONDS, minimum=0, env=values
        ),
        watch_namespace=values.get("WATCH_NAMESPACE") or None,
        drain_interval_seconds=env_int(
            "REBUILD_DRAIN_INTERVAL_SECONDS", 5, minimum=1, env=values
        ),
    )


def _cluster_from_entry(index: int, entry: Any) -> ClusterClient:
    if not isinstance(entry, dict):
        raise ConfigError(f"clusters[{index}] must be a mapping")

    name = entry.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ConfigError(f"clusters[{index}].name must be a non-empty string")

    addresses = entry.get("addresses") or []
    if isinstance(addresses, str):
        addresses = [addresses]
    if not isinstance(addresses, list) or not all(isinstance(a, str) for a in addresses):
        raise ConfigError(f"cluster {name}: addresses must be a list of strings")

    try:
        timeout = float(entry.get("timeout", DEFAULT_CLUSTER_TIMEOUT_SECONDS))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"cluster {name}: timeout must be a number") from exc
    if timeout <= 0:
        raise ConfigError(f"cluster {name}: timeout must be positive")

    insecure = entry.get("insecure", False)
    if isinstance(insecure, str):
        try:
            insecure = parse_bool(insecure)
        except ValueError as exc:
            raise ConfigError(f"cluster {name}: {exc}") from exc

    custom_data = entry.get("custom_data") or {}
    if not isinstance(custom_data, dict):
        raise ConfigError(f"cluster {name}: custom_data must be a mapping")

    return ClusterClient(
        name=name,
        addresses=list(addresses),
        token=entry.get("token"),
        ca_cert=entry.get("ca_cert"),
        insecure=bool(insecure),
        timeout=timeout,
        kube_context=entry.get("kube_context"),
        custom_data={str(k): str(v) for k, v in custom_data.items()},
    )


def load_clusters(path: str | Path) -> list[ClusterClient]:
    """Parse the clusters file.

    Expected shape::

        clusters:
          - name: east
            addresses: [https://10.0.0.1:6443]
            token: ...
            timeout: 30
            custom_data:
              router-local: "true"
    """
    try:
        document = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"cannot read clusters file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in clusters file {path}: {exc}") from exc

    if document is None:
        return []
    if not isinstance(document, dict) or not isinstance(document.get("clusters", []), list):
        raise ConfigError(f"clusters file {path} must contain a 'clusters' list")

    clusters: list[ClusterClient] = []
    seen: set[str] = set()
    for index, entry in enumerate(document.get("clusters") or []):
        cluster = _cluster_from_entry(index, entry)
        if cluster.name in seen:
            raise ConfigError(f"duplicate cluster name: {cluster.name}")
        seen.add(cluster.name)
        clusters.append(cluster)
    return clusters
