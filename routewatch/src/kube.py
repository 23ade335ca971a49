from __future__ import annotations

import logging
from dataclasses import dataclass, field

from kubernetes import client, config
from kubernetes.client import CoreV1Api
from kubernetes.config.config_exception import ConfigException

from routewatch.src.informer import (
    DEFAULT_RESYNC_PERIOD_SECONDS,
    SharedInformerFactory,
    TweakListOptions,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_CLUSTER_TIMEOUT_SECONDS = 60.0
ROUTER_LOCAL_KEY = "router-local"

_TRUE_VALUES = {"1", "t", "true", "yes", "on"}
_FALSE_VALUES = {"0", "f", "false", "no", "off"}


def parse_bool(value: str) -> bool:
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ValueError(f"invalid boolean value: {value!r}")


def load_kube_configuration(
    configuration: client.Configuration, context: str | None = None
) -> None:
    """Fill *configuration* from the ambient Kubernetes environment.

    Without an explicit kubeconfig context, in-cluster config is tried first
    (running inside a pod), falling back to the local kubeconfig for
    development.
    """
    if context is None:
        try:
            config.load_incluster_config(client_configuration=configuration)
            LOGGER.info("Loaded in-cluster Kubernetes configuration")
            return
        except ConfigException:
            pass
    config.load_kube_config(context=context, client_configuration=configuration)
    LOGGER.info("Loaded local kubeconfig (context=%s)", context or "current")


@dataclass
class ClusterClient:
    """Connection parameters for one registered cluster.

    Only ``name``, ``timeout`` and :meth:`router_address_local` matter to the
    watch controllers; the rest is handed to the Kubernetes client.  A
    cluster without ``addresses`` resolves its connection from in-cluster
    config or the kubeconfig (``kube_context``).
    """

    name: str
    addresses: list[str] = field(default_factory=list)
    token: str | None = None
    ca_cert: str | None = None
    insecure: bool = False
    timeout: float = DEFAULT_CLUSTER_TIMEOUT_SECONDS
    kube_context: str | None = None
    custom_data: dict[str, str] = field(default_factory=dict)

    def config_for_pool(self, pool: str, key: str) -> str | None:
        """Look up ``<pool>:<key>`` in ``custom_data``, then the bare ``key``."""
        if pool:
            value = self.custom_data.get(f"{pool}:{key}")
            if value is not None:
                return value
        return self.custom_data.get(key)

    def router_address_local(self, pool: str) -> bool:
        """Whether routers for *pool* reach pods through cluster-local addresses.

        Raises ``ValueError`` when the configured value is not a boolean.
        """
        raw = self.config_for_pool(pool, ROUTER_LOCAL_KEY)
        if not raw:
            return False
        return parse_bool(raw)

    def client_configuration(self) -> client.Configuration:
        configuration = client.Configuration()
        if not self.addresses:
            load_kube_configuration(configuration, context=self.kube_context)
            return configuration
        configuration.host = self.addresses[0]
        if self.token:
            configuration.api_key = {"authorization": self.token}
            configuration.api_key_prefix = {"authorization": "Bearer"}
        if self.ca_cert:
            configuration.ssl_ca_cert = self.ca_cert
        configuration.verify_ssl = not self.insecure
        return configuration

    def api_client(self) -> client.ApiClient:
        return client.ApiClient(self.client_configuration())


def tweak_list_options(timeout: float) -> TweakListOptions:
    """Return a list-options tweak bounding each list/watch call by *timeout*.

    An explicit ``timeout_seconds`` already present on the call is kept.
    """
    timeout_seconds = int(timeout)

    def _tweak(options: dict[str, object]) -> None:
        if options.get("timeout_seconds") is None:
            options["timeout_seconds"] = timeout_seconds

    return _tweak


def build_informer_factory(
    cluster: ClusterClient,
    *,
    namespace: str | None = None,
    resync_period_seconds: float = DEFAULT_RESYNC_PERIOD_SECONDS,
) -> SharedInformerFactory:
    """Build the informer factory for *cluster*.

    The API client carries no request-level timeout so long-lived watches are
    not severed; the cluster timeout instead bounds each list/watch call on
    the server side through :func:`tweak_list_options`.
    """
    core_api = CoreV1Api(cluster.api_client())
    return SharedInformerFactory(
        core_api,
        namespace=namespace,
        tweak_list_options=tweak_list_options(cluster.timeout),
        resync_period_seconds=resync_period_seconds,
    )
