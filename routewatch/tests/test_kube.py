from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import patch

import pytest
from kubernetes import client
from kubernetes.config.config_exception import ConfigException

from routewatch.src.kube import (
    ClusterClient,
    build_informer_factory,
    load_kube_configuration,
    parse_bool,
    tweak_list_options,
)


def test_load_kube_configuration_in_cluster() -> None:
    configuration = client.Configuration()
    with (
        patch("routewatch.src.kube.config.load_incluster_config") as mock_incluster,
        patch("routewatch.src.kube.config.load_kube_config") as mock_kubeconfig,
    ):
        load_kube_configuration(configuration)

    mock_incluster.assert_called_once_with(client_configuration=configuration)
    mock_kubeconfig.assert_not_called()


def test_load_kube_configuration_local_fallback() -> None:
    configuration = client.Configuration()
    with (
        patch(
            "routewatch.src.kube.config.load_incluster_config",
            side_effect=ConfigException("not in cluster"),
        ),
        patch("routewatch.src.kube.config.load_kube_config") as mock_kubeconfig,
    ):
        load_kube_configuration(configuration)

    mock_kubeconfig.assert_called_once_with(context=None, client_configuration=configuration)


def test_load_kube_configuration_with_context_skips_in_cluster() -> None:
    configuration = client.Configuration()
    with (
        patch("routewatch.src.kube.config.load_incluster_config") as mock_incluster,
        patch("routewatch.src.kube.config.load_kube_config") as mock_kubeconfig,
    ):
        load_kube_configuration(configuration, context="staging")

    mock_incluster.assert_not_called()
    assert mock_kubeconfig.call_args.kwargs["context"] == "staging"


@pytest.mark.parametrize("value", ["true", "True", "1", "yes", "t", " on "])
def test_parse_bool_truthy(value: str) -> None:
    assert parse_bool(value) is True


@pytest.mark.parametrize("value", ["false", "0", "no", "F", "off"])
def test_parse_bool_falsy(value: str) -> None:
    assert parse_bool(value) is False


def test_parse_bool_rejects_garbage() -> None:
    with pytest.raises(ValueError, match="invalid boolean"):
        parse_bool("maybe")


# ---------------------------------------------------------------------------
# ClusterClient
# ---------------------------------------------------------------------------


def test_router_address_local_defaults_to_false() -> None:
    assert ClusterClient(name="c1").router_address_local("pool-a") is False


def test_router_address_local_cluster_wide_value() -> None:
    cluster = ClusterClient(name="c1", custom_data={"router-local": "true"})

    assert cluster.router_address_local("pool-a") is True
    assert cluster.router_address_local("") is True


def test_router_address_local_pool_override() -> None:
    cluster = ClusterClient(
        name="c1",
        custom_data={"router-local": "true", "pool-b:router-local": "false"},
    )

    assert cluster.router_address_local("pool-a") is True
    assert cluster.router_address_local("pool-b") is False


def test_router_address_local_invalid_value_raises() -> None:
    cluster = ClusterClient(name="c1", custom_data={"router-local": "sometimes"})

    with pytest.raises(ValueError):
        cluster.router_address_local("pool-a")


def test_client_configuration_from_addresses() -> None:
    cluster = ClusterClient(
        name="c1",
        addresses=["https://10.0.0.1:6443", "https://10.0.0.2:6443"],
        token="abc",
        ca_cert="/etc/ca.crt",
        insecure=True,
    )

    configuration = cluster.client_configuration()

    assert configuration.host == "https://10.0.0.1:6443"
    assert configuration.api_key == {"authorization": "abc"}
    assert configuration.api_key_prefix == {"authorization": "Bearer"}
    assert configuration.ssl_ca_cert == "/etc/ca.crt"
    assert configuration.verify_ssl is False


def test_client_configuration_without_addresses_uses_kubeconfig() -> None:
    cluster = ClusterClient(name="local", kube_context="kind-dev")

    with patch("routewatch.src.kube.load_kube_configuration") as mock_load:
        configuration = cluster.client_configuration()

    mock_load.assert_called_once_with(configuration, context="kind-dev")


# ---------------------------------------------------------------------------
# Watch-stream factory
# ---------------------------------------------------------------------------


def test_tweak_injects_cluster_timeout_in_whole_seconds() -> None:
    tweak = tweak_list_options(12.7)
    options: dict[str, object] = {}

    tweak(options)

    assert options == {"timeout_seconds": 12}


def test_tweak_keeps_explicit_timeout() -> None:
    tweak = tweak_list_options(30)
    options: dict[str, object] = {"timeout_seconds": 5}

    tweak(options)

    assert options["timeout_seconds"] == 5


def test_build_informer_factory_applies_cluster_timeout() -> None:
    cluster = ClusterClient(name="c1", addresses=["https://k8s:6443"], timeout=45)
    api_client = SimpleNamespace(name="api")

    with (
        patch.object(ClusterClient, "api_client", return_value=api_client),
        patch("routewatch.src.kube.CoreV1Api") as mock_core_api,
    ):
        factory = build_informer_factory(cluster, namespace="apps", resync_period_seconds=0)

    mock_core_api.assert_called_once_with(api_client)
    assert factory.core_api is mock_core_api.return_value
    assert factory.namespace == "apps"
    assert factory.resync_period_seconds == 0
    options: dict[str, object] = {}
    factory.tweak_list_options(options)
    assert options == {"timeout_seconds": 45}


def test_build_informer_factory_propagates_client_errors() -> None:
    cluster = ClusterClient(name="c1")

    with (
        patch.object(
            ClusterClient, "api_client", side_effect=ConfigException("no kubeconfig")
        ),
        pytest.raises(ConfigException),
    ):
        build_informer_factory(cluster)


def test_api_client_wraps_configuration() -> None:
    cluster = ClusterClient(name="c1", addresses=["https://k8s:6443"])

    with patch("routewatch.src.kube.client.ApiClient") as mock_api_client:
        result = cluster.api_client()

    assert result is mock_api_client.return_value
    configuration = mock_api_client.call_args.args[0]
    assert configuration.host == "https://k8s:6443"
