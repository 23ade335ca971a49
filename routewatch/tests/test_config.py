from __future__ import annotations

from pathlib import Path

import pytest

from routewatch.src.config import ConfigError, Settings, env_int, load_clusters, load_settings


class TestLoadSettings:
    def test_defaults(self) -> None:
        settings = load_settings(env={})

        assert settings == Settings()
        assert settings.resync_seconds == 60
        assert settings.watch_namespace is None

    def test_overrides_from_env(self) -> None:
        settings = load_settings(
            env={
                "LOG_LEVEL": "debug",
                "HEALTH_PORT": "9090",
                "CLUSTERS_FILE": "/tmp/clusters.yaml",
                "LABEL_PREFIX": "example.com/",
                "INFORMER_RESYNC_SECONDS": "0",
                "WATCH_NAMESPACE": "apps",
                "REBUILD_DRAIN_INTERVAL_SECONDS": "2",
            }
        )

        assert settings.log_level == "DEBUG"
        assert settings.health_port == 9090
        assert settings.clusters_file == "/tmp/clusters.yaml"
        assert settings.label_prefix == "example.com/"
        assert settings.resync_seconds == 0
        assert settings.watch_namespace == "apps"
        assert settings.drain_interval_seconds == 2

    def test_rejects_invalid_health_port(self) -> None:
        with pytest.raises(ConfigError, match="HEALTH_PORT must be <= 65535, got: 70000"):
            load_settings(env={"HEALTH_PORT": "70000"})

    def test_rejects_blank_label_prefix(self) -> None:
        with pytest.raises(ConfigError, match="LABEL_PREFIX"):
            load_settings(env={"LABEL_PREFIX": "  "})


def test_env_int_rejects_non_integer() -> None:
    with pytest.raises(ConfigError, match="RETRIES must be an integer"):
        env_int("RETRIES", 3, env={"RETRIES": "three"})


def test_env_int_enforces_minimum() -> None:
    with pytest.raises(ConfigError, match="RETRIES must be >= 1, got: 0"):
        env_int("RETRIES", 3, minimum=1, env={"RETRIES": "0"})


class TestLoadClusters:
    def _write(self, tmp_path: Path, content: str) -> Path:
        path = tmp_path / "clusters.yaml"
        path.write_text(content, encoding="utf-8")
        return path

    def test_parses_clusters(self, tmp_path: Path) -> None:
        path = self._write(
            tmp_path,
            """
clusters:
  - name: east
    addresses: https://10.0.0.1:6443
    token: secret-token
    ca_cert: /etc/ca.crt
    timeout: 30
    custom_data:
      router-local: true
      pool-b:router-local: "false"
  - name: local
    kube_context: kind-dev
    insecure: "yes"
""",
        )

        east, local = load_clusters(path)

        assert east.name == "east"
        assert east.addresses == ["https://10.0.0.1:6443"]
        assert east.token == "secret-token"
        assert east.timeout == 30.0
        assert east.custom_data == {"router-local": "True", "pool-b:router-local": "false"}
        assert east.router_address_local("pool-a") is True
        assert east.router_address_local("pool-b") is False
        assert local.addresses == []
        assert local.kube_context == "kind-dev"
        assert local.insecure is True
        assert local.timeout == 60.0

    def test_empty_file_has_no_clusters(self, tmp_path: Path) -> None:
        assert load_clusters(self._write(tmp_path, "")) == []

    def test_rejects_duplicate_names(self, tmp_path: Path) -> None:
        path = self._write(tmp_path, "clusters:\n  - name: a\n  - name: a\n")

        with pytest.raises(ConfigError, match="duplicate cluster name: a"):
            load_clusters(path)

    def test_rejects_missing_name(self, tmp_path: Path) -> None:
        path = self._write(tmp_path, "clusters:\n  - addresses: [https://k8s]\n")

        with pytest.raises(ConfigError, match=r"clusters\[0\].name"):
            load_clusters(path)

    @pytest.mark.parametrize("timeout", ["soon", "0", "-5"])
    def test_rejects_bad_timeout(self, tmp_path: Path, timeout: str) -> None:
        path = self._write(tmp_path, f"clusters:\n  - name: a\n    timeout: {timeout}\n")

        with pytest.raises(ConfigError, match="timeout"):
            load_clusters(path)

    def test_rejects_non_list_document(self, tmp_path: Path) -> None:
        path = self._write(tmp_path, "clusters: nope\n")

        with pytest.raises(ConfigError, match="'clusters' list"):
            load_clusters(path)

    def test_rejects_invalid_yaml(self, tmp_path: Path) -> None:
        path = self._write(tmp_path, "clusters: [\n")

        with pytest.raises(ConfigError, match="invalid YAML"):
            load_clusters(path)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="cannot read clusters file"):
            load_clusters(tmp_path / "absent.yaml")
