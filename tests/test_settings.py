"""Tests for TOML settings and environment overrides."""

from __future__ import annotations

from pathlib import Path

import pytest

from mernkube_toolkit.errors import ConfigError
from mernkube_toolkit.settings import (
    DEFAULT_STATE_DIR,
    load_settings,
    parse_settings,
)


def test_defaults_match_the_cluster_build() -> None:
    settings = parse_settings({}, env={})

    assert settings.ssh.user == "ubuntu"
    assert settings.ssh.connect_timeout == 10
    assert settings.kubernetes.version == "1.29"
    assert settings.kubernetes.pod_network_cidr == "10.244.0.0/16"
    assert settings.mongodb.port == 27017
    assert settings.monitoring.grafana_nodeport == 30003
    assert settings.argocd.nodeport == 30080
    assert [repo.name for repo in settings.helm_repos] == [
        "prometheus-community",
        "grafana",
        "argo",
    ]
    assert settings.pipeline.state_dir == DEFAULT_STATE_DIR
    assert settings.pipeline.tolerate_slow_rollout is False


def test_retry_defaults_build_policies() -> None:
    retry = parse_settings({}, env={}).retry

    assert retry.connectivity().attempts == 30
    assert retry.connectivity().delay == 10.0
    assert retry.readiness().attempts == 10
    assert retry.readiness().delay == 30.0
    assert retry.mongodb_start().attempts == 30
    assert retry.mongodb_start().delay == 2.0


def test_environment_wins_over_file_values() -> None:
    settings = parse_settings(
        {"ssh": {"user": "admin"}, "mongodb": {"port": 27018}},
        env={"SSH_USER": "ec2-user", "MONGODB_PORT": "27019", "GRAFANA_NODEPORT": "31000"},
    )

    assert settings.ssh.user == "ec2-user"
    assert settings.mongodb.port == 27019
    assert settings.monitoring.grafana_nodeport == 31000


def test_load_settings_resolves_relative_paths(tmp_path: Path) -> None:
    config = tmp_path / "mernkube.toml"
    config.write_text(
        """
[ssh]
key_path = "./keys/id_ed25519"
connect_timeout = 5

[pipeline]
state_dir = "state"
tolerate_slow_rollout = true

[[helm.repos]]
name = "bitnami"
url = "https://charts.bitnami.com/bitnami"
"""
    )

    settings = load_settings(config, env={})

    assert settings.ssh.key_path == (tmp_path / "keys" / "id_ed25519").resolve()
    assert settings.ssh.connect_timeout == 5
    assert settings.pipeline.state_dir == (tmp_path / "state").resolve()
    assert settings.pipeline.tolerate_slow_rollout is True
    assert [repo.name for repo in settings.helm_repos] == ["bitnami"]


def test_unknown_keys_are_rejected() -> None:
    with pytest.raises(ConfigError, match="ssh.username"):
        parse_settings({"ssh": {"username": "x"}}, env={})

    with pytest.raises(ConfigError, match=r"\[clusters\]"):
        parse_settings({"clusters": {}}, env={})


def test_invalid_numbers_are_reported() -> None:
    with pytest.raises(ConfigError, match="mongodb.port"):
        parse_settings({"mongodb": {"port": "not-a-port"}}, env={})

    with pytest.raises(ConfigError, match="Invalid retry settings"):
        parse_settings({"retry": {"readiness_attempts": 0}}, env={})


def test_missing_config_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_settings(tmp_path / "absent.toml", env={})


def test_mongodb_secrets_are_required_before_use() -> None:
    settings = parse_settings({"mongodb": {"admin_password": "a"}}, env={})

    with pytest.raises(ConfigError) as excinfo:
        settings.mongodb.require_secrets()

    assert "mongodb.app_password" in str(excinfo.value)
    assert "mongodb.exporter_password" in str(excinfo.value)
    assert "mongodb.admin_password" not in str(excinfo.value)


def test_kubeconfig_defaults_to_login_home() -> None:
    settings = parse_settings({"ssh": {"user": "ops"}}, env={})

    assert settings.kubeconfig_path() == "/home/ops/.kube/config"


def test_empty_state_dir_is_rejected() -> None:
    with pytest.raises(ConfigError, match="pipeline.state_dir must not be empty"):
        parse_settings({"pipeline": {"state_dir": "  "}}, env={})
