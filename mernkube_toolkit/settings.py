"""Typed configuration loaded from TOML with environment overrides.

Defaults mirror the values the MERN cluster has always been built with.
Every section is optional; a missing file yields the defaults. Environment
variables win over the file so operators can keep secrets out of it:

``SSH_KEY_PATH`` / ``SSH_USER``
    SSH credential and remote login.
``KUBERNETES_VERSION`` / ``CALICO_VERSION``
    Package repository and manifest versions.
``MONGODB_*``
    Server version, paths and the admin/application/exporter accounts.
``GRAFANA_ADMIN_PASSWORD`` / ``GRAFANA_NODEPORT`` / ``PROMETHEUS_*``
    Monitoring stack values.
``ARGOCD_NAMESPACE`` / ``ARGOCD_VERSION`` / ``ARGOCD_NODEPORT``
    GitOps controller.
``MERNKUBE_STATE_DIR``
    Where local artifacts (join command, credentials) are written.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError as exc:  # pragma: no cover - Python < 3.11 guard
    raise SystemExit("python 3.11+ is required to load TOML configs") from exc

from .errors import ConfigError
from .retry import RetryPolicy

DEFAULT_STATE_DIR = Path.home() / "mernkube" / "state"

DEFAULT_HELM_REPOS: tuple[tuple[str, str], ...] = (
    ("prometheus-community", "https://prometheus-community.github.io/helm-charts"),
    ("grafana", "https://grafana.github.io/helm-charts"),
    ("argo", "https://argoproj.github.io/argo-helm"),
)

ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "SSH_KEY_PATH": ("ssh", "key_path"),
    "SSH_USER": ("ssh", "user"),
    "KUBERNETES_VERSION": ("kubernetes", "version"),
    "CALICO_VERSION": ("kubernetes", "calico_version"),
    "MONGODB_VERSION": ("mongodb", "version"),
    "MONGODB_PORT": ("mongodb", "port"),
    "MONGODB_DATA_DIR": ("mongodb", "data_dir"),
    "MONGODB_LOG_DIR": ("mongodb", "log_dir"),
    "MONGODB_ADMIN_USER": ("mongodb", "admin_user"),
    "MONGODB_ADMIN_PASSWORD": ("mongodb", "admin_password"),
    "MONGODB_APP_DATABASE": ("mongodb", "app_database"),
    "MONGODB_APP_USER": ("mongodb", "app_user"),
    "MONGODB_APP_PASSWORD": ("mongodb", "app_password"),
    "MONGODB_EXPORTER_VERSION": ("mongodb", "exporter_version"),
    "MONGODB_EXPORTER_USER": ("mongodb", "exporter_user"),
    "MONGODB_EXPORTER_PASSWORD": ("mongodb", "exporter_password"),
    "GRAFANA_ADMIN_PASSWORD": ("monitoring", "grafana_admin_password"),
    "GRAFANA_NODEPORT": ("monitoring", "grafana_nodeport"),
    "PROMETHEUS_RETENTION": ("monitoring", "prometheus_retention"),
    "PROMETHEUS_STORAGE_SIZE": ("monitoring", "prometheus_storage_size"),
    "ARGOCD_NAMESPACE": ("argocd", "namespace"),
    "ARGOCD_VERSION": ("argocd", "version"),
    "ARGOCD_NODEPORT": ("argocd", "nodeport"),
    "MERNKUBE_STATE_DIR": ("pipeline", "state_dir"),
}


@dataclass(slots=True)
class SshSettings:
    """How to authenticate and how long a single connection attempt may take."""

    key_path: Path | None = None
    user: str = "ubuntu"
    port: int = 22
    connect_timeout: int = 10
    command_timeout: int | None = 1800


@dataclass(slots=True)
class HostsSettings:
    """Static addresses; provisioning output and environment override these."""

    bastion: str | None = None
    control_plane: str | None = None
    workers: list[str] = field(default_factory=list)
    database: str | None = None


@dataclass(slots=True)
class KubernetesSettings:
    version: str = "1.29"
    pod_network_cidr: str = "10.244.0.0/16"
    service_cidr: str = "10.96.0.0/12"
    calico_version: str = "v3.27.0"
    kubeconfig: str | None = None

    def calico_manifest_url(self) -> str:
        return (
            "https://raw.githubusercontent.com/projectcalico/calico/"
            f"{self.calico_version}/manifests/calico.yaml"
        )


@dataclass(slots=True)
class MongoSettings:
    version: str = "7.0"
    port: int = 27017
    data_dir: str = "/data/mongodb"
    log_dir: str = "/var/log/mongodb"
    data_device: str | None = "/dev/xvdf"
    admin_user: str = "admin"
    admin_password: str | None = None
    app_database: str = "todo_app"
    app_user: str = "todo_user"
    app_password: str | None = None
    exporter_version: str = "0.40.0"
    exporter_user: str = "exporter"
    exporter_password: str | None = None
    exporter_port: int = 9216

    def require_secrets(self) -> None:
        missing = [
            name
            for name in ("admin_password", "app_password", "exporter_password")
            if not getattr(self, name)
        ]
        if missing:
            joined = ", ".join(f"mongodb.{name}" for name in missing)
            raise ConfigError(
                f"MongoDB setup needs {joined}; set them in the config file or via "
                "MONGODB_ADMIN_PASSWORD / MONGODB_APP_PASSWORD / MONGODB_EXPORTER_PASSWORD."
            )


@dataclass(slots=True)
class MonitoringSettings:
    namespace: str = "monitoring"
    release: str = "prometheus-stack"
    chart: str = "prometheus-community/kube-prometheus-stack"
    grafana_admin_password: str | None = None
    grafana_nodeport: int = 30003
    prometheus_retention: str = "15d"
    prometheus_storage_size: str = "50Gi"
    alertmanager_storage_size: str = "10Gi"
    helm_timeout: str = "10m"

    def require_secrets(self) -> None:
        if not self.grafana_admin_password:
            raise ConfigError(
                "monitoring.grafana_admin_password is required; set it in the config "
                "file or export GRAFANA_ADMIN_PASSWORD."
            )


@dataclass(slots=True)
class ArgoSettings:
    namespace: str = "argocd"
    version: str = "stable"
    nodeport: int = 30080

    def manifest_url(self) -> str:
        return (
            "https://raw.githubusercontent.com/argoproj/argo-cd/"
            f"{self.version}/manifests/install.yaml"
        )


@dataclass(slots=True)
class HelmRepo:
    name: str
    url: str


@dataclass(slots=True)
class RetrySettings:
    """Attempt caps and delays for every bounded wait in the pipeline."""

    connectivity_attempts: int = 30
    connectivity_delay: float = 10.0
    grace_period: float = 60.0
    check_targets: bool = True
    readiness_attempts: int = 10
    readiness_delay: float = 30.0
    kubectl_wait_timeout: str = "60s"
    mongodb_start_attempts: int = 30
    mongodb_start_delay: float = 2.0

    def connectivity(self) -> RetryPolicy:
        return RetryPolicy(self.connectivity_attempts, self.connectivity_delay)

    def readiness(self) -> RetryPolicy:
        return RetryPolicy(self.readiness_attempts, self.readiness_delay)

    def mongodb_start(self) -> RetryPolicy:
        return RetryPolicy(self.mongodb_start_attempts, self.mongodb_start_delay)


@dataclass(slots=True)
class PipelineSettings:
    state_dir: Path = DEFAULT_STATE_DIR
    tolerate_slow_rollout: bool = False


@dataclass(slots=True)
class Settings:
    """Fully parsed configuration."""

    ssh: SshSettings = field(default_factory=SshSettings)
    hosts: HostsSettings = field(default_factory=HostsSettings)
    kubernetes: KubernetesSettings = field(default_factory=KubernetesSettings)
    mongodb: MongoSettings = field(default_factory=MongoSettings)
    monitoring: MonitoringSettings = field(default_factory=MonitoringSettings)
    argocd: ArgoSettings = field(default_factory=ArgoSettings)
    helm_repos: list[HelmRepo] = field(
        default_factory=lambda: [HelmRepo(name, url) for name, url in DEFAULT_HELM_REPOS]
    )
    retry: RetrySettings = field(default_factory=RetrySettings)
    pipeline: PipelineSettings = field(default_factory=PipelineSettings)

    def kubeconfig_path(self) -> str:
        """Remote kubeconfig used for every cluster-directed command."""

        if self.kubernetes.kubeconfig:
            return self.kubernetes.kubeconfig
        return f"/home/{self.ssh.user}/.kube/config"


def _expand_path(value: object, *, base: Path | None) -> Path:
    path = Path(str(value)).expanduser()
    if not path.is_absolute() and base is not None:
        path = (base / path).resolve()
    return path


def _as_int(section: str, key: str, value: object) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{section}.{key} must be an integer, got {value!r}")
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{section}.{key} must be an integer, got {value!r}") from exc


def _as_float(section: str, key: str, value: object) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{section}.{key} must be a number, got {value!r}")
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{section}.{key} must be a number, got {value!r}") from exc


def _as_bool(section: str, key: str, value: object) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off", ""}:
        return False
    raise ConfigError(f"{section}.{key} must be a boolean, got {value!r}")


def _as_optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _apply(target: Any, section: str, raw: Mapping[str, Any], *, base: Path | None) -> None:
    """Copy recognised keys from ``raw`` onto the dataclass ``target``."""

    for key, value in raw.items():
        if not hasattr(target, key):
            raise ConfigError(f"Unknown setting {section}.{key}")
        current = getattr(target, key)
        if key == "state_dir":
            if not str(value or "").strip():
                raise ConfigError("pipeline.state_dir must not be empty")
            coerced: object = _expand_path(value, base=base)
        elif key == "key_path":
            coerced = _expand_path(value, base=base) if value else None
        elif isinstance(current, bool):
            coerced = _as_bool(section, key, value)
        elif isinstance(current, int) or key == "command_timeout":
            coerced = None if value in (None, "") else _as_int(section, key, value)
        elif isinstance(current, float):
            coerced = _as_float(section, key, value)
        elif isinstance(current, list):
            if isinstance(value, str):
                value = value.split()
            if not isinstance(value, list):
                raise ConfigError(f"{section}.{key} must be a list, got {value!r}")
            coerced = [str(item) for item in value]
        else:
            coerced = _as_optional_str(value)
        setattr(target, key, coerced)


def _merge_environment(data: dict[str, Any], env: Mapping[str, str]) -> None:
    for variable, (section, key) in ENV_OVERRIDES.items():
        value = env.get(variable)
        if value is None or value == "":
            continue
        data.setdefault(section, {})[key] = value


def _load_helm_repos(raw: object) -> list[HelmRepo]:
    if not isinstance(raw, list) or not raw:
        raise ConfigError("helm.repos must be a non-empty list of {name, url} tables.")
    repos: list[HelmRepo] = []
    for entry in raw:
        if not isinstance(entry, dict) or not entry.get("name") or not entry.get("url"):
            raise ConfigError("Each helm.repos entry needs a name and a url.")
        repos.append(HelmRepo(name=str(entry["name"]), url=str(entry["url"])))
    return repos


def parse_settings(
    data: Mapping[str, Any],
    *,
    base_dir: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> Settings:
    """Build :class:`Settings` from already-decoded TOML data."""

    merged: dict[str, Any] = {
        key: dict(value) if isinstance(value, dict) else value for key, value in data.items()
    }
    _merge_environment(merged, os.environ if env is None else env)

    settings = Settings()
    sections: dict[str, Any] = {
        "ssh": settings.ssh,
        "hosts": settings.hosts,
        "kubernetes": settings.kubernetes,
        "mongodb": settings.mongodb,
        "monitoring": settings.monitoring,
        "argocd": settings.argocd,
        "retry": settings.retry,
        "pipeline": settings.pipeline,
    }
    for name, raw in merged.items():
        if name == "helm":
            if not isinstance(raw, dict):
                raise ConfigError("[helm] must be a table.")
            if "repos" in raw:
                settings.helm_repos = _load_helm_repos(raw["repos"])
            continue
        if name not in sections:
            raise ConfigError(f"Unknown configuration section [{name}]")
        if not isinstance(raw, dict):
            raise ConfigError(f"[{name}] must be a table.")
        _apply(sections[name], name, raw, base=base_dir)

    if settings.ssh.connect_timeout < 1:
        raise ConfigError("ssh.connect_timeout must be at least 1 second.")
    try:
        settings.retry.connectivity()
        settings.retry.readiness()
        settings.retry.mongodb_start()
    except ValueError as exc:
        raise ConfigError(f"Invalid retry settings: {exc}") from exc
    return settings


def load_settings(path: Path | None, *, env: Mapping[str, str] | None = None) -> Settings:
    """Load settings from ``path`` (optional) and the environment."""

    if path is None:
        return parse_settings({}, env=env)
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")
    try:
        data = tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Failed to parse {path}: {exc}") from exc
    return parse_settings(data, base_dir=path.parent, env=env)


__all__ = [
    "ArgoSettings",
    "DEFAULT_HELM_REPOS",
    "DEFAULT_STATE_DIR",
    "ENV_OVERRIDES",
    "HelmRepo",
    "HostsSettings",
    "KubernetesSettings",
    "MongoSettings",
    "MonitoringSettings",
    "PipelineSettings",
    "RetrySettings",
    "Settings",
    "SshSettings",
    "load_settings",
    "parse_settings",
]
