"""Resolved fleet description: which hosts exist and how to reach them.

The inventory is assembled once per run from three layers, later layers
winning: the ``[hosts]`` table of the config file, the JSON produced by
``terraform output -json`` and the ``BASTION_IP``/``MASTER_IP``/
``WORKER_IPS``/``MONGODB_IP`` environment variables. After that it is
immutable and handed explicitly to every component.
"""

from __future__ import annotations

import enum
import json
import os
import stat
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from . import console, runner
from .errors import CredentialError, InventoryError
from .settings import HostsSettings, SshSettings

TERRAFORM_OUTPUT_KEYS = {
    "bastion": "bastion_public_ip",
    "control_plane": "master_private_ip",
    "workers": "worker_private_ips",
    "database": "mongodb_private_ip",
}

ENV_HOST_KEYS = {
    "bastion": "BASTION_IP",
    "control_plane": "MASTER_IP",
    "workers": "WORKER_IPS",
    "database": "MONGODB_IP",
}


class Role(str, enum.Enum):
    BASTION = "bastion"
    CONTROL_PLANE = "control-plane"
    WORKER = "worker"
    DATABASE = "database"


# Fan-out order inside a step: role-grouped, then list order within the role.
ROLE_ORDER = (Role.CONTROL_PLANE, Role.WORKER, Role.DATABASE)


@dataclass(frozen=True, slots=True)
class Credential:
    """Private key used for both hops."""

    path: Path

    def validate(self) -> None:
        """Fail fast when the key cannot be used by ``ssh -i``."""

        if not self.path.exists():
            raise CredentialError(f"SSH key not found: {self.path}")
        if not self.path.is_file():
            raise CredentialError(f"SSH key is not a regular file: {self.path}")
        if not os.access(self.path, os.R_OK):
            raise CredentialError(f"SSH key is not readable: {self.path}")
        mode = stat.S_IMODE(self.path.stat().st_mode)
        if mode & 0o077:
            console.warning(
                f"SSH key {self.path} is accessible by group/others (mode {mode:o}); "
                "ssh may refuse it. Run: chmod 600 " + str(self.path)
            )


@dataclass(frozen=True, slots=True)
class Host:
    """One managed machine."""

    role: Role
    address: str
    name: str
    user: str
    port: int
    credential: Credential
    reachable_via: Host | None = None

    @property
    def label(self) -> str:
        return f"{self.name} ({self.address})"

    @property
    def destination(self) -> str:
        return f"{self.user}@{self.address}"

    def __str__(self) -> str:
        return self.label


@dataclass(frozen=True, slots=True)
class Inventory:
    """Hosts grouped by role plus the shared connection defaults."""

    bastion: Host
    control_planes: tuple[Host, ...]
    workers: tuple[Host, ...] = ()
    database: Host | None = None
    connect_timeout: int = 10

    def __post_init__(self) -> None:
        if self.bastion.role is not Role.BASTION or self.bastion.reachable_via is not None:
            raise InventoryError("The bastion must be a direct (single-hop) bastion host.")
        if not self.control_planes:
            raise InventoryError("At least one control-plane host is required.")
        seen: set[str] = {self.bastion.address}
        for host in self.managed_hosts():
            if host.reachable_via != self.bastion:
                raise InventoryError(
                    f"{host.label} must be reached through the bastion {self.bastion.label}."
                )
            if host.address in seen:
                raise InventoryError(f"Address {host.address} appears more than once.")
            seen.add(host.address)

    @property
    def credential(self) -> Credential:
        return self.bastion.credential

    @property
    def control_plane(self) -> Host:
        """The primary control plane that owns ``kubeadm init`` and cluster-wide steps."""

        return self.control_planes[0]

    def managed_hosts(self) -> list[Host]:
        """Every non-bastion host, in fan-out order."""

        return self.targets(ROLE_ORDER)

    def targets(self, roles: Iterable[Role], *, primary_only: bool = False) -> list[Host]:
        wanted = set(roles)
        hosts: list[Host] = []
        for role in ROLE_ORDER:
            if role not in wanted:
                continue
            if role is Role.CONTROL_PLANE:
                hosts.extend(self.control_planes[:1] if primary_only else self.control_planes)
            elif role is Role.WORKER:
                hosts.extend(self.workers)
            elif self.database is not None:
                hosts.append(self.database)
        return hosts

    def without_database(self) -> Inventory:
        return replace(self, database=None)

    def describe(self) -> list[str]:
        lines = [
            f"Bastion:        {self.bastion.address}",
            "Control plane:  " + ", ".join(host.address for host in self.control_planes),
            "Workers:        " + (", ".join(h.address for h in self.workers) or "<none>"),
            f"Database:       {self.database.address if self.database else '<none>'}",
            f"SSH key:        {self.credential.path}",
            f"SSH user:       {self.bastion.user}",
        ]
        return lines

    def as_dict(self) -> dict[str, Any]:
        return {
            "bastion": self.bastion.address,
            "control_planes": [host.address for host in self.control_planes],
            "workers": [host.address for host in self.workers],
            "database": self.database.address if self.database else None,
            "ssh_key": str(self.credential.path),
            "ssh_user": self.bastion.user,
        }


def _unwrap(value: Any) -> Any:
    # ``terraform output -json`` wraps every output as {"value": ..., "type": ...}.
    if isinstance(value, dict) and "value" in value:
        return value["value"]
    return value


def _as_address_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [part for part in value.replace(",", " ").split() if part]
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    raise InventoryError(f"Expected a list of addresses, got {value!r}")


def _as_address(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_provisioning_outputs(data: Mapping[str, Any]) -> dict[str, Any]:
    """Translate Terraform output names into inventory fields.

    Only presence is checked; cloud-side correctness is Terraform's concern.
    """

    if not isinstance(data, Mapping):
        raise InventoryError("Provisioning output must be a JSON object.")
    resolved: dict[str, Any] = {}
    for field_name, key in TERRAFORM_OUTPUT_KEYS.items():
        if key not in data:
            continue
        value = _unwrap(data[key])
        if field_name == "workers":
            resolved[field_name] = _as_address_list(value)
        else:
            resolved[field_name] = _as_address(value)
    return resolved


def load_provisioning_outputs(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise InventoryError(f"Provisioning output file not found: {path}")
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as exc:
        raise InventoryError(f"Provisioning output {path} is not valid JSON: {exc}") from exc
    return parse_provisioning_outputs(data)


def read_terraform_outputs(terraform_dir: Path) -> dict[str, Any]:
    """Run ``terraform output -json`` in ``terraform_dir``."""

    command = ["terraform", f"-chdir={terraform_dir}", "output", "-json"]
    try:
        data = runner.capture_json(command)
    except runner.CommandError as exc:
        raise InventoryError(f"Unable to read Terraform outputs: {exc}") from exc
    except FileNotFoundError as exc:
        raise InventoryError("terraform is not installed or not on PATH.") from exc
    return parse_provisioning_outputs(data or {})


def _environment_hosts(env: Mapping[str, str]) -> dict[str, Any]:
    resolved: dict[str, Any] = {}
    for field_name, variable in ENV_HOST_KEYS.items():
        value = env.get(variable)
        if value is None or not value.strip():
            continue
        if field_name == "workers":
            resolved[field_name] = _as_address_list(value)
        else:
            resolved[field_name] = value.strip()
    return resolved


def build_inventory(
    ssh: SshSettings,
    hosts: HostsSettings,
    *,
    outputs: Mapping[str, Any] | None = None,
    env: Mapping[str, str] | None = None,
) -> Inventory:
    """Merge the host layers and validate the result."""

    merged: dict[str, Any] = {
        "bastion": hosts.bastion,
        "control_plane": hosts.control_plane,
        "workers": list(hosts.workers),
        "database": hosts.database,
    }
    merged.update({key: value for key, value in (outputs or {}).items() if value})
    merged.update(_environment_hosts(os.environ if env is None else env))

    key_path = ssh.key_path
    errors: list[str] = []
    if not merged.get("bastion"):
        errors.append("bastion address is not set (BASTION_IP or bastion_public_ip)")
    if not merged.get("control_plane"):
        errors.append("control-plane address is not set (MASTER_IP or master_private_ip)")
    if key_path is None:
        errors.append("SSH key path is not set (SSH_KEY_PATH or ssh.key_path)")
    if errors or key_path is None:
        raise InventoryError("Inventory validation failed:\n  - " + "\n  - ".join(errors))

    credential = Credential(key_path)
    bastion = Host(
        role=Role.BASTION,
        address=str(merged["bastion"]),
        name="bastion",
        user=ssh.user,
        port=ssh.port,
        credential=credential,
    )

    def managed(role: Role, address: str, name: str) -> Host:
        return Host(
            role=role,
            address=address,
            name=name,
            user=ssh.user,
            port=ssh.port,
            credential=credential,
            reachable_via=bastion,
        )

    control_plane = managed(Role.CONTROL_PLANE, str(merged["control_plane"]), "control-plane-1")
    workers = tuple(
        managed(Role.WORKER, address, f"worker-{index}")
        for index, address in enumerate(merged.get("workers") or [], start=1)
    )
    database_address = merged.get("database")
    database = managed(Role.DATABASE, str(database_address), "database") if database_address else None

    return Inventory(
        bastion=bastion,
        control_planes=(control_plane,),
        workers=workers,
        database=database,
        connect_timeout=ssh.connect_timeout,
    )


__all__ = [
    "Credential",
    "Host",
    "Inventory",
    "ROLE_ORDER",
    "Role",
    "build_inventory",
    "load_provisioning_outputs",
    "parse_provisioning_outputs",
    "read_terraform_outputs",
]
