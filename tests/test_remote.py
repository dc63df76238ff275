"""Tests for the SSH executor's command construction and error mapping."""

from __future__ import annotations

import subprocess
from pathlib import Path
from types import SimpleNamespace

import pytest

from mernkube_toolkit import remote
from mernkube_toolkit.actions import RemoteAction
from mernkube_toolkit.errors import PrivilegeError, RemoteConnectionError, TransferError


def _fake_run(recorded: list[dict], *, returncode: int = 0, stdout: str = "", stderr: str = ""):
    def fake_run(command, **kwargs):
        recorded.append({"command": command, **kwargs})
        return SimpleNamespace(returncode=returncode, stdout=stdout, stderr=stderr)

    return fake_run


def test_bastion_is_reached_directly(monkeypatch: pytest.MonkeyPatch, inventory) -> None:
    recorded: list[dict] = []
    monkeypatch.setattr(remote.subprocess, "run", _fake_run(recorded, stdout="up\n"))
    executor = remote.SshExecutor(connect_timeout=7)

    result = executor.execute(inventory.bastion, "uptime")

    command = recorded[0]["command"]
    assert command[0] == "ssh"
    assert command[-2:] == ["ubuntu@203.0.113.10", "uptime"]
    assert "ConnectTimeout=7" in command
    assert "BatchMode=yes" in command
    assert not any(part.startswith("ProxyCommand=") for part in command)
    assert recorded[0]["stdin"] is subprocess.DEVNULL
    assert result.stdout == "up\n"
    assert result.ok


def test_targets_are_relayed_through_the_bastion(monkeypatch: pytest.MonkeyPatch, inventory) -> None:
    recorded: list[dict] = []
    monkeypatch.setattr(remote.subprocess, "run", _fake_run(recorded))
    executor = remote.SshExecutor()

    executor.execute(inventory.control_plane, "hostname")

    command = recorded[0]["command"]
    proxy = next(part for part in command if part.startswith("ProxyCommand="))
    assert "-W %h:%p" in proxy
    assert proxy.endswith("ubuntu@203.0.113.10")
    assert str(inventory.credential.path) in proxy
    assert command[-2] == "ubuntu@10.0.1.10"


def test_non_zero_exit_is_returned_not_raised(monkeypatch: pytest.MonkeyPatch, inventory) -> None:
    monkeypatch.setattr(remote.subprocess, "run", _fake_run([], returncode=1, stderr="no such file"))

    result = remote.SshExecutor().execute(inventory.control_plane, "test -f /nope")

    assert result.exit_status == 1
    assert not result.ok
    assert result.output == "no such file"


def test_exit_255_is_a_connection_error(monkeypatch: pytest.MonkeyPatch, inventory) -> None:
    monkeypatch.setattr(
        remote.subprocess, "run", _fake_run([], returncode=255, stderr="Connection timed out")
    )

    with pytest.raises(RemoteConnectionError, match="Connection timed out"):
        remote.SshExecutor().execute(inventory.control_plane, "true")


def test_local_timeout_is_a_connection_error(monkeypatch: pytest.MonkeyPatch, inventory) -> None:
    def fake_run(command, **kwargs):
        raise subprocess.TimeoutExpired(command, kwargs["timeout"])

    monkeypatch.setattr(remote.subprocess, "run", fake_run)

    with pytest.raises(RemoteConnectionError, match="no response within 5"):
        remote.SshExecutor().execute(inventory.control_plane, "sleep 60", timeout=5)


def test_sudo_wraps_and_detects_refusal(monkeypatch: pytest.MonkeyPatch, inventory) -> None:
    recorded: list[dict] = []
    monkeypatch.setattr(
        remote.subprocess,
        "run",
        _fake_run(recorded, returncode=1, stderr="sudo: a password is required\n"),
    )

    with pytest.raises(PrivilegeError, match="passwordless sudo"):
        remote.SshExecutor().execute(inventory.control_plane, "test -f /etc/x", sudo=True)

    assert recorded[0]["command"][-1] == "sudo -n bash -c 'test -f /etc/x'"


def test_run_script_streams_body_over_stdin(
    monkeypatch: pytest.MonkeyPatch, inventory, capsys: pytest.CaptureFixture[str]
) -> None:
    recorded: list[dict] = []
    echoed = "ran kubeadm join 10.0.1.10:6443 --token hunter2"
    monkeypatch.setattr(remote.subprocess, "run", _fake_run(recorded, stdout=echoed))
    action = RemoteAction(
        "kubeadm-join",
        "kubeadm_join.sh.j2",
        {"join_command": "kubeadm join 10.0.1.10:6443 --token hunter2"},
        secrets=frozenset({"join_command"}),
    )

    remote.SshExecutor().run_script(inventory.workers[0], action, sudo=True)

    call = recorded[0]
    assert call["command"][-1] == "sudo -n bash -s"
    assert "kubeadm join 10.0.1.10:6443 --token hunter2" in call["input"]
    assert call.get("stdin") is None
    err = capsys.readouterr().err
    assert "hunter2" not in err
    assert "kubeadm-join (join_command=********)" in err


def test_copy_file_failure_is_a_transfer_error(
    monkeypatch: pytest.MonkeyPatch, inventory, tmp_path: Path
) -> None:
    local = tmp_path / "values.yaml"
    local.write_text("a: 1\n")
    recorded: list[dict] = []
    monkeypatch.setattr(
        remote.subprocess, "run", _fake_run(recorded, returncode=1, stderr="Permission denied")
    )

    with pytest.raises(TransferError, match="Permission denied"):
        remote.SshExecutor().copy_file(local, inventory.control_plane, "/tmp/values.yaml")

    command = recorded[0]["command"]
    assert command[0] == "scp"
    assert command[-1] == "ubuntu@10.0.1.10:/tmp/values.yaml"


def test_dry_run_executor_never_spawns(monkeypatch: pytest.MonkeyPatch, inventory) -> None:
    def fail_run(*_args, **_kwargs):  # pragma: no cover - must not be called
        raise AssertionError("subprocess.run called during dry run")

    monkeypatch.setattr(remote.subprocess, "run", fail_run)
    executor = remote.DryRunExecutor()

    result = executor.execute(inventory.control_plane, "kubectl get nodes")

    assert result.dry_run
    assert result.ok
    assert executor.calls == ["[control-plane-1 (10.0.1.10)] kubectl get nodes"]
