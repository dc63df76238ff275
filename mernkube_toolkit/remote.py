"""Remote execution through the bastion.

Every call is exactly one ``ssh``/``scp`` process: retry policy belongs to
the caller. Targets other than the bastion are reached with a
``ProxyCommand`` relay (``ssh -W %h:%p``) so nothing needs to be installed
or stored on the bastion itself. Scripts are streamed to ``bash -s`` over
stdin and never land on the remote filesystem.
"""

from __future__ import annotations

import shlex
import subprocess
import sys
from abc import ABCMeta, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from . import console
from .actions import RemoteAction
from .errors import PrivilegeError, RemoteConnectionError, TransferError
from .inventory import Host
from .runner import format_command

SSH_UNREACHABLE = 255

SUDO_REFUSALS = (
    "a password is required",
    "a terminal is required",
    "no tty present",
    "is not in the sudoers file",
    "may not run sudo",
)


@dataclass(frozen=True, slots=True)
class CommandResult:
    stdout: str
    stderr: str = ""
    exit_status: int = 0
    dry_run: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_status == 0

    @property
    def output(self) -> str:
        """Combined output, the way an operator would see it in a terminal."""

        parts = [self.stdout.strip(), self.stderr.strip()]
        return "\n".join(part for part in parts if part)


Script = RemoteAction | str


class Executor(metaclass=ABCMeta):
    """What a step may do to a host."""

    dry_run: bool = False

    @abstractmethod
    def execute(
        self,
        host: Host,
        command: str,
        *,
        timeout: float | None = None,
        sudo: bool = False,
    ) -> CommandResult:
        """Run one shell command and return its status; never raises on non-zero exit."""

    @abstractmethod
    def run_script(
        self,
        host: Host,
        script: Script,
        *,
        timeout: float | None = None,
        sudo: bool = False,
    ) -> CommandResult:
        """Stream a script body to the remote shell's standard input."""

    @abstractmethod
    def copy_file(self, local_path: Path, host: Host, remote_path: str) -> None:
        """Copy a local file to ``remote_path`` on ``host``."""

    @abstractmethod
    def describe(self, host: Host, command: str) -> str:
        """A command line an operator can paste to reproduce the call."""


def _wrap_sudo(command: str) -> str:
    return f"sudo -n bash -c {shlex.quote(command)}"


def _is_sudo_refusal(stderr: str) -> bool:
    lowered = stderr.lower()
    return "sudo" in lowered and any(marker in lowered for marker in SUDO_REFUSALS)


def _script_parts(script: Script) -> tuple[str, str, tuple[str, ...]]:
    if isinstance(script, RemoteAction):
        return script.render(), script.describe(), script.secret_values()
    return script, "<inline script>", ()


class SshExecutor(Executor):
    """Run commands with the system OpenSSH client."""

    def __init__(
        self,
        *,
        connect_timeout: int = 10,
        command_timeout: float | None = 1800,
        echo_output: bool = True,
    ):
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self.echo_output = echo_output

    def _common_options(self, host: Host) -> list[str]:
        return [
            "-i",
            str(host.credential.path),
            "-o",
            "BatchMode=yes",
            "-o",
            "StrictHostKeyChecking=no",
            "-o",
            "UserKnownHostsFile=/dev/null",
            "-o",
            "LogLevel=ERROR",
            "-o",
            f"ConnectTimeout={self.connect_timeout}",
        ]

    def _relay_options(self, host: Host) -> list[str]:
        bastion = host.reachable_via
        if bastion is None:
            return []
        proxy = [
            "ssh",
            *self._common_options(bastion),
            "-p",
            str(bastion.port),
            "-W",
            "%h:%p",
            bastion.destination,
        ]
        return ["-o", f"ProxyCommand={format_command(proxy)}"]

    def build_ssh_command(self, host: Host, remote_command: str) -> list[str]:
        return [
            "ssh",
            *self._common_options(host),
            *self._relay_options(host),
            "-p",
            str(host.port),
            host.destination,
            remote_command,
        ]

    def build_scp_command(self, local_path: Path, host: Host, remote_path: str) -> list[str]:
        return [
            "scp",
            *self._common_options(host),
            *self._relay_options(host),
            "-P",
            str(host.port),
            str(local_path),
            f"{host.destination}:{remote_path}",
        ]

    def describe(self, host: Host, command: str) -> str:
        return format_command(self.build_ssh_command(host, command))

    def _run(
        self,
        host: Host,
        argv: list[str],
        *,
        stdin: str | None,
        timeout: float | None,
        sudo: bool,
        printable: str,
    ) -> CommandResult:
        limit = timeout if timeout is not None else self.command_timeout
        try:
            completed = subprocess.run(
                argv,
                input=stdin,
                # Without an explicit stdin ssh may wait for input nobody sends.
                stdin=subprocess.DEVNULL if stdin is None else None,
                capture_output=True,
                text=True,
                timeout=limit,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise RemoteConnectionError(
                f"{host.label}: no response within {limit} seconds",
                host=host.label,
                command=printable,
            ) from exc
        except FileNotFoundError as exc:
            raise RemoteConnectionError(
                f"{argv[0]} is not installed or not on PATH", host=host.label, command=printable
            ) from exc
        stderr = completed.stderr or ""
        if completed.returncode == SSH_UNREACHABLE:
            raise RemoteConnectionError(
                f"{host.label}: cannot connect: {stderr.strip() or 'ssh exited with 255'}",
                host=host.label,
                command=printable,
            )
        if sudo and completed.returncode != 0 and _is_sudo_refusal(stderr):
            raise PrivilegeError(
                f"{host.label}: sudo needs an interactive password; grant passwordless sudo "
                f"to {host.user} and re-run. sudo said: {stderr.strip()}",
                host=host.label,
                command=printable,
            )
        return CommandResult(
            stdout=completed.stdout or "",
            stderr=stderr,
            exit_status=completed.returncode,
        )

    def execute(
        self,
        host: Host,
        command: str,
        *,
        timeout: float | None = None,
        sudo: bool = False,
    ) -> CommandResult:
        remote_command = _wrap_sudo(command) if sudo else command
        printable = f"[{host.label}] {remote_command}"
        console.command(printable)
        return self._run(
            host,
            self.build_ssh_command(host, remote_command),
            stdin=None,
            timeout=timeout,
            sudo=sudo,
            printable=printable,
        )

    def run_script(
        self,
        host: Host,
        script: Script,
        *,
        timeout: float | None = None,
        sudo: bool = False,
    ) -> CommandResult:
        body, description, secrets = _script_parts(script)
        remote_command = "sudo -n bash -s" if sudo else "bash -s"
        printable = f"[{host.label}] {remote_command} < {description}"
        console.command(printable)
        result = self._run(
            host,
            self.build_ssh_command(host, remote_command),
            stdin=body,
            timeout=timeout,
            sudo=sudo,
            printable=printable,
        )
        if self.echo_output and result.output:
            print(console.redact(result.output, secrets), file=sys.stderr, flush=True)
        return result

    def copy_file(self, local_path: Path, host: Host, remote_path: str) -> None:
        if not local_path.is_file():
            raise TransferError(f"Local file not found: {local_path}", host=host.label)
        argv = self.build_scp_command(local_path, host, remote_path)
        printable = format_command(argv)
        console.command(printable)
        try:
            completed = subprocess.run(
                argv,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                timeout=self.command_timeout,
                check=False,
            )
        except (subprocess.TimeoutExpired, FileNotFoundError) as exc:
            raise TransferError(
                f"Copy of {local_path} to {host.label} failed: {exc}",
                host=host.label,
                command=printable,
            ) from exc
        if completed.returncode != 0:
            raise TransferError(
                f"Copy of {local_path} to {host.label}:{remote_path} failed "
                f"(exit {completed.returncode}): {(completed.stderr or '').strip()}",
                host=host.label,
                command=printable,
            )


class DryRunExecutor(Executor):
    """Log what would run; never open a connection."""

    dry_run = True

    def __init__(self) -> None:
        self.calls: list[str] = []

    def _record(self, printable: str) -> CommandResult:
        self.calls.append(printable)
        console.info(f"[DRY RUN] would run {printable}")
        return CommandResult(stdout="", dry_run=True)

    def execute(
        self,
        host: Host,
        command: str,
        *,
        timeout: float | None = None,
        sudo: bool = False,
    ) -> CommandResult:
        remote_command = _wrap_sudo(command) if sudo else command
        return self._record(f"[{host.label}] {remote_command}")

    def run_script(
        self,
        host: Host,
        script: Script,
        *,
        timeout: float | None = None,
        sudo: bool = False,
    ) -> CommandResult:
        _, description, _ = _script_parts(script)
        remote_command = "sudo -n bash -s" if sudo else "bash -s"
        return self._record(f"[{host.label}] {remote_command} < {description}")

    def copy_file(self, local_path: Path, host: Host, remote_path: str) -> None:
        self._record(f"scp {local_path} {host.label}:{remote_path}")

    def describe(self, host: Host, command: str) -> str:
        return f"ssh {host.destination} {shlex.quote(command)}"


__all__ = [
    "CommandResult",
    "DryRunExecutor",
    "Executor",
    "SSH_UNREACHABLE",
    "Script",
    "SshExecutor",
]
