"""Error taxonomy shared by the executor, the steps and the pipeline runner."""

from __future__ import annotations


class MernkubeError(RuntimeError):
    """Base class for every failure the toolkit raises on purpose."""


class ConfigError(MernkubeError):
    """Raised when the TOML configuration cannot be parsed or validated."""


class InventoryError(MernkubeError):
    """Raised when provisioning output does not describe a usable fleet."""


class CredentialError(MernkubeError):
    """Raised when the SSH key is missing or unreadable."""


class ArtifactError(MernkubeError):
    """Raised when a local state file cannot be written or read."""


class RegistryError(MernkubeError):
    """Raised when a step registry is malformed (gaps or duplicate ordinals)."""


class SelectionError(MernkubeError):
    """Raised when ``--from``/``--only`` do not address the registry."""


class RemoteError(MernkubeError):
    """A single remote call failed before the remote command could report a status."""

    def __init__(self, message: str, *, host: str | None = None, command: str | None = None):
        super().__init__(message)
        self.host = host
        self.command = command


class RemoteConnectionError(RemoteError):
    """The host did not accept the connection (timeout, auth failure, unreachable)."""


class PrivilegeError(RemoteError):
    """``sudo`` refused to elevate without an interactive password."""


class TransferError(RemoteError):
    """A file or script could not be copied to the host."""


class StepError(MernkubeError):
    """A pipeline step failed; carries enough context to resume with ``--from``."""

    def __init__(
        self,
        message: str,
        *,
        ordinal: int | None = None,
        host: str | None = None,
        command: str | None = None,
        output: str = "",
    ):
        super().__init__(message)
        self.ordinal = ordinal
        self.host = host
        self.command = command
        self.output = output


class ConnectivityTimeout(StepError):
    """The bastion or a target never accepted an authenticated connection."""

    def __str__(self) -> str:
        message = super().__str__()
        if self.command:
            message = f"{message}\nreproduce with: {self.command}"
        return message


class StepPreconditionError(StepError):
    """The idempotency probe itself could not run."""


class StepMutationError(StepError):
    """The install/configure action failed."""


class ReadinessTimeoutError(StepError):
    """The mutation was applied but never converged within the wait budget."""


__all__ = [
    "ArtifactError",
    "ConfigError",
    "ConnectivityTimeout",
    "CredentialError",
    "InventoryError",
    "MernkubeError",
    "PrivilegeError",
    "ReadinessTimeoutError",
    "RegistryError",
    "RemoteConnectionError",
    "RemoteError",
    "SelectionError",
    "StepError",
    "StepMutationError",
    "StepPreconditionError",
    "TransferError",
]
