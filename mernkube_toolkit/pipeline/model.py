"""Step protocol shared by every provisioning step.

A step converges each of its target hosts in four phases:

1. ``probe``: a read-only check that reports whether the host is already in
   the desired state.
2. ``mutate``: the install/configure action, streamed through
   :meth:`Executor.run_script`.
3. ``wait_ready``: bounded polling until the change has converged.
4. ``verify``: a read-only command whose output is attached to the result.

Probes and verification only ever use :meth:`Executor.execute`; every change
to a host goes through ``run_script``. In dry-run mode probes are treated as
"not done" and waits are skipped so the full plan is printed.
"""

from __future__ import annotations

import enum
import shlex
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, ClassVar

from .. import console
from ..actions import RemoteAction
from ..errors import (
    MernkubeError,
    PrivilegeError,
    ReadinessTimeoutError,
    RemoteError,
    StepMutationError,
    StepPreconditionError,
)
from ..inventory import Host, Inventory, Role
from ..remote import CommandResult, Executor
from ..retry import RetryExhausted, RetryPolicy, poll
from ..settings import Settings
from .artifacts import ArtifactStore


class Outcome(str, enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """What happened to one host (or to a whole step with no targets)."""

    ordinal: int
    step: str
    outcome: Outcome
    host: str | None = None
    detail: str = ""
    output: str = ""
    error: MernkubeError | None = None

    @property
    def failed(self) -> bool:
        return self.outcome is Outcome.FAILURE


@dataclass(slots=True)
class StepContext:
    """Everything a step body may touch during one run."""

    inventory: Inventory
    executor: Executor
    settings: Settings
    artifacts: ArtifactStore
    sleep: Callable[[float], None] = time.sleep
    cache: dict[str, Any] = field(default_factory=dict)

    @property
    def dry_run(self) -> bool:
        return self.executor.dry_run

    def kubectl(self, args: str) -> str:
        return f"kubectl --kubeconfig {shlex.quote(self.settings.kubeconfig_path())} {args}"

    def helm(self, args: str) -> str:
        return f"helm --kubeconfig {shlex.quote(self.settings.kubeconfig_path())} {args}"


class ProvisioningStep:
    """Base class for the registered steps."""

    ordinal: ClassVar[int]
    name: ClassVar[str]
    description: ClassVar[str]
    roles: ClassVar[tuple[Role, ...]]
    primary_only: ClassVar[bool] = False
    # When False the step still mutates after a positive probe (upgrade paths).
    skip_when_done: ClassVar[bool] = True
    done_detail: ClassVar[str] = "already configured"
    no_targets_detail: ClassVar[str] = "no target hosts in inventory"
    # Skipped as a whole under --skip-database.
    database_setup: ClassVar[bool] = False

    def __repr__(self) -> str:
        return f"{type(self).__name__}(ordinal={self.ordinal}, name={self.name!r})"

    def targets(self, inventory: Inventory) -> list[Host]:
        return inventory.targets(self.roles, primary_only=self.primary_only)

    # -- phases -----------------------------------------------------------

    def probe(self, ctx: StepContext, host: Host) -> bool:
        return False

    def mutate(self, ctx: StepContext, host: Host, *, done: bool) -> str:
        raise NotImplementedError

    def wait_ready(self, ctx: StepContext, host: Host) -> None:
        return None

    def verify(self, ctx: StepContext, host: Host) -> str:
        return ""

    def run(self, ctx: StepContext, host: Host) -> ExecutionResult:
        done = False if ctx.dry_run else self.probe(ctx, host)
        if done and self.skip_when_done:
            console.info(f"{host.label}: {self.done_detail}, skipping")
            return self.result(host, Outcome.SKIPPED, self.done_detail)
        detail = self.mutate(ctx, host, done=done)
        if not ctx.dry_run:
            self.wait_ready(ctx, host)
        output = self.verify(ctx, host)
        return self.result(host, Outcome.SUCCESS, detail, output)

    # -- helpers ----------------------------------------------------------

    def result(
        self,
        host: Host | None,
        outcome: Outcome,
        detail: str = "",
        output: str = "",
    ) -> ExecutionResult:
        return ExecutionResult(
            ordinal=self.ordinal,
            step=self.name,
            outcome=outcome,
            host=host.label if host is not None else None,
            detail=detail,
            output=output,
        )

    def check(self, ctx: StepContext, host: Host, command: str, *, sudo: bool = False) -> CommandResult:
        """Run a read-only probe; a probe that cannot run at all is a precondition failure.

        A refused ``sudo`` keeps its own type so the report can say so.
        """

        try:
            return ctx.executor.execute(host, command, sudo=sudo)
        except PrivilegeError:
            raise
        except RemoteError as exc:
            raise StepPreconditionError(
                f"Probe failed on {host.label}: {exc}",
                ordinal=self.ordinal,
                host=host.label,
                command=command,
            ) from exc

    def query(self, ctx: StepContext, host: Host, command: str, *, sudo: bool = False) -> str:
        """Run a read-only command that must succeed and return its output."""

        result = ctx.executor.execute(host, command, sudo=sudo)
        if not result.ok:
            raise StepMutationError(
                f"{command!r} exited with {result.exit_status} on {host.label}",
                ordinal=self.ordinal,
                host=host.label,
                command=command,
                output=result.output,
            )
        return result.stdout.strip()

    def apply(self, ctx: StepContext, host: Host, action: RemoteAction, *, sudo: bool = True) -> CommandResult:
        result = ctx.executor.run_script(host, action, sudo=sudo)
        if not result.ok:
            raise StepMutationError(
                f"{action.name} exited with {result.exit_status} on {host.label}",
                ordinal=self.ordinal,
                host=host.label,
                command=action.describe(),
                output=console.redact(result.output, action.secret_values()),
            )
        return result

    def wait_for(
        self,
        ctx: StepContext,
        host: Host,
        description: str,
        command: str,
        *,
        sudo: bool = False,
        policy: RetryPolicy | None = None,
        predicate: Callable[[CommandResult], bool] | None = None,
    ) -> CommandResult:
        """Poll ``command`` until ``predicate`` (default: exit 0) holds."""

        accept = predicate or (lambda result: result.ok)
        last: list[CommandResult] = []

        def probe() -> CommandResult | None:
            result = ctx.executor.execute(host, command, sudo=sudo)
            last[:] = [result]
            return result if accept(result) else None

        try:
            return poll(
                probe,
                policy or ctx.settings.retry.readiness(),
                description=f"{description} on {host.label}",
                sleep=ctx.sleep,
            )
        except RetryExhausted as exc:
            raise ReadinessTimeoutError(
                f"Timed out waiting for {description} on {host.label} "
                f"after {exc.attempts} attempts",
                ordinal=self.ordinal,
                host=host.label,
                command=command,
                output=last[0].output if last else "",
            ) from exc


__all__ = [
    "ExecutionResult",
    "Outcome",
    "ProvisioningStep",
    "StepContext",
]
