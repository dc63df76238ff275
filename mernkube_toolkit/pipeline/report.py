"""Run state and the end-of-run summary."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

from .. import console
from ..console import REDACTED
from ..inventory import Inventory
from ..settings import Settings
from .artifacts import ARGOCD_CREDENTIALS, ArtifactStore
from .model import ExecutionResult, Outcome


class RunState(str, enum.Enum):
    NOT_STARTED = "not-started"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass(slots=True)
class RunReport:
    state: RunState
    results: list[ExecutionResult] = field(default_factory=list)
    dry_run: bool = False
    aborted_at: int | None = None
    interrupted: bool = False

    @property
    def succeeded(self) -> bool:
        return self.state is RunState.COMPLETED

    @property
    def failure(self) -> ExecutionResult | None:
        for result in self.results:
            if result.failed:
                return result
        return None

    def resume_command(self) -> str | None:
        if self.aborted_at is None:
            return None
        return f"mernkube run --from {self.aborted_at}"

    def step_outcomes(self) -> dict[int, Outcome]:
        """Collapse per-host results: any failure wins, then any success."""

        outcomes: dict[int, Outcome] = {}
        for result in self.results:
            current = outcomes.get(result.ordinal)
            if current is Outcome.FAILURE:
                continue
            if result.outcome is Outcome.FAILURE or current is None:
                outcomes[result.ordinal] = result.outcome
            elif result.outcome is Outcome.SUCCESS:
                outcomes[result.ordinal] = Outcome.SUCCESS
        return outcomes


def access_summary(inventory: Inventory, settings: Settings, artifacts: ArtifactStore) -> list[str]:
    """How to reach what the pipeline deployed; secrets are never printed."""

    # NodePorts answer on every node; prefer a worker like operators always have.
    access_ip = inventory.workers[0].address if inventory.workers else inventory.control_plane.address
    key = inventory.credential.path
    bastion = inventory.bastion
    lines = [
        f"Grafana:   http://{access_ip}:{settings.monitoring.grafana_nodeport}"
        " (user admin, password from GRAFANA_ADMIN_PASSWORD)",
        f"Argo CD:   https://{access_ip}:{settings.argocd.nodeport}"
        f" (user admin, password in {artifacts.path(ARGOCD_CREDENTIALS)})",
    ]
    if inventory.database is not None:
        mongodb = settings.mongodb
        lines.append(
            f"MongoDB:   mongodb://{mongodb.app_user}:{REDACTED}@{inventory.database.address}:"
            f"{mongodb.port}/{mongodb.app_database}"
        )
    lines.append(f"Bastion:   ssh -i {key} {bastion.destination}")
    lines.append(
        f"Control:   ssh -i {key} -J {bastion.destination} {inventory.control_plane.destination}"
    )
    return lines


def print_report(
    report: RunReport,
    inventory: Inventory,
    settings: Settings,
    artifacts: ArtifactStore,
) -> None:
    console.header("Summary")
    for result in report.results:
        target = f" on {result.host}" if result.host else ""
        detail = f": {result.detail}" if result.detail else ""
        line = f"[{result.ordinal}] {result.step}{target} {result.outcome.value}{detail}"
        if result.outcome is Outcome.FAILURE:
            console.error(line)
        elif result.outcome is Outcome.SKIPPED:
            console.info(line)
        else:
            console.success(line)

    if report.interrupted:
        console.error(f"Interrupted during step {report.aborted_at}.")
    failure = report.failure
    if failure is not None:
        console.error(f"Step {failure.ordinal} ({failure.step}) failed on {failure.host or 'all hosts'}")
        if failure.output:
            console.error("Last output:\n" + failure.output)
    resume = report.resume_command()
    if resume:
        console.info(f"Fix the problem and resume with: {resume}")
        return
    if report.dry_run:
        console.info("Dry run complete; no host was contacted.")
        return
    if report.succeeded:
        console.header("Access information")
        for line in access_summary(inventory, settings, artifacts):
            console.info(line)


__all__ = ["RunReport", "RunState", "access_summary", "print_report"]
