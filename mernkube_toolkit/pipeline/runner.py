"""Sequential pipeline driver.

Steps run in ordinal order and hosts in inventory order. The first failure
stops the run; the report carries the ordinal to pass to ``--from`` so a
rerun picks up exactly where this one stopped.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

from .. import console
from ..errors import MernkubeError, SelectionError, StepError
from ..inventory import Inventory
from ..remote import Executor
from ..settings import Settings
from .artifacts import ArtifactStore
from .gate import ConnectivityGate
from .model import ExecutionResult, Outcome, ProvisioningStep, StepContext
from .registry import StepRegistry
from .report import RunReport, RunState

SKIP_DATABASE_DETAIL = "skipped by --skip-database"


@dataclass(frozen=True, slots=True)
class Selection:
    """Which steps to run: all, ``--from N`` onwards, or ``--only N``."""

    from_ordinal: int | None = None
    only_ordinal: int | None = None
    skip_database: bool = False

    def __post_init__(self) -> None:
        if self.from_ordinal is not None and self.only_ordinal is not None:
            raise SelectionError("--from and --only are mutually exclusive.")


class PipelineRunner:
    def __init__(
        self,
        registry: StepRegistry,
        inventory: Inventory,
        settings: Settings,
        executor: Executor,
        *,
        artifacts: ArtifactStore | None = None,
        gate: ConnectivityGate | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.registry = registry
        self.inventory = inventory
        self.settings = settings
        self.executor = executor
        self.artifacts = artifacts or ArtifactStore(
            settings.pipeline.state_dir, dry_run=executor.dry_run
        )
        self.sleep = sleep
        self.gate = gate or ConnectivityGate(
            executor,
            settings.retry.connectivity(),
            grace_period=settings.retry.grace_period,
            sleep=sleep,
        )
        self.state = RunState.NOT_STARTED
        self.current_ordinal: int | None = None

    @property
    def dry_run(self) -> bool:
        return self.executor.dry_run

    def _failure(
        self, step: ProvisioningStep, host_label: str | None, exc: MernkubeError
    ) -> ExecutionResult:
        output = exc.output if isinstance(exc, StepError) else ""
        return ExecutionResult(
            ordinal=step.ordinal,
            step=step.name,
            outcome=Outcome.FAILURE,
            host=host_label,
            detail=str(exc),
            output=output,
            error=exc,
        )

    def _run_step(self, step: ProvisioningStep, ctx: StepContext) -> list[ExecutionResult]:
        targets = step.targets(ctx.inventory)
        if not targets:
            console.info(f"{step.name}: {step.no_targets_detail}")
            return [step.result(None, Outcome.SKIPPED, step.no_targets_detail)]
        results: list[ExecutionResult] = []
        for host in targets:
            try:
                if not self.dry_run and self.settings.retry.check_targets:
                    self.gate.ensure(host)
                result = step.run(ctx, host)
            except MernkubeError as exc:
                result = self._failure(step, host.label, exc)
                console.error(f"Step {step.ordinal} failed on {host.label}: {exc}")
            results.append(result)
            if result.failed:
                break
        return results

    def run(self, selection: Selection | None = None) -> RunReport:
        selection = selection or Selection()
        # Validate the selection before anything is contacted.
        steps = self.registry.select(
            from_ordinal=selection.from_ordinal, only_ordinal=selection.only_ordinal
        )
        inventory = self.inventory
        if not self.dry_run:
            inventory.credential.validate()

        ctx = StepContext(
            inventory=inventory,
            executor=self.executor,
            settings=self.settings,
            artifacts=self.artifacts,
            sleep=self.sleep,
        )
        report = RunReport(state=RunState.RUNNING, dry_run=self.dry_run)
        self.state = RunState.RUNNING
        self.current_ordinal = steps[0].ordinal
        try:
            if not self.dry_run:
                try:
                    self.gate.open(inventory.bastion)
                except MernkubeError as exc:
                    report.results.append(self._failure(steps[0], inventory.bastion.label, exc))
                    console.error(str(exc))
                    return self._finish(report, RunState.ABORTED)

            for step in steps:
                self.current_ordinal = step.ordinal
                console.progress(step.ordinal, len(self.registry), step.description)
                if selection.skip_database and step.database_setup:
                    console.info(f"{step.name}: {SKIP_DATABASE_DETAIL}")
                    report.results.append(step.result(None, Outcome.SKIPPED, SKIP_DATABASE_DETAIL))
                    continue
                step_results = self._run_step(step, ctx)
                report.results.extend(step_results)
                if any(result.failed for result in step_results):
                    return self._finish(report, RunState.ABORTED)
        except KeyboardInterrupt:
            report.interrupted = True
            console.error(f"Interrupted during step {self.current_ordinal}")
            return self._finish(report, RunState.ABORTED)
        return self._finish(report, RunState.COMPLETED)

    def _finish(self, report: RunReport, state: RunState) -> RunReport:
        self.state = state
        report.state = state
        if state is RunState.ABORTED:
            report.aborted_at = self.current_ordinal
        return report


__all__ = ["PipelineRunner", "Selection"]
