"""Step registry, connectivity gate and the pipeline runner."""

from __future__ import annotations

from .artifacts import ArtifactStore
from .gate import ConnectivityGate
from .model import ExecutionResult, Outcome, ProvisioningStep, StepContext
from .registry import StepRegistry, default_registry
from .report import RunReport, RunState, access_summary, print_report
from .runner import PipelineRunner, Selection

__all__ = [
    "ArtifactStore",
    "ConnectivityGate",
    "ExecutionResult",
    "Outcome",
    "PipelineRunner",
    "ProvisioningStep",
    "RunReport",
    "RunState",
    "Selection",
    "StepContext",
    "StepRegistry",
    "access_summary",
    "default_registry",
    "print_report",
]
