"""The eight registered provisioning steps."""

from __future__ import annotations

from ..model import ProvisioningStep
from .addons import DeployMonitoring, InstallHelm
from .cluster import InitCluster, InstallNetwork, JoinWorkers
from .database import SetupDatabase
from .gitops import DeployArgoCD
from .prerequisites import InstallPrerequisites

STEP_CLASSES: tuple[type[ProvisioningStep], ...] = (
    InstallPrerequisites,
    InitCluster,
    JoinWorkers,
    InstallNetwork,
    InstallHelm,
    DeployMonitoring,
    DeployArgoCD,
    SetupDatabase,
)


def default_steps() -> list[ProvisioningStep]:
    return [cls() for cls in STEP_CLASSES]


__all__ = [
    "DeployArgoCD",
    "DeployMonitoring",
    "InitCluster",
    "InstallHelm",
    "InstallNetwork",
    "InstallPrerequisites",
    "JoinWorkers",
    "STEP_CLASSES",
    "SetupDatabase",
    "default_steps",
]
