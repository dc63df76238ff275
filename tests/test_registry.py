"""Tests for step registration and selection."""

from __future__ import annotations

import pytest

from mernkube_toolkit.errors import RegistryError, SelectionError
from mernkube_toolkit.inventory import Role
from mernkube_toolkit.pipeline import ProvisioningStep, StepRegistry, default_registry


def _step(ordinal: int, name: str | None = None) -> ProvisioningStep:
    attrs = {
        "ordinal": ordinal,
        "name": name or f"step-{ordinal}",
        "description": "test step",
        "roles": (Role.CONTROL_PLANE,),
    }
    return type(f"Step{ordinal}", (ProvisioningStep,), attrs)()


def test_default_registry_has_eight_contiguous_steps() -> None:
    registry = default_registry()

    assert [step.ordinal for step in registry] == list(range(1, 9))
    assert [step.name for step in registry] == [
        "prerequisites",
        "init-cluster",
        "join-workers",
        "install-cni",
        "install-helm",
        "deploy-monitoring",
        "deploy-argocd",
        "setup-mongodb",
    ]


def test_gaps_are_rejected() -> None:
    with pytest.raises(RegistryError, match="contiguous"):
        StepRegistry([_step(1), _step(3)])


def test_duplicates_are_rejected() -> None:
    with pytest.raises(RegistryError, match="Duplicate"):
        StepRegistry([_step(1), _step(2), _step(2, "other")])


def test_registration_order_does_not_matter() -> None:
    registry = StepRegistry([_step(2), _step(1)])

    assert [step.ordinal for step in registry] == [1, 2]


def test_select_from_and_only() -> None:
    registry = default_registry()

    assert [step.ordinal for step in registry.select(from_ordinal=6)] == [6, 7, 8]
    assert [step.ordinal for step in registry.select(only_ordinal=3)] == [3]
    assert len(registry.select()) == 8


@pytest.mark.parametrize("kwargs", [{"from_ordinal": 0}, {"only_ordinal": 9}, {"from_ordinal": -1}])
def test_out_of_range_selection(kwargs) -> None:
    with pytest.raises(SelectionError, match="valid steps are 1-8"):
        default_registry().select(**kwargs)


def test_from_and_only_are_exclusive() -> None:
    with pytest.raises(SelectionError, match="mutually exclusive"):
        default_registry().select(from_ordinal=2, only_ordinal=3)
