"""Ordered, validated collection of provisioning steps."""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from ..errors import RegistryError, SelectionError
from .model import ProvisioningStep


class StepRegistry:
    """Steps keyed by ordinal; ordinals must run 1..N without gaps or repeats."""

    def __init__(self, steps: Iterable[ProvisioningStep]):
        ordered = sorted(steps, key=lambda step: step.ordinal)
        if not ordered:
            raise RegistryError("A step registry needs at least one step.")
        seen: set[int] = set()
        for step in ordered:
            if step.ordinal in seen:
                raise RegistryError(f"Duplicate step ordinal {step.ordinal} ({step.name}).")
            seen.add(step.ordinal)
        expected = list(range(1, len(ordered) + 1))
        actual = [step.ordinal for step in ordered]
        if actual != expected:
            raise RegistryError(
                f"Step ordinals must be contiguous from 1; got {', '.join(map(str, actual))}."
            )
        names = [step.name for step in ordered]
        if len(set(names)) != len(names):
            raise RegistryError("Step names must be unique.")
        self._steps = tuple(ordered)

    def __iter__(self) -> Iterator[ProvisioningStep]:
        return iter(self._steps)

    def __len__(self) -> int:
        return len(self._steps)

    def get(self, ordinal: int) -> ProvisioningStep:
        if not 1 <= ordinal <= len(self._steps):
            raise SelectionError(
                f"Step {ordinal} does not exist; valid steps are 1-{len(self._steps)}."
            )
        return self._steps[ordinal - 1]

    def select(
        self,
        *,
        from_ordinal: int | None = None,
        only_ordinal: int | None = None,
    ) -> list[ProvisioningStep]:
        """Resolve ``--from``/``--only`` into the steps to run, in order."""

        if from_ordinal is not None and only_ordinal is not None:
            raise SelectionError("--from and --only are mutually exclusive.")
        if only_ordinal is not None:
            return [self.get(only_ordinal)]
        if from_ordinal is not None:
            self.get(from_ordinal)
            return list(self._steps[from_ordinal - 1 :])
        return list(self._steps)


def default_registry() -> StepRegistry:
    from .steps import default_steps

    return StepRegistry(default_steps())


__all__ = ["StepRegistry", "default_registry"]
