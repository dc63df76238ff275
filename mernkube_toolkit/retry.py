"""Bounded polling shared by the connectivity gate and every readiness wait."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from . import console

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """How many times to poll and how long to sleep between polls."""

    attempts: int
    delay: float

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError(f"attempts must be at least 1, got {self.attempts}")
        if self.delay < 0:
            raise ValueError(f"delay must not be negative, got {self.delay}")

    @property
    def budget(self) -> float:
        """Worst-case seconds spent sleeping, excluding the probes themselves."""

        return self.delay * (self.attempts - 1)


class RetryExhausted(Exception):
    """Raised by :func:`poll` when the probe never reported success."""

    def __init__(self, description: str, attempts: int, last: object = None):
        super().__init__(f"{description} did not succeed after {attempts} attempts")
        self.description = description
        self.attempts = attempts
        self.last = last


def poll(
    probe: Callable[[], T],
    policy: RetryPolicy,
    *,
    description: str,
    sleep: Callable[[float], None] = time.sleep,
    quiet: bool = False,
) -> T:
    """Call ``probe`` until it returns a truthy value.

    The probe runs at most ``policy.attempts`` times with ``policy.delay``
    seconds between calls; there is no sleep after the final attempt.
    Exceptions raised by the probe propagate unchanged.
    """

    last: object = None
    for attempt in range(1, policy.attempts + 1):
        last = probe()
        if last:
            return last
        if attempt == policy.attempts:
            break
        if not quiet:
            console.info(f"Waiting for {description}... (attempt {attempt}/{policy.attempts})")
        sleep(policy.delay)
    raise RetryExhausted(description, policy.attempts, last)


__all__ = ["RetryExhausted", "RetryPolicy", "poll"]
