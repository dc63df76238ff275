"""Connectivity gate: block until hosts accept an authenticated SSH session."""

from __future__ import annotations

import time
from collections.abc import Callable

from .. import console
from ..errors import ConnectivityTimeout, RemoteConnectionError
from ..inventory import Host
from ..remote import Executor
from ..retry import RetryExhausted, RetryPolicy, poll

PROBE_COMMAND = "true"


class ConnectivityGate:
    """Bounded wait for SSH on the bastion, then on each target at first use."""

    def __init__(
        self,
        executor: Executor,
        policy: RetryPolicy,
        *,
        grace_period: float = 60.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.executor = executor
        self.policy = policy
        self.grace_period = grace_period
        self.sleep = sleep
        self._verified: set[str] = set()

    def _reachable(self, host: Host) -> bool:
        try:
            return self.executor.execute(host, PROBE_COMMAND).ok
        except RemoteConnectionError as exc:
            console.warning(str(exc))
            return False

    def wait_for(self, host: Host) -> None:
        try:
            poll(
                lambda: self._reachable(host),
                self.policy,
                description=f"SSH on {host.label}",
                sleep=self.sleep,
            )
        except RetryExhausted as exc:
            raise ConnectivityTimeout(
                f"{host.label} did not accept an SSH connection after {exc.attempts} attempts",
                host=host.label,
                command=self.executor.describe(host, PROBE_COMMAND),
            ) from exc
        self._verified.add(host.address)
        console.success(f"SSH connection to {host.label} established")

    def open(self, bastion: Host) -> None:
        """Wait for the bastion, then give freshly booted hosts a grace period."""

        self.wait_for(bastion)
        if self.grace_period > 0:
            console.info(f"Waiting {self.grace_period:g}s for instances to finish booting")
            self.sleep(self.grace_period)

    def ensure(self, host: Host) -> None:
        """Verify ``host`` once per run before the first step touches it."""

        if host.address in self._verified:
            return
        self.wait_for(host)


__all__ = ["ConnectivityGate", "PROBE_COMMAND"]
