"""
Host Throttle - per-host politeness

Spaces out requests to the same host across all workers while leaving
requests to different hosts independent.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

# Maximum backoff in seconds (1 hour)
MAX_BACKOFF = 3600


@dataclass
class HostGate:
    next_fetch_at: float = 0.0
    inflight: int = 0
    min_interval: float = 1.0
    concurrency_limit: int = 1
    fail_streak: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    slots: Optional[asyncio.Semaphore] = field(default=None, repr=False)

    def __post_init__(self):
        if self.slots is None:
            self.slots = asyncio.Semaphore(self.concurrency_limit)


@dataclass
class SchedulerConfig:
    # Minimum seconds between requests to same domain
    domain_min_interval: float = 1.0
    # Maximum concurrent requests per domain
    domain_max_concurrent: int = 1


class HostThrottle:
    """
    Per-host rate limiting.

    A request takes a slot on its host's gate (at most
    ``domain_max_concurrent`` in flight) and then waits for
    ``next_fetch_at``. Completion pushes ``next_fetch_at`` forward by the
    host's interval, doubled for each consecutive failure.
    """

    def __init__(self, config: Optional[SchedulerConfig] = None):
        self.config = config or SchedulerConfig()
        self._gates: dict[str, HostGate] = {}

    def _get_gate(self, domain: str) -> HostGate:
        gate = self._gates.get(domain)
        if gate is None:
            gate = HostGate(
                min_interval=self.config.domain_min_interval,
                concurrency_limit=self.config.domain_max_concurrent,
            )
            self._gates[domain] = gate
        return gate

    async def acquire(self, domain: str) -> None:
        gate = self._get_gate(domain)
        await gate.slots.acquire()
        try:
            async with gate.lock:
                delay = gate.next_fetch_at - time.time()
                if delay > 0:
                    await asyncio.sleep(delay)
                self.record_start(domain)
        except BaseException:
            gate.slots.release()
            raise

    def release(self, domain: str, *, success: bool = True) -> None:
        self.record_complete(domain, success=success)
        self._get_gate(domain).slots.release()

    @asynccontextmanager
    async def slot(self, domain: str) -> AsyncIterator["HostSlot"]:
        """
        Hold a request slot for ``domain``.

        The yielded ``HostSlot`` defaults to success; call ``failed()`` on it
        to have the host backed off.
        """
        await self.acquire(domain)
        handle = HostSlot()
        try:
            yield handle
        except BaseException:
            handle.failed()
            raise
        finally:
            self.release(domain, success=handle.success)

    def record_start(self, domain: str) -> None:
        """Record that a request to domain has started."""
        gate = self._get_gate(domain)
        gate.inflight += 1

    def record_complete(self, domain: str, *, success: bool = True) -> None:
        """Record that a request to domain has completed."""
        gate = self._get_gate(domain)
        gate.inflight = max(0, gate.inflight - 1)
        now = time.time()
        if success:
            gate.fail_streak = 0
            gate.next_fetch_at = now + gate.min_interval
        else:
            gate.fail_streak += 1
            backoff = min(gate.min_interval * (2**gate.fail_streak), MAX_BACKOFF)
            gate.next_fetch_at = now + backoff

    def stats(self) -> dict:
        now = time.time()
        return {
            "active_domains": len(
                [d for d, g in self._gates.items() if g.inflight > 0]
            ),
            "backed_off_domains": len(
                [
                    d
                    for d, g in self._gates.items()
                    if g.fail_streak > 0 and now < g.next_fetch_at
                ]
            ),
            "domain_min_interval": self.config.domain_min_interval,
            "domain_max_concurrent": self.config.domain_max_concurrent,
        }


class HostSlot:
    """Outcome flag for one request held through ``HostThrottle.slot``."""

    def __init__(self):
        self.success = True

    def failed(self) -> None:
        self.success = False
