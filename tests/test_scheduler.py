"""
Host Throttle Tests

Tests for HostGate, per-host spacing, concurrency limits and backoff.
"""

import asyncio
import time

import pytest

from whynot.crawler.scheduler import (
    MAX_BACKOFF,
    HostGate,
    HostThrottle,
    SchedulerConfig,
)


class TestHostGate:
    def test_defaults(self):
        gate = HostGate()
        assert gate.next_fetch_at == 0.0
        assert gate.inflight == 0
        assert gate.min_interval == 1.0
        assert gate.concurrency_limit == 1
        assert gate.fail_streak == 0

    def test_custom_values(self):
        gate = HostGate(min_interval=5.0, concurrency_limit=3, fail_streak=2)
        assert gate.min_interval == 5.0
        assert gate.concurrency_limit == 3
        assert gate.fail_streak == 2


class TestBookkeeping:
    def test_record_start_and_complete_track_inflight(self):
        t = HostThrottle()
        t.record_start("example.com")
        t.record_start("example.com")
        gate = t._get_gate("example.com")
        assert gate.inflight == 2
        t.record_complete("example.com")
        assert gate.inflight == 1

    def test_inflight_does_not_go_negative(self):
        t = HostThrottle()
        t.record_complete("example.com")
        assert t._get_gate("example.com").inflight == 0

    def test_success_schedules_min_interval(self):
        t = HostThrottle(SchedulerConfig(domain_min_interval=10.0))
        before = time.time()
        t.record_complete("example.com", success=True)
        gate = t._get_gate("example.com")
        assert gate.fail_streak == 0
        assert before + 10.0 <= gate.next_fetch_at <= time.time() + 10.0

    def test_failures_back_off_exponentially(self):
        t = HostThrottle(SchedulerConfig(domain_min_interval=1.0))
        t.record_complete("example.com", success=False)
        t.record_complete("example.com", success=False)
        gate = t._get_gate("example.com")
        assert gate.fail_streak == 2
        assert gate.next_fetch_at >= time.time() + 3.5

    def test_backoff_is_capped(self):
        t = HostThrottle(SchedulerConfig(domain_min_interval=100.0))
        for _ in range(20):
            t.record_complete("example.com", success=False)
        gate = t._get_gate("example.com")
        assert gate.next_fetch_at <= time.time() + MAX_BACKOFF

    def test_success_resets_fail_streak(self):
        t = HostThrottle()
        t.record_complete("example.com", success=False)
        t.record_complete("example.com", success=True)
        assert t._get_gate("example.com").fail_streak == 0

    def test_stats(self):
        t = HostThrottle(SchedulerConfig(domain_min_interval=2.0))
        t.record_start("a.com")
        t.record_complete("b.com", success=False)
        stats = t.stats()
        assert stats["active_domains"] == 1
        assert stats["backed_off_domains"] == 1
        assert stats["domain_min_interval"] == 2.0


class TestAcquire:
    @pytest.mark.asyncio
    async def test_same_host_is_serialized(self):
        t = HostThrottle(SchedulerConfig(domain_min_interval=0))
        await t.acquire("example.com")
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(t.acquire("example.com"), timeout=0.05)
        t.release("example.com")
        await asyncio.wait_for(t.acquire("example.com"), timeout=1)

    @pytest.mark.asyncio
    async def test_hosts_are_independent(self):
        t = HostThrottle(SchedulerConfig(domain_min_interval=60))
        await t.acquire("a.com")
        t.release("a.com")
        # a.com now waits a minute; b.com must not
        await asyncio.wait_for(t.acquire("b.com"), timeout=0.5)
        t.release("b.com")

    @pytest.mark.asyncio
    async def test_min_interval_spaces_requests(self):
        t = HostThrottle(SchedulerConfig(domain_min_interval=0.1))
        start = time.monotonic()
        for _ in range(3):
            async with t.slot("example.com"):
                pass
        assert time.monotonic() - start >= 0.18

    @pytest.mark.asyncio
    async def test_concurrency_limit(self):
        t = HostThrottle(
            SchedulerConfig(domain_min_interval=0, domain_max_concurrent=2)
        )
        await t.acquire("example.com")
        await t.acquire("example.com")
        assert t._get_gate("example.com").inflight == 2
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(t.acquire("example.com"), timeout=0.05)
        t.release("example.com")
        t.release("example.com")

    @pytest.mark.asyncio
    async def test_slot_failed_backs_off(self):
        t = HostThrottle(SchedulerConfig(domain_min_interval=1.0))
        async with t.slot("example.com") as slot:
            slot.failed()
        gate = t._get_gate("example.com")
        assert gate.fail_streak == 1
        assert gate.inflight == 0

    @pytest.mark.asyncio
    async def test_slot_exception_counts_as_failure(self):
        t = HostThrottle(SchedulerConfig(domain_min_interval=0))
        with pytest.raises(RuntimeError):
            async with t.slot("example.com"):
                raise RuntimeError("boom")
        assert t._get_gate("example.com").fail_streak == 1
        # Slot was released
        await asyncio.wait_for(t.acquire("example.com"), timeout=1)
