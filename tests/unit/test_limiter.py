"""Tests for the per-session attempt limiter."""

from __future__ import annotations

import asyncio

import pytest

from cqrs_ddd_mfa.audit.events import MfaEventType
from cqrs_ddd_mfa.audit.memory import InMemoryMfaAuditStore
from cqrs_ddd_mfa.clock import FrozenClock
from cqrs_ddd_mfa.limiter import AttemptLimiter, InMemoryAttemptCounterStore


@pytest.fixture
def counters() -> InMemoryAttemptCounterStore:
    return InMemoryAttemptCounterStore()


@pytest.fixture
def limiter(
    counters: InMemoryAttemptCounterStore,
    clock: FrozenClock,
    audit_store: InMemoryMfaAuditStore,
) -> AttemptLimiter:
    return AttemptLimiter(counters, max_failures=5, clock=clock, audit_store=audit_store)


class TestAttemptLimiter:
    @pytest.mark.asyncio
    async def test_failures_increase_monotonically(self, limiter: AttemptLimiter) -> None:
        statuses = [await limiter.record_failure("alice", "s1") for _ in range(4)]

        assert [s.failures for s in statuses] == [1, 2, 3, 4]
        assert [s.remaining for s in statuses] == [4, 3, 2, 1]
        assert not any(s.locked for s in statuses)

    @pytest.mark.asyncio
    async def test_locks_at_threshold(
        self, limiter: AttemptLimiter, audit_store: InMemoryMfaAuditStore
    ) -> None:
        for _ in range(4):
            await limiter.record_failure("alice", "s1")

        status = await limiter.record_failure("alice", "s1")

        assert status.locked
        assert status.remaining == 0
        events = await audit_store.get_events_by_type(MfaEventType.SESSION_LOCKED)
        assert len(events) == 1
        assert events[0].session_id == "s1"
        assert events[0].metadata == {"failed_attempts": 5}

    @pytest.mark.asyncio
    async def test_locked_event_emitted_once(
        self, limiter: AttemptLimiter, audit_store: InMemoryMfaAuditStore
    ) -> None:
        for _ in range(7):
            await limiter.record_failure("alice", "s1")

        assert audit_store.count_by_type(MfaEventType.SESSION_LOCKED) == 1

    @pytest.mark.asyncio
    async def test_counts_are_per_session(self, limiter: AttemptLimiter) -> None:
        await limiter.record_failure("alice", "s1")
        await limiter.record_failure("alice", "s1")
        await limiter.record_failure("alice", "s2")

        assert await limiter.failure_count("alice", "s1") == 2
        assert await limiter.failure_count("alice", "s2") == 1
        assert await limiter.failure_count("bob", "s1") == 0

    @pytest.mark.asyncio
    async def test_reset(
        self, limiter: AttemptLimiter, counters: InMemoryAttemptCounterStore
    ) -> None:
        await limiter.record_failure("alice", "s1")
        await limiter.reset("alice", "s1")

        assert await limiter.failure_count("alice", "s1") == 0
        assert len(counters) == 0

    @pytest.mark.asyncio
    async def test_concurrent_failures_are_not_lost(self, limiter: AttemptLimiter) -> None:
        await asyncio.gather(*(limiter.record_failure("alice", "s1") for _ in range(20)))
        assert await limiter.failure_count("alice", "s1") == 20

    def test_threshold_must_be_positive(self, counters: InMemoryAttemptCounterStore) -> None:
        with pytest.raises(ValueError):
            AttemptLimiter(counters, max_failures=0)
