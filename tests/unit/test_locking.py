"""Tests for KeyedLock."""

from __future__ import annotations

import asyncio

import pytest

from cqrs_ddd_mfa.exceptions import LockAcquisitionError
from cqrs_ddd_mfa.locking import KeyedLock


class TestKeyedLock:
    @pytest.mark.asyncio
    async def test_serializes_same_key(self) -> None:
        locks = KeyedLock()
        order: list[str] = []

        async def worker(name: str) -> None:
            async with locks.hold("k"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order in (
            ["a-in", "a-out", "b-in", "b-out"],
            ["b-in", "b-out", "a-in", "a-out"],
        )

    @pytest.mark.asyncio
    async def test_different_keys_do_not_block(self) -> None:
        locks = KeyedLock(timeout=0.05)

        async with locks.hold("a"):
            async with locks.hold("b"):
                assert locks.is_locked("a")
                assert locks.is_locked("b")

    @pytest.mark.asyncio
    async def test_entries_are_released(self) -> None:
        locks = KeyedLock()

        async with locks.hold("k"):
            assert len(locks) == 1

        assert len(locks) == 0
        assert not locks.is_locked("k")

    @pytest.mark.asyncio
    async def test_timeout_raises(self) -> None:
        locks = KeyedLock()

        async with locks.hold("k"):
            with pytest.raises(LockAcquisitionError) as exc_info:
                async with locks.hold("k", timeout=0.01):
                    pass  # pragma: no cover

        assert exc_info.value.key == "k"
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_released_on_error(self) -> None:
        locks = KeyedLock()

        with pytest.raises(RuntimeError):
            async with locks.hold("k"):
                raise RuntimeError("boom")

        async with locks.hold("k", timeout=0.01):
            assert locks.is_locked("k")
