"""Tests for ExpirySweeper."""

from __future__ import annotations

import asyncio

import pytest

from cqrs_ddd_mfa.clock import FrozenClock
from cqrs_ddd_mfa.factory import create_in_memory_orchestrator
from cqrs_ddd_mfa.models import ChallengeState
from cqrs_ddd_mfa.orchestrator import MfaConfig, MfaOrchestrator
from cqrs_ddd_mfa.sweeper import ExpirySweeper


class TestExpirySweeper:
    @pytest.mark.asyncio
    async def test_run_once(self, orchestrator: MfaOrchestrator, clock: FrozenClock) -> None:
        await orchestrator.generate_backup_codes("alice")
        info = await orchestrator.open_challenge("alice")
        clock.advance(seconds=301)

        result = await ExpirySweeper(orchestrator).run_once()

        assert result.challenges == 1
        assert await orchestrator.challenge_state(info.challenge_id) is (
            ChallengeState.CHALLENGE_EXPIRED
        )

    @pytest.mark.asyncio
    async def test_run_once_with_nothing_expired(self, orchestrator: MfaOrchestrator) -> None:
        await orchestrator.generate_backup_codes("alice")
        info = await orchestrator.open_challenge("alice")

        result = await ExpirySweeper(orchestrator).run_once()

        assert result.challenges == 0
        assert result.codes == 0
        assert await orchestrator.challenge_state(info.challenge_id) is (
            ChallengeState.CHALLENGE_OPEN
        )

    @pytest.mark.asyncio
    async def test_start_and_stop(self, orchestrator: MfaOrchestrator) -> None:
        sweeper = ExpirySweeper(orchestrator, interval=60.0)

        await sweeper.start()
        await sweeper.start()
        assert sweeper.running

        await sweeper.stop()
        assert not sweeper.running

    @pytest.mark.asyncio
    async def test_trigger_wakes_loop(
        self, orchestrator: MfaOrchestrator, clock: FrozenClock
    ) -> None:
        await orchestrator.generate_backup_codes("alice")
        info = await orchestrator.open_challenge("alice")
        sweeper = ExpirySweeper(orchestrator, interval=60.0)
        await sweeper.start()

        clock.advance(seconds=301)
        sweeper.trigger()
        for _ in range(50):
            await asyncio.sleep(0.01)
            if len(orchestrator.sessions.store) == 0:  # type: ignore[arg-type]
                break
        await sweeper.stop()

        assert await orchestrator.challenge_state(info.challenge_id) is (
            ChallengeState.CHALLENGE_EXPIRED
        )
        assert len(orchestrator.sessions.store) == 0  # type: ignore[arg-type]

    def test_interval_defaults_to_config(self, clock: FrozenClock) -> None:
        mfa = create_in_memory_orchestrator(MfaConfig(sweep_interval_seconds=42), clock=clock)

        assert ExpirySweeper(mfa).interval == 42.0
        assert ExpirySweeper(mfa, interval=5.0).interval == 5.0
