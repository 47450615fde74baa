"""ExpirySweeper: periodic reclamation of expired challenges and codes."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .orchestrator import MfaOrchestrator, SweepResult

logger = logging.getLogger("cqrs_ddd.mfa.sweeper")


class ExpirySweeper:
    """Background worker that purges expired records for memory hygiene.

    Expiry is enforced lazily on every read, so a sweeper that never runs
    does not change any verification result. Call :meth:`trigger` to sweep
    immediately; otherwise runs every ``interval`` seconds, which defaults to
    the orchestrator's ``MfaConfig.sweep_interval_seconds``.
    """

    def __init__(self, orchestrator: MfaOrchestrator, interval: float | None = None) -> None:
        self._orchestrator = orchestrator
        if interval is None:
            interval = float(orchestrator.config.sweep_interval_seconds)
        self._interval = interval
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._trigger = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def interval(self) -> float:
        return self._interval

    def trigger(self) -> None:
        """Wake the sweeper immediately."""
        self._trigger.set()

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("ExpirySweeper started (interval=%.1fs)", self._interval)

    async def stop(self) -> None:
        self._running = False
        self._trigger.set()
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError, asyncio.TimeoutError):
                await asyncio.wait_for(self._task, timeout=5.0)
            self._task = None
        logger.info("ExpirySweeper stopped")

    async def run_once(self) -> SweepResult:
        """Execute a single sweep (useful in tests)."""
        return await self._process()

    async def _run_loop(self) -> None:
        while self._running:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._trigger.wait(), timeout=self._interval)
            self._trigger.clear()
            if not self._running:
                break
            try:
                await self._process()
            except Exception:
                logger.exception("ExpirySweeper error")

    async def _process(self) -> SweepResult:
        result = await self._orchestrator.sweep_expired()
        if result.challenges or result.codes:
            logger.info(
                "ExpirySweeper: purged %d challenges and %d codes",
                result.challenges,
                result.codes,
            )
        return result


__all__: list[str] = ["ExpirySweeper"]
