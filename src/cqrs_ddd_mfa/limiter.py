"""Per-session failure counting.

Counts failed verifications per ``(user_id, session_id)``. Once the
threshold is reached the caller force-expires the session; the limiter
itself only counts and emits the ``mfa_session_locked`` audit event.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .audit.events import session_locked_event
from .clock import IClock, SystemClock
from .ports import IAttemptCounterStore

if TYPE_CHECKING:
    from .ports import IMfaAuditStore

logger = logging.getLogger("cqrs_ddd.mfa")


@dataclass(frozen=True)
class AttemptStatus:
    """Failure count after recording an attempt.

    Attributes:
        failures: Failures recorded for the session so far.
        remaining: Attempts left before the session locks.
        locked: True once the threshold has been reached.
    """

    failures: int
    remaining: int
    locked: bool


class AttemptLimiter:
    """Failure threshold per challenge session.

    Example:
        ```python
        limiter = AttemptLimiter(InMemoryAttemptCounterStore(), max_failures=5)

        status = await limiter.record_failure("user-123", session_id)
        if status.locked:
            await sessions.expire(session_id, ChallengeState.CHALLENGE_LOCKED)
        ```
    """

    def __init__(
        self,
        store: IAttemptCounterStore,
        *,
        max_failures: int = 5,
        clock: IClock | None = None,
        audit_store: IMfaAuditStore | None = None,
    ) -> None:
        if max_failures <= 0:
            raise ValueError("max_failures must be positive")
        self.store = store
        self.max_failures = max_failures
        self.clock = clock or SystemClock()
        self.audit_store = audit_store

    @staticmethod
    def _key(user_id: str, session_id: str) -> str:
        return f"{user_id}:{session_id}"

    async def record_failure(self, user_id: str, session_id: str) -> AttemptStatus:
        """Count one failed attempt.

        The locked audit event is emitted exactly once, by the attempt that
        reaches the threshold.
        """
        failures = await self.store.increment(self._key(user_id, session_id))
        locked = failures >= self.max_failures

        if failures == self.max_failures:
            logger.warning(
                "Locking challenge %s for user %s after %d failed attempts",
                session_id,
                user_id,
                failures,
            )
            if self.audit_store is not None:
                await self.audit_store.record(
                    session_locked_event(
                        user_id,
                        session_id,
                        timestamp=self.clock.now(),
                        failed_attempts=failures,
                    )
                )

        return AttemptStatus(
            failures=failures,
            remaining=max(0, self.max_failures - failures),
            locked=locked,
        )

    async def failure_count(self, user_id: str, session_id: str) -> int:
        return await self.store.get(self._key(user_id, session_id))

    async def reset(self, user_id: str, session_id: str) -> None:
        await self.store.reset(self._key(user_id, session_id))


class InMemoryAttemptCounterStore(IAttemptCounterStore):
    """In-memory counters for a single event loop.

    ``increment`` has no suspension point, so it cannot lose updates to
    concurrent tasks.
    """

    def __init__(self) -> None:
        self._counts: dict[str, int] = {}

    async def increment(self, key: str) -> int:
        value = self._counts.get(key, 0) + 1
        self._counts[key] = value
        return value

    async def get(self, key: str) -> int:
        return self._counts.get(key, 0)

    async def reset(self, key: str) -> None:
        self._counts.pop(key, None)

    def __len__(self) -> int:
        return len(self._counts)


__all__: list[str] = ["AttemptStatus", "AttemptLimiter", "InMemoryAttemptCounterStore"]
