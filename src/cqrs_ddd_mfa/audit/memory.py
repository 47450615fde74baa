"""In-memory audit store for testing and development.

Events are kept in a bounded ring buffer: once ``capacity`` is reached the
oldest event is dropped for each new one.
"""

from __future__ import annotations

from collections import deque
from datetime import timedelta
from typing import TYPE_CHECKING

from ..clock import IClock, SystemClock
from ..ports import IMfaAuditStore

if TYPE_CHECKING:
    from .events import MfaAuditEvent, MfaEventType


class InMemoryMfaAuditStore(IMfaAuditStore):
    """In-memory implementation of IMfaAuditStore.

    Note:
        Events are stored in memory and will be lost on restart.
        Not suitable for production use.

    Example:
        ```python
        store = InMemoryMfaAuditStore(capacity=1000)

        await store.record(verification_event(
            "user-123", session_id, timestamp=clock.now(),
            factor_kind=FactorKind.TOTP,
            outcome=VerificationOutcome.INVALID_CODE,
        ))

        events = await store.get_events("user-123")
        ```
    """

    def __init__(self, capacity: int = 1000, clock: IClock | None = None) -> None:
        """Initialize the in-memory audit store.

        Args:
            capacity: Maximum number of retained events.
            clock: Clock used for time-window queries.
        """
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._events: deque[MfaAuditEvent] = deque(maxlen=capacity)
        self._clock = clock or SystemClock()

    @property
    def capacity(self) -> int:
        return self._events.maxlen or 0

    async def record(self, event: MfaAuditEvent) -> None:
        self._events.append(event)

    async def get_events(
        self,
        user_id: str,
        *,
        event_types: list[MfaEventType] | None = None,
        limit: int = 100,
    ) -> list[MfaAuditEvent]:
        results: list[MfaAuditEvent] = []
        for event in reversed(self._events):  # Most recent first
            if event.user_id != user_id:
                continue
            if event_types and event.event_type not in event_types:
                continue
            results.append(event)
            if len(results) >= limit:
                break
        return results

    async def get_events_by_type(
        self,
        event_type: MfaEventType,
        *,
        limit: int = 100,
    ) -> list[MfaAuditEvent]:
        results: list[MfaAuditEvent] = []
        for event in reversed(self._events):
            if event.event_type is not event_type:
                continue
            results.append(event)
            if len(results) >= limit:
                break
        return results

    async def get_recent_failures(
        self,
        *,
        user_id: str | None = None,
        minutes: int = 15,
        limit: int = 100,
    ) -> list[MfaAuditEvent]:
        """Get recent failed events.

        Args:
            user_id: Optional filter by user.
            minutes: Time window in minutes.
            limit: Maximum number of events to return.

        Returns:
            Failed events inside the window, most recent first.
        """
        cutoff = self._clock.now() - timedelta(minutes=minutes)

        results: list[MfaAuditEvent] = []
        for event in reversed(self._events):
            if event.timestamp < cutoff:
                continue
            if user_id is not None and event.user_id != user_id:
                continue
            if event.success:
                continue
            results.append(event)
            if len(results) >= limit:
                break
        return results

    def all_events(self) -> list[MfaAuditEvent]:
        """Return every retained event, oldest first."""
        return list(self._events)

    def clear(self) -> None:
        """Clear all stored events.

        Useful for test cleanup.
        """
        self._events.clear()

    def count(self) -> int:
        return len(self._events)

    def count_by_type(self, event_type: MfaEventType) -> int:
        return sum(1 for event in self._events if event.event_type is event_type)

    def count_by_user(self, user_id: str) -> int:
        return sum(1 for event in self._events if event.user_id == user_id)


__all__: list[str] = ["InMemoryMfaAuditStore"]
