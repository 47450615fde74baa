"""Clock sources for time-bounded MFA decisions.

Every expiry, drift-window and cooldown check reads time from an
``IClock`` so that tests can substitute a controllable clock.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol, runtime_checkable


@runtime_checkable
class IClock(Protocol):
    """Protocol for wall-clock time providers."""

    def now(self) -> datetime:
        """Return the current time as a timezone-aware UTC datetime."""
        ...


class SystemClock(IClock):
    """Clock backed by the system wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock(IClock):
    """Manually driven clock for tests.

    Example:
        ```python
        clock = FrozenClock(datetime(2026, 1, 1, tzinfo=timezone.utc))
        manager = ChallengeSessionManager(store, registry, clock=clock)

        session = await manager.open("user-123")
        clock.advance(seconds=301)
        assert await manager.get(session.id) is None
        ```
    """

    def __init__(self, start: datetime | None = None) -> None:
        start = start or datetime.now(timezone.utc)
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float = 0, **kwargs: float) -> datetime:
        """Move the clock forward.

        Args:
            seconds: Seconds to advance.
            **kwargs: Extra ``timedelta`` arguments (minutes, hours, ...).

        Returns:
            The new current time.
        """
        self._now += timedelta(seconds=seconds, **kwargs)
        return self._now

    def set(self, moment: datetime) -> None:
        """Jump to an absolute point in time."""
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        self._now = moment


__all__: list[str] = ["IClock", "SystemClock", "FrozenClock"]
