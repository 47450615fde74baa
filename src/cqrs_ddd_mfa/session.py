"""Challenge session manager.

A challenge session is the short-lived "password verified, second factor
pending" record. Sessions expire lazily: every read compares ``expires_at``
against the clock and drops a stale session on the spot, so correctness
never depends on a background sweep having run.
"""

from __future__ import annotations

import logging
import secrets
from collections import OrderedDict
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import TYPE_CHECKING

from .audit.events import (
    challenge_completed_event,
    challenge_expired_event,
    challenge_opened_event,
)
from .clock import IClock, SystemClock
from .exceptions import NoFactorsEnrolledError
from .locking import KeyedLock
from .models import ChallengeSession, ChallengeState
from .ports import IChallengeSessionStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable
    from datetime import datetime

    from .models import FactorKind
    from .ports import IMfaAuditStore
    from .registry import FactorRegistry

    ExpiryListener = Callable[[ChallengeSession], Awaitable[None]]

logger = logging.getLogger("cqrs_ddd.mfa.sessions")


class ChallengeSessionManager:
    """Owns the lifetime of challenge sessions.

    ``get`` and ``complete`` do not lock on their own. Callers that look up
    a session, verify a factor and then complete it must wrap the whole
    sequence in :meth:`exclusive` so two concurrent requests cannot both
    observe an open session.

    Example:
        ```python
        sessions = ChallengeSessionManager(
            InMemoryChallengeSessionStore(), registry, clock=clock
        )

        session = await sessions.open("user-123")
        async with sessions.exclusive(session.id):
            if await sessions.get(session.id) is not None:
                ...
                await sessions.complete(session.id, factor_kind=FactorKind.TOTP)
        ```
    """

    def __init__(
        self,
        store: IChallengeSessionStore,
        registry: FactorRegistry,
        *,
        clock: IClock | None = None,
        ttl_seconds: int = 300,
        audit_store: IMfaAuditStore | None = None,
        history_size: int = 1000,
    ) -> None:
        """Initialize the session manager.

        Args:
            store: Challenge session storage.
            registry: Factor registry used to refuse users without factors.
            clock: Time source.
            ttl_seconds: Session lifetime (default 5 minutes).
            audit_store: Optional audit trail.
            history_size: Number of recently finished sessions whose terminal
                state is remembered for :meth:`state`.
        """
        self.store = store
        self.registry = registry
        self.clock = clock or SystemClock()
        self.ttl_seconds = ttl_seconds
        self.audit_store = audit_store
        self._locks = KeyedLock()
        self._history: OrderedDict[str, ChallengeState] = OrderedDict()
        self._history_size = history_size
        self._expiry_listeners: list[ExpiryListener] = []

    def add_expiry_listener(self, listener: ExpiryListener) -> None:
        """Register a callback run when a session ends without being verified.

        Called for lazy expiry, purges and forced expiry or lock, after the
        session has left the store.
        """
        self._expiry_listeners.append(listener)

    async def _notify_expired(self, session: ChallengeSession) -> None:
        for listener in self._expiry_listeners:
            await listener(session)

    def _remember(self, session_id: str, state: ChallengeState) -> None:
        self._history[session_id] = state
        self._history.move_to_end(session_id)
        while len(self._history) > self._history_size:
            self._history.popitem(last=False)

    async def open(
        self,
        user_id: str,
        *,
        available_factors: list[FactorKind] | None = None,
    ) -> ChallengeSession:
        """Open a challenge for a user whose primary credential succeeded.

        Args:
            user_id: User identifier.
            available_factors: Factor kinds offered to the user (audit only).

        Raises:
            NoFactorsEnrolledError: If the user has no enabled factors.
        """
        if not await self.registry.has_enabled_factors(user_id):
            raise NoFactorsEnrolledError(user_id)

        now = self.clock.now()
        session = ChallengeSession(
            id=secrets.token_urlsafe(32),
            user_id=user_id,
            created_at=now,
            expires_at=now + timedelta(seconds=self.ttl_seconds),
        )
        await self.store.add(session)
        logger.debug("Opened challenge %s for user %s", session.id, user_id)

        if self.audit_store is not None:
            await self.audit_store.record(
                challenge_opened_event(
                    user_id,
                    session.id,
                    timestamp=now,
                    available_factors=[k.value for k in available_factors or []],
                )
            )
        return session

    @asynccontextmanager
    async def exclusive(self, session_id: str) -> AsyncIterator[None]:
        """Serialize operations on one session id."""
        async with self._locks.hold(session_id):
            yield

    async def get(self, session_id: str) -> ChallengeSession | None:
        """Get an open session.

        Returns None when the session is absent or past its expiry; an
        expired session is deleted by the lookup itself.
        """
        session = await self.store.get(session_id)
        if session is None:
            return None
        if session.is_expired(self.clock.now()):
            await self._drop_expired(session_id)
            return None
        return session

    async def _drop_expired(self, session_id: str) -> None:
        session = await self.store.pop(session_id)
        if session is None:
            return
        self._remember(session_id, ChallengeState.CHALLENGE_EXPIRED)
        logger.debug("Challenge %s expired", session_id)
        if self.audit_store is not None:
            await self.audit_store.record(
                challenge_expired_event(
                    session.user_id, session_id, timestamp=self.clock.now()
                )
            )
        await self._notify_expired(session)

    async def complete(
        self, session_id: str, *, factor_kind: FactorKind
    ) -> ChallengeSession | None:
        """Mark a session MFA-verified and remove it in one step.

        Returns:
            The completed session, or None if it was already gone or expired.
        """
        session = await self.store.pop(session_id)
        if session is None:
            return None

        now = self.clock.now()
        if session.is_expired(now):
            self._remember(session_id, ChallengeState.CHALLENGE_EXPIRED)
            await self._notify_expired(session)
            return None

        session.mfa_verified = True
        self._remember(session_id, ChallengeState.MFA_VERIFIED)
        logger.info("Challenge %s completed for user %s", session_id, session.user_id)

        if self.audit_store is not None:
            await self.audit_store.record(
                challenge_completed_event(
                    session.user_id, session_id, timestamp=now, factor_kind=factor_kind
                )
            )
        return session

    async def expire(
        self,
        session_id: str,
        state: ChallengeState = ChallengeState.CHALLENGE_EXPIRED,
    ) -> bool:
        """Force a session into a terminal failure state.

        Args:
            session_id: Challenge identifier.
            state: ``CHALLENGE_EXPIRED`` or ``CHALLENGE_LOCKED``.

        Returns:
            True if an open session was removed.
        """
        if state not in (ChallengeState.CHALLENGE_EXPIRED, ChallengeState.CHALLENGE_LOCKED):
            raise ValueError(f"{state.value} is not a failure state")

        session = await self.store.pop(session_id)
        if session is None:
            return False

        self._remember(session_id, state)
        if state is ChallengeState.CHALLENGE_LOCKED:
            logger.warning(
                "Challenge %s locked for user %s", session_id, session.user_id
            )
        elif self.audit_store is not None:
            await self.audit_store.record(
                challenge_expired_event(
                    session.user_id, session_id, timestamp=self.clock.now()
                )
            )
        await self._notify_expired(session)
        return True

    async def state(self, session_id: str) -> ChallengeState:
        """Current state-machine state of a challenge id.

        Unknown ids, and finished ids that dropped out of the bounded
        history, report ``NO_SESSION``.
        """
        remembered = self._history.get(session_id)
        if remembered is not None:
            return remembered

        session = await self.store.get(session_id)
        if session is None:
            return ChallengeState.NO_SESSION
        if session.is_expired(self.clock.now()):
            return ChallengeState.CHALLENGE_EXPIRED
        return ChallengeState.CHALLENGE_OPEN

    async def purge_expired(self) -> list[ChallengeSession]:
        """Reclaim every session past its expiry.

        Returns:
            The purged sessions.
        """
        now = self.clock.now()
        purged = await self.store.purge(now)
        for session in purged:
            self._remember(session.id, ChallengeState.CHALLENGE_EXPIRED)
            if self.audit_store is not None:
                await self.audit_store.record(
                    challenge_expired_event(session.user_id, session.id, timestamp=now)
                )
            await self._notify_expired(session)
        if purged:
            logger.debug("Purged %d expired challenges", len(purged))
        return purged


class InMemoryChallengeSessionStore(IChallengeSessionStore):
    """In-memory challenge session store for development and testing only.

    ⚠️ WARNING: This implementation stores data in a local dictionary.
    It will NOT work in multi-worker environments.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, ChallengeSession] = {}

    async def add(self, session: ChallengeSession) -> None:
        self._sessions[session.id] = session

    async def get(self, session_id: str) -> ChallengeSession | None:
        return self._sessions.get(session_id)

    async def pop(self, session_id: str) -> ChallengeSession | None:
        return self._sessions.pop(session_id, None)

    async def purge(self, before: datetime) -> list[ChallengeSession]:
        expired = [s for s in self._sessions.values() if s.expires_at < before]
        for session in expired:
            del self._sessions[session.id]
        return expired

    def __len__(self) -> int:
        return len(self._sessions)


__all__: list[str] = ["ChallengeSessionManager", "InMemoryChallengeSessionStore"]
