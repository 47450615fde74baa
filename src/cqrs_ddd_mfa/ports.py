"""MFA ports (protocols).

Storage ports are keyed by user id or session id so that implementations
can lock or compare-and-swap per key. All ports use @runtime_checkable for
isinstance checks.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from datetime import datetime

    from .audit.events import MfaAuditEvent, MfaEventType
    from .models import (
        BackupCode,
        ChallengeSession,
        EnrolledFactor,
        FactorKind,
        OneTimeCode,
    )


# ═══════════════════════════════════════════════════════════════
# STORAGE PORTS
# ═══════════════════════════════════════════════════════════════


@runtime_checkable
class IFactorStore(Protocol):
    """Protocol for enrolled-factor storage."""

    async def add(self, factor: EnrolledFactor) -> None:
        """Persist a newly enrolled factor."""
        ...

    async def get(self, factor_id: str) -> EnrolledFactor | None:
        """Get a factor by id, enabled or not."""
        ...

    async def list_for_user(self, user_id: str) -> list[EnrolledFactor]:
        """List all factors of a user in enrolment order."""
        ...

    async def save(self, factor: EnrolledFactor) -> None:
        """Persist changes to an existing factor."""
        ...


@runtime_checkable
class IOneTimeCodeStore(Protocol):
    """Protocol for out-of-band code storage."""

    async def add(self, code: OneTimeCode) -> None:
        """Persist a newly issued code."""
        ...

    async def latest(self, user_id: str, kind: FactorKind) -> OneTimeCode | None:
        """Get the most recently created code of a kind for a user.

        Returns the code whether or not it is used or expired.
        """
        ...

    async def save(self, code: OneTimeCode) -> None:
        """Persist changes to a code (attempts, used flag)."""
        ...

    async def purge(self, before: datetime) -> int:
        """Delete codes that expired before the given time.

        Returns:
            Number of deleted codes.
        """
        ...


@runtime_checkable
class IOtpRateLimitStore(Protocol):
    """Protocol for OTP resend rate limiting."""

    async def record_send(self, identifier: str, sent_at: datetime) -> None:
        """Record that a code was sent to this identifier."""
        ...

    async def last_send(self, identifier: str) -> datetime | None:
        """Get the time of the last send, or None if never sent."""
        ...

    async def purge(self, before: datetime) -> int:
        """Forget sends at or before ``before``. Returns the number removed."""
        ...


@runtime_checkable
class IBackupCodeStore(Protocol):
    """Protocol for hashed backup code storage."""

    async def add_many(self, codes: list[BackupCode]) -> None:
        """Persist a new generation of codes."""
        ...

    async def list_for_user(self, user_id: str) -> list[BackupCode]:
        """List every code of a user, including used and revoked ones."""
        ...

    async def find_live(self, user_id: str, code_hash: str) -> BackupCode | None:
        """Find an unused, unrevoked code by hash."""
        ...

    async def save(self, code: BackupCode) -> None:
        """Persist changes to a code."""
        ...


@runtime_checkable
class ITotpReplayCache(Protocol):
    """Protocol for the TOTP anti-replay cache.

    Tracks the last consumed time-step counter per user.
    """

    async def consume(self, user_id: str, counter: int) -> bool:
        """Atomically mark a counter as consumed.

        Args:
            user_id: User identifier.
            counter: Matched TOTP time-step counter.

        Returns:
            True if the counter is newer than the last consumed one and was
            recorded, False if it was already consumed (replay).
        """
        ...

    async def last_counter(self, user_id: str) -> int | None:
        """Get the last consumed counter for a user."""
        ...


@runtime_checkable
class IChallengeSessionStore(Protocol):
    """Protocol for challenge session storage.

    Implementations only store; expiry is decided by the session manager
    using its clock.
    """

    async def add(self, session: ChallengeSession) -> None:
        """Persist a new challenge session."""
        ...

    async def get(self, session_id: str) -> ChallengeSession | None:
        """Get a session by id."""
        ...

    async def pop(self, session_id: str) -> ChallengeSession | None:
        """Remove and return a session in one step (compare-and-delete).

        Returns:
            The removed session, or None if it was not present.
        """
        ...

    async def purge(self, before: datetime) -> list[ChallengeSession]:
        """Delete sessions that expired before the given time.

        Returns:
            The deleted sessions.
        """
        ...


@runtime_checkable
class IAttemptCounterStore(Protocol):
    """Protocol for failure counters.

    ``increment`` must be atomic so that concurrent failed attempts are not
    lost.
    """

    async def increment(self, key: str) -> int:
        """Increment a counter and return the new value."""
        ...

    async def get(self, key: str) -> int:
        """Get the current counter value (0 when absent)."""
        ...

    async def reset(self, key: str) -> None:
        """Drop a counter."""
        ...


@runtime_checkable
class IMfaAuditStore(Protocol):
    """Protocol for append-only MFA audit storage."""

    async def record(self, event: MfaAuditEvent) -> None:
        """Append an audit event."""
        ...

    async def get_events(
        self,
        user_id: str,
        *,
        event_types: list[MfaEventType] | None = None,
        limit: int = 100,
    ) -> list[MfaAuditEvent]:
        """Get events for a user, most recent first."""
        ...

    async def get_events_by_type(
        self,
        event_type: MfaEventType,
        *,
        limit: int = 100,
    ) -> list[MfaAuditEvent]:
        """Get events of one type across all users, most recent first."""
        ...


# ═══════════════════════════════════════════════════════════════
# EXTERNAL COLLABORATOR PORTS
# ═══════════════════════════════════════════════════════════════


@runtime_checkable
class IMfaDeliveryHook(Protocol):
    """Protocol for out-of-band code delivery.

    Applications implement this to send codes via email or SMS. The MFA
    core does NOT include email/SMS sending.
    """

    async def send_email_otp(self, email: str, code: str) -> None:
        """Send a code via email."""
        ...

    async def send_sms_otp(self, phone: str, code: str) -> None:
        """Send a code via SMS."""
        ...


@runtime_checkable
class IPrimaryCredentialVerifier(Protocol):
    """Protocol for the password subsystem."""

    async def verify_primary_credential(self, user_id: str, secret: str) -> bool:
        """Check the user's primary credential."""
        ...


@runtime_checkable
class IFullSessionIssuer(Protocol):
    """Protocol for the full-session manager.

    Invoked only after a challenge reaches MFA_VERIFIED.
    """

    async def issue_full_session(self, user_id: str) -> str:
        """Issue a long-lived session token for the user."""
        ...


__all__: list[str] = [
    "IFactorStore",
    "IOneTimeCodeStore",
    "IOtpRateLimitStore",
    "IBackupCodeStore",
    "ITotpReplayCache",
    "IChallengeSessionStore",
    "IAttemptCounterStore",
    "IMfaAuditStore",
    "IMfaDeliveryHook",
    "IPrimaryCredentialVerifier",
    "IFullSessionIssuer",
]
