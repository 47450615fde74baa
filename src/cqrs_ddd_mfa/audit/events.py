"""Audit events for MFA operations.

Events carry enough detail to rebuild a security timeline (user, session,
factor kind, outcome, time) and never include a raw secret, one-time code
or backup code.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..models import new_id

if TYPE_CHECKING:
    from ..models import FactorKind, VerificationOutcome


class MfaEventType(Enum):
    """Types of MFA audit events."""

    # Challenge lifecycle
    CHALLENGE_OPENED = "mfa_challenge_opened"
    CHALLENGE_COMPLETED = "mfa_challenge_completed"
    CHALLENGE_EXPIRED = "mfa_challenge_expired"
    SESSION_LOCKED = "mfa_session_locked"

    # Verification attempts
    VERIFICATION_SUCCEEDED = "mfa_verified"
    VERIFICATION_FAILED = "mfa_failed"

    # Out-of-band codes
    OTP_GENERATED = "otp_generated"
    OTP_DELIVERY_FAILED = "otp_delivery_failed"

    # Backup codes
    BACKUP_CODES_GENERATED = "backup_codes_generated"
    BACKUP_CODES_REVOKED = "backup_codes_revoked"

    # Enrolment
    FACTOR_ENROLLED = "mfa_enrolled"
    FACTOR_DISABLED = "mfa_disabled"


@dataclass(frozen=True)
class MfaAuditEvent:
    """MFA audit event.

    Attributes:
        event_type: The type of event.
        user_id: The user the event concerns (None when unknown, e.g. a
            verification against a missing challenge).
        timestamp: When the event occurred (UTC).
        id: Event identifier.
        session_id: Challenge session identifier, if applicable.
        factor_kind: Factor kind value, if applicable.
        success: Whether the operation succeeded.
        outcome: Detailed outcome or error code.
        metadata: Additional event-specific data. Never holds code values.
    """

    event_type: MfaEventType
    user_id: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: str = field(default_factory=new_id)
    session_id: str | None = None
    factor_kind: str | None = None
    success: bool = True
    outcome: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate event data."""
        if not self.success and not self.outcome:
            object.__setattr__(self, "outcome", "UNKNOWN_ERROR")

    def to_dict(self) -> dict[str, Any]:
        """Convert event to dictionary for serialization.

        Returns:
            Dictionary representation suitable for JSON serialization.
        """
        return {
            "id": self.id,
            "event_type": self.event_type.value,
            "user_id": self.user_id,
            "timestamp": self.timestamp.isoformat(),
            "session_id": self.session_id,
            "factor_kind": self.factor_kind,
            "success": self.success,
            "outcome": self.outcome,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MfaAuditEvent:
        """Create event from dictionary.

        Raises:
            ValueError: If required fields are missing or invalid.
        """
        event_type_str = data.get("event_type")
        if event_type_str is None:
            raise ValueError("Missing required 'event_type'")

        try:
            event_type = MfaEventType(event_type_str)
        except ValueError as e:
            raise ValueError(f"Invalid event_type: {event_type_str}") from e

        timestamp = data.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
            if timestamp.tzinfo is None:
                timestamp = timestamp.replace(tzinfo=timezone.utc)
        elif timestamp is None:
            timestamp = datetime.now(timezone.utc)

        return cls(
            event_type=event_type,
            user_id=data.get("user_id"),
            timestamp=timestamp,
            id=data.get("id") or new_id(),
            session_id=data.get("session_id"),
            factor_kind=data.get("factor_kind"),
            success=data.get("success", True),
            outcome=data.get("outcome"),
            metadata=data.get("metadata", {}),
        )


# ═══════════════════════════════════════════════════════════════
# EVENT FACTORY FUNCTIONS
# ═══════════════════════════════════════════════════════════════


def _kind_value(kind: FactorKind | str | None) -> str | None:
    if kind is None:
        return None
    return getattr(kind, "value", kind)


def challenge_opened_event(
    user_id: str,
    session_id: str,
    *,
    timestamp: datetime,
    available_factors: list[str] | None = None,
) -> MfaAuditEvent:
    """Create a challenge opened event."""
    return MfaAuditEvent(
        event_type=MfaEventType.CHALLENGE_OPENED,
        user_id=user_id,
        timestamp=timestamp,
        session_id=session_id,
        metadata={"available_factors": available_factors or []},
    )


def challenge_completed_event(
    user_id: str,
    session_id: str,
    *,
    timestamp: datetime,
    factor_kind: FactorKind | str,
) -> MfaAuditEvent:
    """Create a challenge completed event."""
    return MfaAuditEvent(
        event_type=MfaEventType.CHALLENGE_COMPLETED,
        user_id=user_id,
        timestamp=timestamp,
        session_id=session_id,
        factor_kind=_kind_value(factor_kind),
    )


def challenge_expired_event(
    user_id: str,
    session_id: str,
    *,
    timestamp: datetime,
) -> MfaAuditEvent:
    """Create a challenge expired event."""
    return MfaAuditEvent(
        event_type=MfaEventType.CHALLENGE_EXPIRED,
        user_id=user_id,
        timestamp=timestamp,
        session_id=session_id,
        success=False,
        outcome="expired",
    )


def session_locked_event(
    user_id: str,
    session_id: str,
    *,
    timestamp: datetime,
    failed_attempts: int,
) -> MfaAuditEvent:
    """Create a session locked event."""
    return MfaAuditEvent(
        event_type=MfaEventType.SESSION_LOCKED,
        user_id=user_id,
        timestamp=timestamp,
        session_id=session_id,
        success=False,
        outcome="locked",
        metadata={"failed_attempts": failed_attempts},
    )


def verification_event(
    user_id: str | None,
    session_id: str,
    *,
    timestamp: datetime,
    factor_kind: FactorKind | str,
    outcome: VerificationOutcome,
    metadata: dict[str, Any] | None = None,
) -> MfaAuditEvent:
    """Create a verification attempt event (success or failure)."""
    success = outcome.value == "success"
    return MfaAuditEvent(
        event_type=(
            MfaEventType.VERIFICATION_SUCCEEDED
            if success
            else MfaEventType.VERIFICATION_FAILED
        ),
        user_id=user_id,
        timestamp=timestamp,
        session_id=session_id,
        factor_kind=_kind_value(factor_kind),
        success=success,
        outcome=outcome.value,
        metadata=metadata or {},
    )


def otp_generated_event(
    user_id: str,
    code_id: str,
    *,
    timestamp: datetime,
    factor_kind: FactorKind | str,
) -> MfaAuditEvent:
    """Create an out-of-band code generated event."""
    return MfaAuditEvent(
        event_type=MfaEventType.OTP_GENERATED,
        user_id=user_id,
        timestamp=timestamp,
        factor_kind=_kind_value(factor_kind),
        metadata={"code_id": code_id},
    )


def otp_delivery_failed_event(
    user_id: str,
    code_id: str,
    *,
    timestamp: datetime,
    factor_kind: FactorKind | str,
    error: str,
) -> MfaAuditEvent:
    """Create an out-of-band delivery failure event."""
    return MfaAuditEvent(
        event_type=MfaEventType.OTP_DELIVERY_FAILED,
        user_id=user_id,
        timestamp=timestamp,
        factor_kind=_kind_value(factor_kind),
        success=False,
        outcome="delivery_failed",
        metadata={"code_id": code_id, "error": error},
    )


def backup_codes_generated_event(
    user_id: str,
    *,
    timestamp: datetime,
    count: int,
    revoked: int = 0,
) -> MfaAuditEvent:
    """Create a backup codes generated event."""
    return MfaAuditEvent(
        event_type=MfaEventType.BACKUP_CODES_GENERATED,
        user_id=user_id,
        timestamp=timestamp,
        factor_kind="backup",
        metadata={"count": count, "revoked": revoked},
    )


def factor_enrolled_event(
    user_id: str,
    factor_id: str,
    *,
    timestamp: datetime,
    factor_kind: FactorKind | str,
) -> MfaAuditEvent:
    """Create a factor enrolled event."""
    return MfaAuditEvent(
        event_type=MfaEventType.FACTOR_ENROLLED,
        user_id=user_id,
        timestamp=timestamp,
        factor_kind=_kind_value(factor_kind),
        metadata={"factor_id": factor_id},
    )


def factor_disabled_event(
    user_id: str,
    factor_id: str,
    *,
    timestamp: datetime,
    factor_kind: FactorKind | str,
) -> MfaAuditEvent:
    """Create a factor disabled event."""
    return MfaAuditEvent(
        event_type=MfaEventType.FACTOR_DISABLED,
        user_id=user_id,
        timestamp=timestamp,
        factor_kind=_kind_value(factor_kind),
        metadata={"factor_id": factor_id},
    )


__all__: list[str] = [
    "MfaEventType",
    "MfaAuditEvent",
    "challenge_opened_event",
    "challenge_completed_event",
    "challenge_expired_event",
    "session_locked_event",
    "verification_event",
    "otp_generated_event",
    "otp_delivery_failed_event",
    "backup_codes_generated_event",
    "factor_enrolled_event",
    "factor_disabled_event",
]
