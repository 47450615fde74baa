"""MFA records and value types.

Records are plain dataclasses owned by their services: the session manager
owns ``ChallengeSession``, the OTP service owns ``OneTimeCode`` and the
backup code service owns ``BackupCode``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import uuid4


def new_id() -> str:
    """Return a random identifier for a stored record."""
    return str(uuid4())


class FactorKind(str, Enum):
    """Closed set of second-factor kinds."""

    TOTP = "totp"
    SMS_OTP = "sms_otp"
    EMAIL_OTP = "email_otp"
    BACKUP = "backup"

    @property
    def is_out_of_band(self) -> bool:
        """Whether codes for this kind are delivered over SMS or email."""
        return self in (FactorKind.SMS_OTP, FactorKind.EMAIL_OTP)


class VerificationOutcome(str, Enum):
    """Detailed result of a single verifier call.

    These values are recorded in the audit log. Callers facing end users
    should map them to ``FailureReason`` instead of exposing them.
    """

    SUCCESS = "success"
    INVALID_CODE = "invalid_code"
    REPLAYED_CODE = "replayed_code"
    EXPIRED = "expired"
    TOO_MANY_ATTEMPTS = "too_many_attempts"
    NOT_FOUND = "not_found"
    NOT_ENROLLED = "not_enrolled"
    UNSUPPORTED_FACTOR = "unsupported_factor"


class ChallengeState(str, Enum):
    """States of the challenge-session state machine."""

    NO_SESSION = "no_session"
    CHALLENGE_OPEN = "challenge_open"
    MFA_VERIFIED = "mfa_verified"
    CHALLENGE_EXPIRED = "challenge_expired"
    CHALLENGE_LOCKED = "challenge_locked"

    @property
    def is_terminal(self) -> bool:
        return self not in (ChallengeState.NO_SESSION, ChallengeState.CHALLENGE_OPEN)


@dataclass
class EnrolledFactor:
    """A second factor enrolled for a user.

    Attributes:
        id: Factor identifier.
        user_id: Owning user.
        kind: Factor kind.
        secret_or_channel: Base32 TOTP secret, phone number or email address.
            Empty for the backup-code factor.
        enrolled_at: Enrolment time.
        enabled: False once revoked. Factors are never hard-deleted.
        last_used_at: Time of the last successful verification.
        usage_count: Number of successful verifications.
    """

    user_id: str
    kind: FactorKind
    secret_or_channel: str
    enrolled_at: datetime
    id: str = field(default_factory=new_id)
    enabled: bool = True
    last_used_at: datetime | None = None
    usage_count: int = 0


@dataclass
class OneTimeCode:
    """An out-of-band code sent over SMS or email."""

    user_id: str
    kind: FactorKind
    code: str
    channel: str
    created_at: datetime
    expires_at: datetime
    id: str = field(default_factory=new_id)
    attempts: int = 0
    used: bool = False

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass
class BackupCode:
    """A single backup recovery code. Only the hash is kept."""

    user_id: str
    code_hash: str
    created_at: datetime
    id: str = field(default_factory=new_id)
    used: bool = False
    revoked: bool = False
    used_at: datetime | None = None

    @property
    def is_live(self) -> bool:
        return not self.used and not self.revoked


@dataclass
class ChallengeSession:
    """Intermediate session between primary credential and second factor."""

    id: str
    user_id: str
    created_at: datetime
    expires_at: datetime
    password_verified: bool = True
    mfa_verified: bool = False

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass(frozen=True)
class VerifierResult:
    """Typed result returned by every verifier.

    Attributes:
        outcome: Detailed outcome.
        factor_id: Enrolled factor that matched, when known.
        drift: TOTP time-step offset that matched (-1, 0 or +1).
    """

    outcome: VerificationOutcome
    factor_id: str | None = None
    drift: int | None = None

    @property
    def success(self) -> bool:
        return self.outcome is VerificationOutcome.SUCCESS


__all__: list[str] = [
    "new_id",
    "FactorKind",
    "VerificationOutcome",
    "ChallengeState",
    "EnrolledFactor",
    "OneTimeCode",
    "BackupCode",
    "ChallengeSession",
    "VerifierResult",
]
