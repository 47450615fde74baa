"""MFA domain exceptions.

Expected verification failures (wrong code, expired code, replay) are
returned as values; the exceptions below are reserved for setup errors,
misuse, and infrastructure problems.
"""

from __future__ import annotations

# ═══════════════════════════════════════════════════════════════
# BASE ERROR
# ═══════════════════════════════════════════════════════════════


class MfaError(Exception):
    """Root exception for cqrs-ddd-mfa."""


# ═══════════════════════════════════════════════════════════════
# ENROLMENT / SETUP ERRORS
# ═══════════════════════════════════════════════════════════════


class MfaSetupError(MfaError):
    """Raised when MFA setup or configuration fails.

    Examples:
        - TOTP enrolment confirmed with a wrong code
        - A factor enrolled without a secret or delivery channel
    """


class FactorNotFoundError(MfaError):
    """Raised when an enrolled factor id does not exist."""

    def __init__(self, factor_id: str) -> None:
        self.factor_id = factor_id
        super().__init__(f"Enrolled factor with id={factor_id!r} not found")


class NoFactorsEnrolledError(MfaError):
    """Raised when a challenge is opened for a user without enabled factors.

    The caller should not have invoked MFA for this user at all.
    """

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"User {user_id!r} has no enabled MFA factors")


class InvalidCredentialsError(MfaError):
    """Raised when the primary credential check fails before a challenge."""


# ═══════════════════════════════════════════════════════════════
# OUT-OF-BAND CODE ERRORS
# ═══════════════════════════════════════════════════════════════


class OtpCooldownError(MfaSetupError):
    """Raised when a new code is requested before the resend cooldown ends.

    Attributes:
        retry_after: Seconds until a new code may be requested.
    """

    def __init__(self, retry_after: int) -> None:
        self.retry_after = retry_after
        super().__init__(
            f"Please wait {retry_after} seconds before requesting a new code"
        )


class MfaDeliveryError(MfaError):
    """Raised when the delivery hook fails to hand a code to its channel."""


# ═══════════════════════════════════════════════════════════════
# CONCURRENCY ERRORS
# ═══════════════════════════════════════════════════════════════


class LockAcquisitionError(MfaError):
    """Failed to acquire a per-key lock within the timeout."""

    def __init__(self, key: str, timeout: float) -> None:
        self.key = key
        self.timeout = timeout
        super().__init__(f"Failed to acquire lock on {key!r} within {timeout}s")


__all__: list[str] = [
    "MfaError",
    "MfaSetupError",
    "FactorNotFoundError",
    "NoFactorsEnrolledError",
    "InvalidCredentialsError",
    "OtpCooldownError",
    "MfaDeliveryError",
    "LockAcquisitionError",
]
