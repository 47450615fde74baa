"""Verification orchestrator: the public MFA entry point.

Drives the challenge state machine::

    NO_SESSION -> CHALLENGE_OPEN -> MFA_VERIFIED | CHALLENGE_EXPIRED | CHALLENGE_LOCKED

A verification looks up the challenge, dispatches the proof to the
verifier registered for the factor kind, counts failures and, on success,
completes the challenge, all while holding the challenge's lock.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from .audit.events import verification_event
from .exceptions import (
    InvalidCredentialsError,
    MfaDeliveryError,
    MfaSetupError,
    NoFactorsEnrolledError,
    OtpCooldownError,
)
from .models import ChallengeState, FactorKind, VerificationOutcome, VerifierResult
from .observability import MfaMetrics, MfaTracing

if TYPE_CHECKING:
    from datetime import datetime

    from .backup_codes import BackupCodeService
    from .limiter import AttemptLimiter
    from .models import ChallengeSession
    from .otp import OneTimeCodeService
    from .ports import IFullSessionIssuer, IMfaAuditStore, IPrimaryCredentialVerifier
    from .registry import FactorRegistry
    from .session import ChallengeSessionManager
    from .totp import TotpVerifier

logger = logging.getLogger("cqrs_ddd.mfa")

Verifier = Callable[[str, str], Awaitable[VerifierResult]]


@dataclass(frozen=True)
class MfaConfig:
    """Orchestrator configuration.

    Attributes:
        challenge_ttl_seconds: Challenge session lifetime.
        max_failed_attempts: Failed verifications before a challenge locks.
        sweep_interval_seconds: Period of the background expiry sweep.
        audit_capacity: Ring-buffer size of the in-memory audit store.
    """

    challenge_ttl_seconds: int = 300  # 5 minutes
    max_failed_attempts: int = 5
    sweep_interval_seconds: int = 300
    audit_capacity: int = 1000


class FailureReason(str, Enum):
    """Reason shown to the end user. Detailed outcomes stay in the audit log."""

    INVALID = "invalid"
    NOT_FOUND = "not_found"
    TOO_MANY_ATTEMPTS = "too_many_attempts"


@dataclass(frozen=True)
class ChallengeInfo:
    """Returned when a challenge is opened."""

    challenge_id: str
    available_factors: list[FactorKind]
    expires_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "challenge_id": self.challenge_id,
            "available_factors": [kind.value for kind in self.available_factors],
            "expires_at": self.expires_at.isoformat(),
        }


@dataclass(frozen=True)
class CodeRequestResult:
    """Result of an out-of-band code request.

    Attributes:
        sent: Whether a code was handed to the delivery hook.
        retry_after: Seconds to wait when refused by the resend cooldown.
    """

    sent: bool
    retry_after: int | None = None


@dataclass(frozen=True)
class VerificationResponse:
    """User-facing result of :meth:`MfaOrchestrator.verify_factor`."""

    success: bool
    reason: FailureReason | None = None
    message: str | None = None
    user_id: str | None = None
    session_token: str | None = None
    attempts_remaining: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success}
        if self.reason is not None:
            data["reason"] = self.reason.value
        if self.message is not None:
            data["message"] = self.message
        if self.session_token is not None:
            data["session_token"] = self.session_token
        return data


@dataclass(frozen=True)
class SweepResult:
    """Number of records reclaimed by one expiry sweep."""

    challenges: int = 0
    codes: int = 0
    user_ids: list[str] = field(default_factory=list)


_LOG_IN_AGAIN = "Please log in again."


class MfaOrchestrator:
    """Public API of the MFA core.

    Example:
        ```python
        mfa = create_in_memory_orchestrator(delivery_hook=MyHook())

        info = await mfa.open_challenge("alice")
        response = await mfa.verify_factor(info.challenge_id, "totp", "123456")
        if response.success:
            ...
        ```
    """

    def __init__(
        self,
        *,
        registry: FactorRegistry,
        sessions: ChallengeSessionManager,
        limiter: AttemptLimiter,
        totp: TotpVerifier,
        otp: OneTimeCodeService,
        backup_codes: BackupCodeService,
        audit_store: IMfaAuditStore | None = None,
        credential_verifier: IPrimaryCredentialVerifier | None = None,
        session_issuer: IFullSessionIssuer | None = None,
        config: MfaConfig | None = None,
    ) -> None:
        self.registry = registry
        self.sessions = sessions
        self.limiter = limiter
        self.totp = totp
        self.otp = otp
        self.backup_codes = backup_codes
        self.audit_store = audit_store
        self.credential_verifier = credential_verifier
        self.session_issuer = session_issuer
        self.config = config or MfaConfig()

        self._verifiers: dict[FactorKind, Verifier] = {
            FactorKind.TOTP: self.totp.verify,
            FactorKind.SMS_OTP: self._verify_sms,
            FactorKind.EMAIL_OTP: self._verify_email,
            FactorKind.BACKUP: self.backup_codes.verify,
        }
        missing = [kind.value for kind in FactorKind if kind not in self._verifiers]
        if missing:
            raise MfaSetupError(f"No verifier registered for: {', '.join(missing)}")

        self.sessions.add_expiry_listener(self._release_attempts)

    async def _release_attempts(self, session: ChallengeSession) -> None:
        await self.limiter.reset(session.user_id, session.id)

    async def _verify_sms(self, user_id: str, proof: str) -> VerifierResult:
        return await self.otp.verify(user_id, FactorKind.SMS_OTP, proof)

    async def _verify_email(self, user_id: str, proof: str) -> VerifierResult:
        return await self.otp.verify(user_id, FactorKind.EMAIL_OTP, proof)

    @staticmethod
    def _parse_kind(kind: FactorKind | str) -> FactorKind | None:
        if isinstance(kind, FactorKind):
            return kind
        try:
            return FactorKind(kind)
        except ValueError:
            return None

    @classmethod
    def _kind_label(cls, kind: FactorKind | str) -> str:
        """Bounded label for metrics and spans. Unknown kinds share one value."""
        factor_kind = cls._parse_kind(kind)
        return factor_kind.value if factor_kind is not None else "unsupported"

    # ── Challenge lifecycle ──────────────────────────────────────

    async def open_challenge(self, user_id: str) -> ChallengeInfo:
        """Open a challenge for a user whose primary credential succeeded.

        The backup kind is only offered while the user has live codes.

        Raises:
            NoFactorsEnrolledError: If the user has nothing to verify with.
        """
        with MfaTracing.span("open_challenge"), MfaMetrics.operation("open_challenge"):
            kinds = await self.registry.available_kinds(user_id)
            if (
                FactorKind.BACKUP in kinds
                and await self.backup_codes.get_remaining_count(user_id) == 0
            ):
                kinds.remove(FactorKind.BACKUP)
            if not kinds:
                raise NoFactorsEnrolledError(user_id)

            session = await self.sessions.open(user_id, available_factors=kinds)
            MfaMetrics.record_challenge("opened")
            return ChallengeInfo(
                challenge_id=session.id,
                available_factors=kinds,
                expires_at=session.expires_at,
            )

    async def begin_login(self, user_id: str, secret: str) -> ChallengeInfo:
        """Check the primary credential, then open a challenge.

        Raises:
            MfaSetupError: If no credential verifier is configured.
            InvalidCredentialsError: If the primary credential is wrong.
            NoFactorsEnrolledError: If the user has nothing to verify with.
        """
        if self.credential_verifier is None:
            raise MfaSetupError("No primary credential verifier configured")
        if not await self.credential_verifier.verify_primary_credential(user_id, secret):
            logger.info("Primary credential rejected for user %s", user_id)
            raise InvalidCredentialsError("Invalid credentials")
        return await self.open_challenge(user_id)

    async def challenge_state(self, challenge_id: str) -> ChallengeState:
        """State-machine state of a challenge id."""
        return await self.sessions.state(challenge_id)

    # ── Out-of-band codes ────────────────────────────────────────

    async def request_out_of_band_code(
        self, challenge_id: str, kind: FactorKind | str
    ) -> CodeRequestResult:
        """Send an SMS or email code for an open challenge.

        Delivery happens after the challenge lock is released. Refusals and
        delivery failures come back as ``sent=False``.
        """
        factor_kind = self._parse_kind(kind)
        if factor_kind is None or not factor_kind.is_out_of_band:
            return CodeRequestResult(sent=False)

        with MfaTracing.span(
            "request_code", attributes={"mfa.kind": factor_kind.value}
        ), MfaMetrics.operation("request_code"):
            async with self.sessions.exclusive(challenge_id):
                session = await self.sessions.get(challenge_id)
                if session is None:
                    return CodeRequestResult(sent=False)
                factors = await self.registry.list_enabled(session.user_id, factor_kind)

            if not factors:
                return CodeRequestResult(sent=False)

            try:
                await self.otp.send(
                    session.user_id, factor_kind, factors[0].secret_or_channel
                )
            except OtpCooldownError as e:
                return CodeRequestResult(sent=False, retry_after=e.retry_after)
            except MfaDeliveryError:
                return CodeRequestResult(sent=False)
            return CodeRequestResult(sent=True)

    # ── Verification ─────────────────────────────────────────────

    async def verify_factor(
        self, challenge_id: str, kind: FactorKind | str, proof: str
    ) -> VerificationResponse:
        """Verify a second-factor proof against an open challenge.

        Returns:
            VerificationResponse. ``reason`` is ``not_found`` when the
            challenge is gone (completed, expired or locked),
            ``too_many_attempts`` when the challenge or the code hit its
            attempt cap, and ``invalid`` for every other failure.
        """
        with MfaTracing.span(
            "verify_factor", attributes={"mfa.kind": self._kind_label(kind)}
        ) as span, MfaMetrics.operation("verify_factor"):
            async with self.sessions.exclusive(challenge_id):
                response = await self._verify_locked(challenge_id, kind, proof)

            if response.reason is not None:
                MfaTracing.set_outcome(span, response.reason.value)
            else:
                MfaTracing.set_outcome(span, "success")
            if response.success and response.user_id and self.session_issuer is not None:
                token = await self.session_issuer.issue_full_session(response.user_id)
                response = VerificationResponse(
                    success=True, user_id=response.user_id, session_token=token
                )
            return response

    async def _verify_locked(
        self, challenge_id: str, kind: FactorKind | str, proof: str
    ) -> VerificationResponse:
        kind_value = self._kind_label(kind)

        session = await self.sessions.get(challenge_id)
        if session is None:
            await self._audit_attempt(
                None, challenge_id, kind_value, VerifierResult(VerificationOutcome.NOT_FOUND)
            )
            return VerificationResponse(
                success=False, reason=FailureReason.NOT_FOUND, message=_LOG_IN_AGAIN
            )

        user_id = session.user_id
        factor_kind = self._parse_kind(kind)
        if factor_kind is None:
            result = VerifierResult(VerificationOutcome.UNSUPPORTED_FACTOR)
        elif factor_kind not in await self.registry.available_kinds(user_id):
            result = VerifierResult(VerificationOutcome.NOT_ENROLLED)
        else:
            result = await self._verifiers[factor_kind](user_id, proof)

        await self._audit_attempt(user_id, challenge_id, kind_value, result)

        if result.success and factor_kind is not None:
            completed = await self.sessions.complete(challenge_id, factor_kind=factor_kind)
            await self.limiter.reset(user_id, challenge_id)
            if completed is None:
                return VerificationResponse(
                    success=False, reason=FailureReason.NOT_FOUND, message=_LOG_IN_AGAIN
                )
            MfaMetrics.record_challenge("verified")
            return VerificationResponse(success=True, user_id=user_id)

        status = await self.limiter.record_failure(user_id, challenge_id)
        if status.locked:
            await self.sessions.expire(challenge_id, ChallengeState.CHALLENGE_LOCKED)
            MfaMetrics.record_challenge("locked")
            return VerificationResponse(
                success=False,
                reason=FailureReason.TOO_MANY_ATTEMPTS,
                message=_LOG_IN_AGAIN,
                attempts_remaining=0,
            )

        if result.outcome is VerificationOutcome.TOO_MANY_ATTEMPTS:
            return VerificationResponse(
                success=False,
                reason=FailureReason.TOO_MANY_ATTEMPTS,
                message="Too many attempts for this code. Please request a new code.",
                attempts_remaining=status.remaining,
            )

        return VerificationResponse(
            success=False,
            reason=FailureReason.INVALID,
            message=f"Verification failed. {status.remaining} attempts remaining.",
            attempts_remaining=status.remaining,
        )

    async def _audit_attempt(
        self,
        user_id: str | None,
        challenge_id: str,
        kind_value: str,
        result: VerifierResult,
    ) -> None:
        MfaMetrics.record_verification(kind_value, result.outcome.value)
        if self.audit_store is None:
            return

        metadata: dict[str, Any] = {}
        if result.factor_id is not None:
            metadata["factor_id"] = result.factor_id
        if result.drift is not None:
            metadata["drift"] = result.drift
        await self.audit_store.record(
            verification_event(
                user_id,
                challenge_id,
                timestamp=self.sessions.clock.now(),
                factor_kind=kind_value,
                outcome=result.outcome,
                metadata=metadata,
            )
        )

    # ── Backup codes ─────────────────────────────────────────────

    async def generate_backup_codes(self, user_id: str) -> list[str]:
        """Generate a new backup code set. The codes are shown once."""
        return await self.backup_codes.generate(user_id)

    async def get_remaining_backup_code_count(self, user_id: str) -> int:
        return await self.backup_codes.get_remaining_count(user_id)

    # ── Maintenance ──────────────────────────────────────────────

    async def sweep_expired(self) -> SweepResult:
        """Reclaim expired challenges and codes.

        Only frees memory; expiry is already enforced on every read.
        """
        purged = await self.sessions.purge_expired()
        for _ in purged:
            MfaMetrics.record_challenge("expired")
        codes = await self.otp.purge_expired()
        return SweepResult(
            challenges=len(purged),
            codes=codes,
            user_ids=sorted({session.user_id for session in purged}),
        )


__all__: list[str] = [
    "MfaConfig",
    "FailureReason",
    "ChallengeInfo",
    "CodeRequestResult",
    "VerificationResponse",
    "SweepResult",
    "MfaOrchestrator",
]
