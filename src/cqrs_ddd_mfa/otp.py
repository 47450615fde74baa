"""Email/SMS one-time code service.

This service generates and verifies out-of-band codes, but the actual
sending via SMS or email is delegated to the application via
IMfaDeliveryHook.

Only the most recently created code of a kind is ever checked. Asking for
a new code does not delete the previous one: the older code simply stops
being reachable and is reclaimed by :meth:`OneTimeCodeService.purge_expired`.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from .audit.events import otp_delivery_failed_event, otp_generated_event
from .clock import IClock, SystemClock
from .exceptions import MfaDeliveryError, MfaSetupError, OtpCooldownError
from .locking import KeyedLock
from .models import FactorKind, OneTimeCode, VerificationOutcome, VerifierResult
from .ports import IOneTimeCodeStore, IOtpRateLimitStore

if TYPE_CHECKING:
    from .ports import IMfaAuditStore, IMfaDeliveryHook

logger = logging.getLogger("cqrs_ddd.mfa.otp")


@dataclass(frozen=True)
class OtpConfig:
    """OTP configuration.

    Attributes:
        code_length: Number of digits in OTP code.
        ttl_seconds: Time-to-live in seconds.
        max_attempts: Maximum verification attempts per code.
        cooldown_seconds: Minimum seconds between sends to one channel.
    """

    code_length: int = 6
    ttl_seconds: int = 300  # 5 minutes
    max_attempts: int = 3
    cooldown_seconds: int = 60  # 1 minute between resends


class OneTimeCodeService:
    """Out-of-band code service for both SMS and email factors.

    Example:
        ```python
        class MyHook(IMfaDeliveryHook):
            async def send_email_otp(self, email: str, code: str) -> None:
                await sendgrid.send(to=email, body=f"Your code is: {code}")

            async def send_sms_otp(self, phone: str, code: str) -> None:
                await twilio.messages.create(to=phone, body=f"Code: {code}")

        otp = OneTimeCodeService(InMemoryOneTimeCodeStore(), delivery_hook=MyHook())

        await otp.send("user-123", FactorKind.SMS_OTP, "+1234567890")
        result = await otp.verify("user-123", FactorKind.SMS_OTP, "123456")
        ```
    """

    def __init__(
        self,
        store: IOneTimeCodeStore,
        *,
        delivery_hook: IMfaDeliveryHook | None = None,
        config: OtpConfig | None = None,
        clock: IClock | None = None,
        rate_limit_store: IOtpRateLimitStore | None = None,
        audit_store: IMfaAuditStore | None = None,
    ) -> None:
        """Initialize the one-time code service.

        Args:
            store: Storage for issued codes.
            delivery_hook: Hook to send codes via email or SMS.
            config: OTP configuration.
            clock: Time source.
            rate_limit_store: Storage for resend cooldowns (in-memory if omitted).
            audit_store: Optional audit trail.
        """
        self.store = store
        self.delivery_hook = delivery_hook
        self.config = config or OtpConfig()
        self.clock = clock or SystemClock()
        self.rate_limit_store = rate_limit_store or InMemoryOtpRateLimitStore()
        self.audit_store = audit_store
        self._locks = KeyedLock()

    def _generate_code(self) -> str:
        """Generate a uniformly random numeric code."""
        code = secrets.randbelow(10**self.config.code_length)
        return str(code).zfill(self.config.code_length)

    @staticmethod
    def _check_kind(kind: FactorKind) -> None:
        if not kind.is_out_of_band:
            raise MfaSetupError(f"{kind.value} is not an out-of-band factor kind")

    async def create(self, user_id: str, kind: FactorKind, channel: str) -> OneTimeCode:
        """Generate and store a new code without delivering it.

        Raises:
            MfaSetupError: If ``kind`` is not SMS or email.
        """
        self._check_kind(kind)
        now = self.clock.now()
        code = OneTimeCode(
            user_id=user_id,
            kind=kind,
            code=self._generate_code(),
            channel=channel,
            created_at=now,
            expires_at=now + timedelta(seconds=self.config.ttl_seconds),
        )
        async with self._locks.hold(f"{user_id}:{kind.value}"):
            await self.store.add(code)

        logger.debug("Issued %s code %s for user %s", kind.value, code.id, user_id)
        if self.audit_store is not None:
            await self.audit_store.record(
                otp_generated_event(user_id, code.id, timestamp=now, factor_kind=kind)
            )
        return code

    async def cooldown_remaining(self, channel: str) -> int:
        """Seconds until a new code may be sent to ``channel`` (0 if allowed)."""
        last = await self.rate_limit_store.last_send(channel)
        if last is None:
            return 0
        elapsed = (self.clock.now() - last).total_seconds()
        if elapsed >= self.config.cooldown_seconds:
            return 0
        return max(1, int(self.config.cooldown_seconds - elapsed))

    async def send(self, user_id: str, kind: FactorKind, channel: str) -> OneTimeCode:
        """Generate, store and deliver a code.

        The code is stored before delivery is awaited, so it is verifiable
        as soon as the hook has handed it over.

        Returns:
            The issued code (useful for testing).

        Raises:
            OtpCooldownError: If a code was sent to ``channel`` too recently.
            MfaDeliveryError: If the delivery hook fails.
            MfaSetupError: If no delivery hook is configured.
        """
        if self.delivery_hook is None:
            raise MfaSetupError("No delivery hook configured for out-of-band codes")

        retry_after = await self.cooldown_remaining(channel)
        if retry_after:
            raise OtpCooldownError(retry_after)

        code = await self.create(user_id, kind, channel)
        await self.rate_limit_store.record_send(channel, code.created_at)

        try:
            if kind is FactorKind.EMAIL_OTP:
                await self.delivery_hook.send_email_otp(channel, code.code)
            else:
                await self.delivery_hook.send_sms_otp(channel, code.code)
        except Exception as err:
            logger.exception("Delivery of %s code %s failed", kind.value, code.id)
            if self.audit_store is not None:
                await self.audit_store.record(
                    otp_delivery_failed_event(
                        user_id,
                        code.id,
                        timestamp=self.clock.now(),
                        factor_kind=kind,
                        error=type(err).__name__,
                    )
                )
            raise MfaDeliveryError(f"Failed to deliver {kind.value} code") from err

        return code

    async def verify(self, user_id: str, kind: FactorKind, code: str) -> VerifierResult:
        """Verify a submitted code against the latest code of ``kind``.

        Returns:
            VerifierResult with outcome ``success``, ``invalid_code``,
            ``expired``, ``too_many_attempts`` or ``not_found``.
        """
        self._check_kind(kind)
        submitted = code.strip()

        async with self._locks.hold(f"{user_id}:{kind.value}"):
            latest = await self.store.latest(user_id, kind)
            if latest is None or latest.used:
                return VerifierResult(VerificationOutcome.NOT_FOUND)

            if latest.is_expired(self.clock.now()):
                latest.used = True
                await self.store.save(latest)
                return VerifierResult(VerificationOutcome.EXPIRED)

            latest.attempts += 1
            if latest.attempts > self.config.max_attempts:
                latest.used = True
                await self.store.save(latest)
                logger.warning(
                    "Attempt cap reached for %s code %s (user %s)",
                    kind.value,
                    latest.id,
                    user_id,
                )
                return VerifierResult(VerificationOutcome.TOO_MANY_ATTEMPTS)

            if not secrets.compare_digest(latest.code, submitted):
                await self.store.save(latest)
                return VerifierResult(VerificationOutcome.INVALID_CODE)

            latest.used = True
            await self.store.save(latest)
            return VerifierResult(VerificationOutcome.SUCCESS)

    async def purge_expired(self) -> int:
        """Delete codes that are past their expiry.

        Resend cooldown entries older than the cooldown window are dropped
        too.

        Returns:
            Number of deleted codes.
        """
        now = self.clock.now()
        await self.rate_limit_store.purge(
            now - timedelta(seconds=self.config.cooldown_seconds)
        )
        return await self.store.purge(now)


class InMemoryOneTimeCodeStore(IOneTimeCodeStore):
    """In-memory one-time code store for TESTING ONLY.

    ⚠️ WARNING: Codes are stored in plain text in memory.
    Do NOT use in production!
    """

    def __init__(self) -> None:
        self._codes: dict[tuple[str, FactorKind], list[OneTimeCode]] = {}

    async def add(self, code: OneTimeCode) -> None:
        self._codes.setdefault((code.user_id, code.kind), []).append(code)

    async def latest(self, user_id: str, kind: FactorKind) -> OneTimeCode | None:
        codes = self._codes.get((user_id, kind))
        return codes[-1] if codes else None

    async def save(self, code: OneTimeCode) -> None:
        codes = self._codes.get((code.user_id, code.kind), [])
        for index, existing in enumerate(codes):
            if existing.id == code.id:
                codes[index] = code
                return

    async def purge(self, before: datetime) -> int:
        removed = 0
        for key in list(self._codes):
            kept = [code for code in self._codes[key] if code.expires_at >= before]
            removed += len(self._codes[key]) - len(kept)
            if kept:
                self._codes[key] = kept
            else:
                del self._codes[key]
        return removed

    def count(self) -> int:
        return sum(len(codes) for codes in self._codes.values())


class InMemoryOtpRateLimitStore(IOtpRateLimitStore):
    """In-memory OTP rate limit store for TESTING ONLY.

    Use a shared store (e.g. Redis) in production for distributed systems.
    """

    def __init__(self) -> None:
        self._last_sent: dict[str, datetime] = {}

    async def record_send(self, identifier: str, sent_at: datetime) -> None:
        self._last_sent[identifier] = sent_at

    async def last_send(self, identifier: str) -> datetime | None:
        return self._last_sent.get(identifier)

    async def purge(self, before: datetime) -> int:
        stale = [key for key, sent_at in self._last_sent.items() if sent_at <= before]
        for key in stale:
            del self._last_sent[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._last_sent)


__all__: list[str] = [
    "OtpConfig",
    "OneTimeCodeService",
    "InMemoryOneTimeCodeStore",
    "InMemoryOtpRateLimitStore",
]
