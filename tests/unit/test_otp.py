"""Tests for the out-of-band one-time code service."""

from __future__ import annotations

from datetime import timedelta

import pytest

from cqrs_ddd_mfa.audit.events import MfaEventType
from cqrs_ddd_mfa.audit.memory import InMemoryMfaAuditStore
from cqrs_ddd_mfa.clock import FrozenClock
from cqrs_ddd_mfa.exceptions import MfaDeliveryError, MfaSetupError, OtpCooldownError
from cqrs_ddd_mfa.models import FactorKind, VerificationOutcome
from cqrs_ddd_mfa.otp import (
    InMemoryOneTimeCodeStore,
    InMemoryOtpRateLimitStore,
    OneTimeCodeService,
    OtpConfig,
)

PHONE = "+1234567890"
EMAIL = "alice@example.com"


@pytest.fixture
def store() -> InMemoryOneTimeCodeStore:
    return InMemoryOneTimeCodeStore()


@pytest.fixture
def otp(
    store: InMemoryOneTimeCodeStore,
    clock: FrozenClock,
    delivery_hook,
    audit_store: InMemoryMfaAuditStore,
) -> OneTimeCodeService:
    return OneTimeCodeService(
        store,
        delivery_hook=delivery_hook,
        clock=clock,
        audit_store=audit_store,
    )


def _wrong(code: str) -> str:
    return "000000" if code != "000000" else "111111"


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_code(self, otp: OneTimeCodeService, clock: FrozenClock) -> None:
        code = await otp.create("alice", FactorKind.SMS_OTP, PHONE)

        assert len(code.code) == 6
        assert code.code.isdigit()
        assert code.attempts == 0
        assert not code.used
        assert code.expires_at == clock.now() + timedelta(minutes=5)

    @pytest.mark.asyncio
    async def test_create_rejects_non_out_of_band_kind(self, otp: OneTimeCodeService) -> None:
        with pytest.raises(MfaSetupError):
            await otp.create("alice", FactorKind.TOTP, PHONE)

    @pytest.mark.asyncio
    async def test_create_is_audited_without_code(
        self, otp: OneTimeCodeService, audit_store: InMemoryMfaAuditStore
    ) -> None:
        code = await otp.create("alice", FactorKind.EMAIL_OTP, EMAIL)

        events = await audit_store.get_events_by_type(MfaEventType.OTP_GENERATED)
        assert len(events) == 1
        assert code.code not in events[0].metadata.values()

    @pytest.mark.asyncio
    async def test_custom_code_length(self, store: InMemoryOneTimeCodeStore) -> None:
        service = OneTimeCodeService(store, config=OtpConfig(code_length=8))
        code = await service.create("alice", FactorKind.SMS_OTP, PHONE)
        assert len(code.code) == 8


class TestSend:
    @pytest.mark.asyncio
    async def test_send_sms(self, otp: OneTimeCodeService, delivery_hook) -> None:
        code = await otp.send("alice", FactorKind.SMS_OTP, PHONE)

        assert delivery_hook.sms_sent == [(PHONE, code.code)]
        assert delivery_hook.emails_sent == []

    @pytest.mark.asyncio
    async def test_send_email(self, otp: OneTimeCodeService, delivery_hook) -> None:
        code = await otp.send("alice", FactorKind.EMAIL_OTP, EMAIL)

        assert delivery_hook.emails_sent == [(EMAIL, code.code)]

    @pytest.mark.asyncio
    async def test_resend_within_cooldown_raises(
        self, otp: OneTimeCodeService, clock: FrozenClock
    ) -> None:
        await otp.send("alice", FactorKind.SMS_OTP, PHONE)
        clock.advance(seconds=15)

        with pytest.raises(OtpCooldownError) as exc_info:
            await otp.send("alice", FactorKind.SMS_OTP, PHONE)
        assert exc_info.value.retry_after == 45
        assert "45 seconds" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_resend_after_cooldown(
        self, otp: OneTimeCodeService, clock: FrozenClock, delivery_hook
    ) -> None:
        await otp.send("alice", FactorKind.SMS_OTP, PHONE)
        clock.advance(seconds=60)

        await otp.send("alice", FactorKind.SMS_OTP, PHONE)
        assert len(delivery_hook.sms_sent) == 2

    @pytest.mark.asyncio
    async def test_cooldown_is_per_channel(self, otp: OneTimeCodeService) -> None:
        await otp.send("alice", FactorKind.SMS_OTP, PHONE)
        await otp.send("alice", FactorKind.EMAIL_OTP, EMAIL)
        assert await otp.cooldown_remaining(PHONE) == 60
        assert await otp.cooldown_remaining("+19999999999") == 0

    @pytest.mark.asyncio
    async def test_delivery_failure(
        self,
        otp: OneTimeCodeService,
        store: InMemoryOneTimeCodeStore,
        delivery_hook,
        audit_store: InMemoryMfaAuditStore,
    ) -> None:
        delivery_hook.fail_with = ConnectionError("gateway down")

        with pytest.raises(MfaDeliveryError):
            await otp.send("alice", FactorKind.SMS_OTP, PHONE)

        assert await store.latest("alice", FactorKind.SMS_OTP) is not None
        assert audit_store.count_by_type(MfaEventType.OTP_DELIVERY_FAILED) == 1

    @pytest.mark.asyncio
    async def test_send_without_hook_raises(self, store: InMemoryOneTimeCodeStore) -> None:
        service = OneTimeCodeService(store)
        with pytest.raises(MfaSetupError, match="No delivery hook"):
            await service.send("alice", FactorKind.SMS_OTP, PHONE)


class TestVerify:
    @pytest.mark.asyncio
    async def test_correct_code(self, otp: OneTimeCodeService) -> None:
        code = await otp.create("alice", FactorKind.SMS_OTP, PHONE)

        result = await otp.verify("alice", FactorKind.SMS_OTP, code.code)
        assert result.success

    @pytest.mark.asyncio
    async def test_code_is_single_use(self, otp: OneTimeCodeService) -> None:
        code = await otp.create("alice", FactorKind.SMS_OTP, PHONE)
        await otp.verify("alice", FactorKind.SMS_OTP, code.code)

        result = await otp.verify("alice", FactorKind.SMS_OTP, code.code)
        assert result.outcome is VerificationOutcome.NOT_FOUND

    @pytest.mark.asyncio
    async def test_no_code(self, otp: OneTimeCodeService) -> None:
        result = await otp.verify("alice", FactorKind.SMS_OTP, "123456")
        assert result.outcome is VerificationOutcome.NOT_FOUND

    @pytest.mark.asyncio
    async def test_kinds_are_separate(self, otp: OneTimeCodeService) -> None:
        code = await otp.create("alice", FactorKind.SMS_OTP, PHONE)

        result = await otp.verify("alice", FactorKind.EMAIL_OTP, code.code)
        assert result.outcome is VerificationOutcome.NOT_FOUND

    @pytest.mark.asyncio
    async def test_wrong_code_keeps_code_live(self, otp: OneTimeCodeService) -> None:
        code = await otp.create("alice", FactorKind.SMS_OTP, PHONE)

        wrong = await otp.verify("alice", FactorKind.SMS_OTP, _wrong(code.code))
        right = await otp.verify("alice", FactorKind.SMS_OTP, code.code)

        assert wrong.outcome is VerificationOutcome.INVALID_CODE
        assert right.success

    @pytest.mark.asyncio
    async def test_attempt_cap_on_fourth_guess(
        self, otp: OneTimeCodeService, store: InMemoryOneTimeCodeStore
    ) -> None:
        code = await otp.create("alice", FactorKind.SMS_OTP, PHONE)
        wrong = _wrong(code.code)

        outcomes = [
            (await otp.verify("alice", FactorKind.SMS_OTP, wrong)).outcome for _ in range(4)
        ]

        assert outcomes == [
            VerificationOutcome.INVALID_CODE,
            VerificationOutcome.INVALID_CODE,
            VerificationOutcome.INVALID_CODE,
            VerificationOutcome.TOO_MANY_ATTEMPTS,
        ]
        stored = await store.latest("alice", FactorKind.SMS_OTP)
        assert stored is not None and stored.used

        after = await otp.verify("alice", FactorKind.SMS_OTP, code.code)
        assert after.outcome is VerificationOutcome.NOT_FOUND

    @pytest.mark.asyncio
    async def test_expired_code(self, otp: OneTimeCodeService, clock: FrozenClock) -> None:
        code = await otp.create("alice", FactorKind.SMS_OTP, PHONE)
        clock.advance(seconds=301)

        expired = await otp.verify("alice", FactorKind.SMS_OTP, code.code)
        after = await otp.verify("alice", FactorKind.SMS_OTP, code.code)

        assert expired.outcome is VerificationOutcome.EXPIRED
        assert after.outcome is VerificationOutcome.NOT_FOUND

    @pytest.mark.asyncio
    async def test_valid_at_exact_expiry(
        self, otp: OneTimeCodeService, clock: FrozenClock
    ) -> None:
        code = await otp.create("alice", FactorKind.SMS_OTP, PHONE)
        clock.advance(seconds=300)

        assert (await otp.verify("alice", FactorKind.SMS_OTP, code.code)).success

    @pytest.mark.asyncio
    async def test_only_latest_code_is_valid(self, otp: OneTimeCodeService) -> None:
        first = await otp.create("alice", FactorKind.SMS_OTP, PHONE)
        second = await otp.create("alice", FactorKind.SMS_OTP, PHONE)
        first.code, second.code = "111111", "222222"

        old = await otp.verify("alice", FactorKind.SMS_OTP, "111111")
        new = await otp.verify("alice", FactorKind.SMS_OTP, "222222")

        assert old.outcome is VerificationOutcome.INVALID_CODE
        assert new.success

    @pytest.mark.asyncio
    async def test_surrounding_whitespace_ignored(self, otp: OneTimeCodeService) -> None:
        code = await otp.create("alice", FactorKind.SMS_OTP, PHONE)

        assert (await otp.verify("alice", FactorKind.SMS_OTP, f" {code.code}\n")).success


class TestPurge:
    @pytest.mark.asyncio
    async def test_purge_expired(
        self,
        otp: OneTimeCodeService,
        store: InMemoryOneTimeCodeStore,
        clock: FrozenClock,
    ) -> None:
        await otp.create("alice", FactorKind.SMS_OTP, PHONE)
        await otp.create("bob", FactorKind.EMAIL_OTP, EMAIL)
        clock.advance(seconds=200)
        await otp.create("carol", FactorKind.SMS_OTP, PHONE)
        clock.advance(seconds=101)

        assert await otp.purge_expired() == 2
        assert store.count() == 1
        assert await store.latest("carol", FactorKind.SMS_OTP) is not None


class TestPurgeCooldowns:
    @pytest.mark.asyncio
    async def test_purge_drops_finished_cooldowns(
        self, store: InMemoryOneTimeCodeStore, clock: FrozenClock, delivery_hook
    ) -> None:
        rate_limits = InMemoryOtpRateLimitStore()
        service = OneTimeCodeService(
            store, delivery_hook=delivery_hook, clock=clock, rate_limit_store=rate_limits
        )
        await service.send("alice", FactorKind.SMS_OTP, PHONE)
        clock.advance(seconds=30)
        await service.send("bob", FactorKind.EMAIL_OTP, EMAIL)
        clock.advance(seconds=30)

        await service.purge_expired()

        assert len(rate_limits) == 1
        assert await rate_limits.last_send(PHONE) is None
        assert await service.cooldown_remaining(EMAIL) == 30


class TestInMemoryOtpRateLimitStore:
    @pytest.mark.asyncio
    async def test_record_and_read(self, clock: FrozenClock) -> None:
        rate_limits = InMemoryOtpRateLimitStore()

        assert await rate_limits.last_send(PHONE) is None
        await rate_limits.record_send(PHONE, clock.now())
        assert await rate_limits.last_send(PHONE) == clock.now()
