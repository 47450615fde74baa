"""TOTP (Time-based One-Time Password) verifier.

Works with any RFC 6238 authenticator app:
- Google Authenticator
- Microsoft Authenticator
- Authy
- 1Password
- FreeOTP

Uses pyotp for the HOTP/TOTP primitives (HMAC-SHA1, dynamic truncation,
6 digits, 30 second steps). On top of pyotp this module adds the drift
window bookkeeping and a per-user anti-replay cache.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

import pyotp
from pyotp.utils import strings_equal

from .clock import IClock, SystemClock
from .exceptions import MfaSetupError
from .models import FactorKind, VerificationOutcome, VerifierResult
from .ports import ITotpReplayCache

if TYPE_CHECKING:
    from .models import EnrolledFactor
    from .registry import FactorRegistry

logger = logging.getLogger("cqrs_ddd.mfa.totp")


@dataclass(frozen=True)
class TotpSetup:
    """TOTP setup data returned when starting enrolment.

    Attributes:
        secret: Base32-encoded TOTP secret.
        qr_uri: otpauth:// URI for QR code generation.
        manual_key: Human-readable key for manual entry.
    """

    secret: str
    qr_uri: str
    manual_key: str


class TotpVerifier:
    """TOTP verifier for authenticator apps.

    Accepts the current time step and ±``valid_window`` neighbours to absorb
    clock skew. A time step that has been consumed once for a user is never
    accepted again for that user, whichever challenge presents it.

    Example:
        ```python
        totp = TotpVerifier(registry=registry, issuer="MyApp")

        # Enrolment - show QR code, then confirm the first code
        setup = await totp.setup("user-123")
        await totp.enroll("user-123", setup.secret, code_from_app)

        # Login
        result = await totp.verify("user-123", "123456")
        if result.success:
            ...
        ```
    """

    def __init__(
        self,
        *,
        registry: FactorRegistry,
        replay_cache: ITotpReplayCache | None = None,
        clock: IClock | None = None,
        issuer: str = "MyApp",
        digits: int = 6,
        interval: int = 30,
        valid_window: int = 1,
    ) -> None:
        """Initialize the TOTP verifier.

        Args:
            registry: Factor registry holding TOTP secrets.
            replay_cache: Last-consumed step per user (in-memory if omitted).
            clock: Time source.
            issuer: Application name shown in authenticator app.
            digits: Number of digits in code (default 6).
            interval: Time step in seconds (default 30).
            valid_window: Accept codes ±N steps for clock drift (default 1).
        """
        self.registry = registry
        self.replay_cache = replay_cache or InMemoryTotpReplayCache()
        self.clock = clock or SystemClock()
        self.issuer = issuer
        self.digits = digits
        self.interval = interval
        self.valid_window = valid_window

    def _totp(self, secret: str) -> pyotp.TOTP:
        return pyotp.TOTP(secret, digits=self.digits, interval=self.interval)

    # ── Enrolment helpers ────────────────────────────────────────

    async def setup(self, user_id: str, account_name: str | None = None) -> TotpSetup:
        """Generate a TOTP secret for a user.

        Nothing is stored: the secret only becomes an enrolled factor once
        :meth:`enroll` confirms a first code from the app.

        Args:
            user_id: User identifier.
            account_name: Label shown in the authenticator app (defaults to
                the user id).

        Returns:
            TotpSetup with secret, provisioning URI and manual key.
        """
        secret = pyotp.random_base32()
        totp = pyotp.TOTP(
            secret,
            digits=self.digits,
            interval=self.interval,
            issuer=self.issuer,
        )
        qr_uri = totp.provisioning_uri(
            name=account_name or user_id,
            issuer_name=self.issuer,
        )
        return TotpSetup(
            secret=secret,
            qr_uri=qr_uri,
            manual_key=self._format_secret(secret),
        )

    def _format_secret(self, secret: str) -> str:
        """Format secret as groups of 4 characters for manual entry."""
        secret = secret.rstrip("=")
        return " ".join(secret[i : i + 4] for i in range(0, len(secret), 4))

    async def enroll(self, user_id: str, secret: str, code: str) -> EnrolledFactor:
        """Confirm a first code and register the TOTP factor.

        The confirming code's time step is consumed, so it cannot be
        replayed at the next login.

        Raises:
            MfaSetupError: If the confirmation code does not match.
        """
        matched = self.match(secret, self._normalize(code))
        if matched is None:
            raise MfaSetupError("Invalid TOTP code")

        counter, _ = matched
        factor = await self.registry.enroll(user_id, FactorKind.TOTP, secret)
        await self.replay_cache.consume(user_id, counter)
        return factor

    def generate_code(
        self,
        secret: str,
        for_time: datetime | None = None,
        counter_offset: int = 0,
    ) -> str:
        """Generate the code for a time step (testing and display)."""
        totp = self._totp(secret)
        counter = totp.timecode(for_time or self.clock.now())
        return totp.generate_otp(counter + counter_offset)

    def seconds_remaining(self, for_time: datetime | None = None) -> int:
        """Seconds until the current time step rolls over."""
        epoch = int((for_time or self.clock.now()).timestamp())
        return self.interval - (epoch % self.interval)

    # ── Verification ─────────────────────────────────────────────

    def _normalize(self, code: str) -> str:
        return code.replace(" ", "").strip()

    def match(
        self,
        secret: str,
        code: str,
        for_time: datetime | None = None,
    ) -> tuple[int, int] | None:
        """Stateless drift-window check.

        Every candidate step is compared in constant time; the loop does
        not stop at the first match.

        Returns:
            ``(counter, drift)`` of the matching step, or None.
        """
        if len(code) != self.digits or not code.isdigit():
            return None

        totp = self._totp(secret)
        current = totp.timecode(for_time or self.clock.now())
        matched: tuple[int, int] | None = None
        for offset in range(-self.valid_window, self.valid_window + 1):
            counter = current + offset
            if counter < 0:
                continue
            if strings_equal(totp.generate_otp(counter), code) and matched is None:
                matched = (counter, offset)
        return matched

    async def verify(self, user_id: str, code: str) -> VerifierResult:
        """Verify a TOTP code against the user's enabled TOTP factors.

        Returns:
            VerifierResult with outcome ``success``, ``invalid_code``,
            ``replayed_code`` or ``not_enrolled``.
        """
        factors = await self.registry.list_enabled(user_id, FactorKind.TOTP)
        if not factors:
            return VerifierResult(VerificationOutcome.NOT_ENROLLED)

        code = self._normalize(code)
        now = self.clock.now()
        for factor in factors:
            matched = self.match(factor.secret_or_channel, code, now)
            if matched is None:
                continue

            counter, drift = matched
            if not await self.replay_cache.consume(user_id, counter):
                logger.warning(
                    "Rejected replayed TOTP code for user %s (step %d)", user_id, counter
                )
                return VerifierResult(
                    VerificationOutcome.REPLAYED_CODE, factor_id=factor.id, drift=drift
                )

            if drift:
                logger.debug("TOTP for user %s matched with drift %+d", user_id, drift)
            await self.registry.record_use(factor.id)
            return VerifierResult(
                VerificationOutcome.SUCCESS, factor_id=factor.id, drift=drift
            )

        return VerifierResult(VerificationOutcome.INVALID_CODE)


class InMemoryTotpReplayCache(ITotpReplayCache):
    """In-memory replay cache keyed by user id.

    Only the last consumed step is kept per user: a step at or below it is
    treated as a replay.
    """

    def __init__(self) -> None:
        self._last: dict[str, int] = {}

    async def consume(self, user_id: str, counter: int) -> bool:
        last = self._last.get(user_id)
        if last is not None and counter <= last:
            return False
        self._last[user_id] = counter
        return True

    async def last_counter(self, user_id: str) -> int | None:
        return self._last.get(user_id)


__all__: list[str] = [
    "TotpSetup",
    "TotpVerifier",
    "InMemoryTotpReplayCache",
]
