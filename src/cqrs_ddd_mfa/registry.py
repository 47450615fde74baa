"""Factor registry: per-user enrolled second factors.

Enrolment flows write here; verifiers read here. Revoked factors are
disabled rather than deleted so the audit trail stays continuous.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .audit.events import factor_disabled_event, factor_enrolled_event
from .clock import IClock, SystemClock
from .exceptions import FactorNotFoundError, MfaSetupError
from .models import EnrolledFactor, FactorKind
from .ports import IFactorStore

if TYPE_CHECKING:
    from .ports import IMfaAuditStore

logger = logging.getLogger("cqrs_ddd.mfa")


class FactorRegistry:
    """Service over an ``IFactorStore``.

    Example:
        ```python
        registry = FactorRegistry(InMemoryFactorStore())

        await registry.enroll("user-123", FactorKind.SMS_OTP, "+1234567890")
        kinds = await registry.available_kinds("user-123")
        ```
    """

    def __init__(
        self,
        store: IFactorStore,
        *,
        clock: IClock | None = None,
        audit_store: IMfaAuditStore | None = None,
    ) -> None:
        self.store = store
        self.clock = clock or SystemClock()
        self.audit_store = audit_store

    async def enroll(
        self,
        user_id: str,
        kind: FactorKind,
        secret_or_channel: str = "",
    ) -> EnrolledFactor:
        """Register a new enabled factor.

        Args:
            user_id: User identifier.
            kind: Factor kind.
            secret_or_channel: TOTP secret, phone number or email address.

        Raises:
            MfaSetupError: If a TOTP/OTP factor has no secret or channel, or
                a second backup factor is enrolled.
        """
        if kind is not FactorKind.BACKUP and not secret_or_channel:
            raise MfaSetupError(f"A {kind.value} factor requires a secret or channel")
        if kind is FactorKind.BACKUP and await self.list_enabled(user_id, FactorKind.BACKUP):
            raise MfaSetupError("Backup codes are already enrolled for this user")

        factor = EnrolledFactor(
            user_id=user_id,
            kind=kind,
            secret_or_channel=secret_or_channel,
            enrolled_at=self.clock.now(),
        )
        await self.store.add(factor)
        logger.info("Enrolled %s factor %s for user %s", kind.value, factor.id, user_id)

        if self.audit_store is not None:
            await self.audit_store.record(
                factor_enrolled_event(
                    user_id, factor.id, timestamp=factor.enrolled_at, factor_kind=kind
                )
            )
        return factor

    async def ensure_backup_factor(self, user_id: str) -> EnrolledFactor:
        """Return the user's enabled backup factor, enrolling it if missing."""
        existing = await self.list_enabled(user_id, FactorKind.BACKUP)
        if existing:
            return existing[0]
        return await self.enroll(user_id, FactorKind.BACKUP)

    async def get(self, factor_id: str) -> EnrolledFactor:
        """Get a factor by id.

        Raises:
            FactorNotFoundError: If no such factor exists.
        """
        factor = await self.store.get(factor_id)
        if factor is None:
            raise FactorNotFoundError(factor_id)
        return factor

    async def list_enabled(
        self, user_id: str, kind: FactorKind | None = None
    ) -> list[EnrolledFactor]:
        """List a user's enabled factors, optionally of a single kind."""
        return [
            factor
            for factor in await self.store.list_for_user(user_id)
            if factor.enabled and (kind is None or factor.kind is kind)
        ]

    async def has_enabled_factors(self, user_id: str) -> bool:
        return bool(await self.list_enabled(user_id))

    async def available_kinds(self, user_id: str) -> list[FactorKind]:
        """Distinct kinds of the user's enabled factors, in enum order."""
        enabled = {factor.kind for factor in await self.list_enabled(user_id)}
        return [kind for kind in FactorKind if kind in enabled]

    async def disable(self, factor_id: str) -> EnrolledFactor:
        """Revoke a factor. Disabling twice is a no-op.

        Raises:
            FactorNotFoundError: If no such factor exists.
        """
        factor = await self.get(factor_id)
        if not factor.enabled:
            return factor

        factor.enabled = False
        await self.store.save(factor)
        logger.info("Disabled %s factor %s", factor.kind.value, factor.id)

        if self.audit_store is not None:
            await self.audit_store.record(
                factor_disabled_event(
                    factor.user_id,
                    factor.id,
                    timestamp=self.clock.now(),
                    factor_kind=factor.kind,
                )
            )
        return factor

    async def record_use(self, factor_id: str) -> None:
        """Update last-used time and usage count after a successful check."""
        factor = await self.get(factor_id)
        factor.last_used_at = self.clock.now()
        factor.usage_count += 1
        await self.store.save(factor)


class InMemoryFactorStore(IFactorStore):
    """In-memory factor store for TESTING ONLY.

    ⚠️ WARNING: TOTP secrets are stored in plain text in memory.
    Do NOT use in production!
    """

    def __init__(self) -> None:
        self._factors: dict[str, EnrolledFactor] = {}
        self._by_user: dict[str, list[str]] = {}

    async def add(self, factor: EnrolledFactor) -> None:
        self._factors[factor.id] = factor
        self._by_user.setdefault(factor.user_id, []).append(factor.id)

    async def get(self, factor_id: str) -> EnrolledFactor | None:
        return self._factors.get(factor_id)

    async def list_for_user(self, user_id: str) -> list[EnrolledFactor]:
        return [self._factors[fid] for fid in self._by_user.get(user_id, [])]

    async def save(self, factor: EnrolledFactor) -> None:
        self._factors[factor.id] = factor


__all__: list[str] = ["FactorRegistry", "InMemoryFactorStore"]
