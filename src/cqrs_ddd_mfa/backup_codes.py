"""Backup codes service for MFA.

Generates and validates single-use backup codes that users can use
when they lose access to their primary MFA device.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import string
from typing import TYPE_CHECKING

from .audit.events import MfaAuditEvent, MfaEventType, backup_codes_generated_event
from .clock import IClock, SystemClock
from .locking import KeyedLock
from .models import BackupCode, FactorKind, VerificationOutcome, VerifierResult
from .ports import IBackupCodeStore

if TYPE_CHECKING:
    from .ports import IMfaAuditStore
    from .registry import FactorRegistry

logger = logging.getLogger("cqrs_ddd.mfa")


def normalize_backup_code(code: str) -> str:
    """Canonical form of a backup code: upper case, no dashes or spaces."""
    return code.strip().upper().replace("-", "").replace(" ", "")


def hash_backup_code(code: str) -> str:
    """Hash a backup code using SHA-256.

    The code is normalized first, so ``abcd-efgh`` and ``ABCDEFGH`` hash
    to the same value.

    Args:
        code: The backup code to hash.

    Returns:
        SHA-256 hex digest of the canonical code.
    """
    return hashlib.sha256(normalize_backup_code(code).encode()).hexdigest()


class BackupCodeService:
    """Backup codes service for MFA recovery.

    Generates alphanumeric codes that are stored hashed. Each code is
    single-use, and only one generation of codes is live per user.

    Example:
        ```python
        backup = BackupCodeService(InMemoryBackupCodeStore(), registry)

        codes = await backup.generate("user-123")
        print(f"Save these codes: {codes}")

        # Later, when the user needs to recover
        result = await backup.verify("user-123", user_code)
        if result.success:
            ...
        ```
    """

    # Characters used in backup codes (exclude ambiguous: 0, O, 1, I)
    ALPHABET = string.ascii_uppercase.replace("O", "").replace(
        "I", ""
    ) + string.digits.replace("0", "").replace("1", "")

    def __init__(
        self,
        store: IBackupCodeStore,
        registry: FactorRegistry,
        *,
        clock: IClock | None = None,
        audit_store: IMfaAuditStore | None = None,
        code_length: int = 8,
        default_count: int = 10,
    ) -> None:
        """Initialize the backup codes service.

        Args:
            store: Hashed code storage.
            registry: Factor registry; generation enrolls the backup factor.
            clock: Time source.
            audit_store: Optional audit trail.
            code_length: Length of each backup code (default 8).
            default_count: Default number of codes to generate (default 10).
        """
        self.store = store
        self.registry = registry
        self.clock = clock or SystemClock()
        self.audit_store = audit_store
        self.code_length = code_length
        self.default_count = default_count
        self._locks = KeyedLock()

    def _generate_code(self) -> str:
        return "".join(secrets.choice(self.ALPHABET) for _ in range(self.code_length))

    def _format_code(self, code: str) -> str:
        """Format code with dashes for readability (e.g. "ABCD-EFGH")."""
        return "-".join(code[i : i + 4] for i in range(0, len(code), 4))

    async def generate(self, user_id: str, count: int | None = None) -> list[str]:
        """Generate a new generation of backup codes for a user.

        Every still-live code from a previous generation is revoked. The
        returned plaintext codes are shown to the user ONCE; only their
        hashes are stored.

        Args:
            user_id: User identifier.
            count: Number of codes to generate (defaults to ``default_count``).

        Returns:
            List of plaintext backup codes.

        Raises:
            ValueError: If ``count`` is not positive.
        """
        count = self.default_count if count is None else count
        if count <= 0:
            raise ValueError("count must be positive")
        await self.registry.ensure_backup_factor(user_id)

        async with self._locks.hold(user_id):
            revoked = await self._revoke_live(user_id)

            now = self.clock.now()
            plaintext: list[str] = []
            records: list[BackupCode] = []
            seen: set[str] = set()
            while len(plaintext) < count:
                raw = self._generate_code()
                if raw in seen:
                    continue
                seen.add(raw)
                plaintext.append(self._format_code(raw))
                records.append(
                    BackupCode(user_id=user_id, code_hash=hash_backup_code(raw), created_at=now)
                )
            await self.store.add_many(records)

        logger.info(
            "Generated %d backup codes for user %s (%d revoked)", count, user_id, revoked
        )
        if self.audit_store is not None:
            await self.audit_store.record(
                backup_codes_generated_event(
                    user_id, timestamp=now, count=count, revoked=revoked
                )
            )
        return plaintext

    async def _revoke_live(self, user_id: str) -> int:
        revoked = 0
        for code in await self.store.list_for_user(user_id):
            if code.is_live:
                code.revoked = True
                await self.store.save(code)
                revoked += 1
        return revoked

    async def verify(self, user_id: str, code: str) -> VerifierResult:
        """Consume a backup code if it is live.

        Returns:
            VerifierResult with outcome ``success``, ``invalid_code`` or
            ``not_enrolled``.
        """
        factors = await self.registry.list_enabled(user_id, FactorKind.BACKUP)
        if not factors:
            return VerifierResult(VerificationOutcome.NOT_ENROLLED)
        backup_factor = factors[0]

        code_hash = hash_backup_code(code)
        async with self._locks.hold(user_id):
            record = await self.store.find_live(user_id, code_hash)
            if record is None:
                return VerifierResult(VerificationOutcome.INVALID_CODE)

            record.used = True
            record.used_at = self.clock.now()
            await self.store.save(record)

        await self.registry.record_use(backup_factor.id)
        remaining = await self.get_remaining_count(user_id)
        if remaining <= 2:
            logger.warning("User %s has %d backup codes left", user_id, remaining)
        return VerifierResult(VerificationOutcome.SUCCESS, factor_id=backup_factor.id)

    async def consume(self, user_id: str, code: str) -> bool:
        """Consume a backup code (single-use).

        Returns:
            True if the code was valid and consumed.
        """
        return (await self.verify(user_id, code)).success

    async def revoke(self, user_id: str) -> int:
        """Revoke all live backup codes for a user.

        Returns:
            Number of revoked codes.
        """
        async with self._locks.hold(user_id):
            revoked = await self._revoke_live(user_id)

        if revoked and self.audit_store is not None:
            await self.audit_store.record(
                MfaAuditEvent(
                    event_type=MfaEventType.BACKUP_CODES_REVOKED,
                    user_id=user_id,
                    timestamp=self.clock.now(),
                    factor_kind="backup",
                    metadata={"count": revoked},
                )
            )
        return revoked

    async def get_remaining_count(self, user_id: str) -> int:
        """Number of live (unused, unrevoked) backup codes."""
        return sum(1 for code in await self.store.list_for_user(user_id) if code.is_live)


class InMemoryBackupCodeStore(IBackupCodeStore):
    """In-memory implementation of IBackupCodeStore for testing."""

    def __init__(self) -> None:
        self._codes: dict[str, list[BackupCode]] = {}

    async def add_many(self, codes: list[BackupCode]) -> None:
        for code in codes:
            self._codes.setdefault(code.user_id, []).append(code)

    async def list_for_user(self, user_id: str) -> list[BackupCode]:
        return list(self._codes.get(user_id, []))

    async def find_live(self, user_id: str, code_hash: str) -> BackupCode | None:
        for code in self._codes.get(user_id, []):
            if code.is_live and secrets.compare_digest(code.code_hash, code_hash):
                return code
        return None

    async def save(self, code: BackupCode) -> None:
        codes = self._codes.get(code.user_id, [])
        for index, existing in enumerate(codes):
            if existing.id == code.id:
                codes[index] = code
                return


__all__: list[str] = [
    "BackupCodeService",
    "InMemoryBackupCodeStore",
    "hash_backup_code",
    "normalize_backup_code",
]
