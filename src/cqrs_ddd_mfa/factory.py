"""Factory functions for MFA setup.

Wires a complete orchestrator over in-memory stores, for development,
tests and single-process deployments.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .audit.memory import InMemoryMfaAuditStore
from .backup_codes import BackupCodeService, InMemoryBackupCodeStore
from .clock import SystemClock
from .limiter import AttemptLimiter, InMemoryAttemptCounterStore
from .orchestrator import MfaConfig, MfaOrchestrator
from .otp import InMemoryOneTimeCodeStore, OneTimeCodeService
from .registry import FactorRegistry, InMemoryFactorStore
from .session import ChallengeSessionManager, InMemoryChallengeSessionStore
from .totp import InMemoryTotpReplayCache, TotpVerifier

if TYPE_CHECKING:
    from .clock import IClock
    from .otp import OtpConfig
    from .ports import IFullSessionIssuer, IMfaDeliveryHook, IPrimaryCredentialVerifier


def create_in_memory_orchestrator(
    config: MfaConfig | None = None,
    *,
    clock: IClock | None = None,
    delivery_hook: IMfaDeliveryHook | None = None,
    credential_verifier: IPrimaryCredentialVerifier | None = None,
    session_issuer: IFullSessionIssuer | None = None,
    otp_config: OtpConfig | None = None,
    totp_issuer: str = "MyApp",
) -> MfaOrchestrator:
    """Create an orchestrator backed entirely by in-memory stores.

    Every component shares one clock and one audit store, reachable as
    ``orchestrator.sessions.clock`` and ``orchestrator.audit_store``.

    Example:
        ```python
        mfa = create_in_memory_orchestrator(
            MfaConfig(max_failed_attempts=3),
            delivery_hook=MyHook(),
        )
        await mfa.registry.enroll("alice", FactorKind.SMS_OTP, "+1234567890")
        info = await mfa.open_challenge("alice")
        ```
    """
    config = config or MfaConfig()
    clock = clock or SystemClock()
    audit_store = InMemoryMfaAuditStore(capacity=config.audit_capacity, clock=clock)

    registry = FactorRegistry(InMemoryFactorStore(), clock=clock, audit_store=audit_store)
    return MfaOrchestrator(
        registry=registry,
        sessions=ChallengeSessionManager(
            InMemoryChallengeSessionStore(),
            registry,
            clock=clock,
            ttl_seconds=config.challenge_ttl_seconds,
            audit_store=audit_store,
        ),
        limiter=AttemptLimiter(
            InMemoryAttemptCounterStore(),
            max_failures=config.max_failed_attempts,
            clock=clock,
            audit_store=audit_store,
        ),
        totp=TotpVerifier(
            registry=registry,
            replay_cache=InMemoryTotpReplayCache(),
            clock=clock,
            issuer=totp_issuer,
        ),
        otp=OneTimeCodeService(
            InMemoryOneTimeCodeStore(),
            delivery_hook=delivery_hook,
            config=otp_config,
            clock=clock,
            audit_store=audit_store,
        ),
        backup_codes=BackupCodeService(
            InMemoryBackupCodeStore(),
            registry,
            clock=clock,
            audit_store=audit_store,
        ),
        audit_store=audit_store,
        credential_verifier=credential_verifier,
        session_issuer=session_issuer,
        config=config,
    )


__all__: list[str] = ["create_in_memory_orchestrator"]
