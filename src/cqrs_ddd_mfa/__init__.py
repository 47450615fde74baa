"""CQRS-DDD MFA Package

Second-factor verification: "Prove it again."

After a primary credential succeeds, brokers a second proof of identity
through a TOTP authenticator app, an SMS/email one-time code, or a
single-use backup code, bound to a short-lived challenge session.

Usage:
    ```python
    from cqrs_ddd_mfa import FactorKind, create_in_memory_orchestrator

    mfa = create_in_memory_orchestrator(delivery_hook=MyHook())
    codes = await mfa.generate_backup_codes("alice")

    info = await mfa.open_challenge("alice")
    response = await mfa.verify_factor(info.challenge_id, FactorKind.BACKUP, codes[0])
    if response.success:
        ...
    ```

Submodules:
    - `audit`: MFA audit events and the in-memory ring-buffer store
    - `observability`: optional Prometheus metrics and OpenTelemetry tracing
"""

from __future__ import annotations

# Audit
from .audit import InMemoryMfaAuditStore, MfaAuditEvent, MfaEventType

# Services
from .backup_codes import BackupCodeService, InMemoryBackupCodeStore, hash_backup_code
from .clock import FrozenClock, IClock, SystemClock

# Exceptions
from .exceptions import (
    FactorNotFoundError,
    InvalidCredentialsError,
    LockAcquisitionError,
    MfaDeliveryError,
    MfaError,
    MfaSetupError,
    NoFactorsEnrolledError,
    OtpCooldownError,
)
from .factory import create_in_memory_orchestrator
from .limiter import AttemptLimiter, AttemptStatus, InMemoryAttemptCounterStore
from .locking import KeyedLock

# Models
from .models import (
    BackupCode,
    ChallengeSession,
    ChallengeState,
    EnrolledFactor,
    FactorKind,
    OneTimeCode,
    VerificationOutcome,
    VerifierResult,
)

# Orchestrator
from .orchestrator import (
    ChallengeInfo,
    CodeRequestResult,
    FailureReason,
    MfaConfig,
    MfaOrchestrator,
    SweepResult,
    VerificationResponse,
)
from .otp import (
    InMemoryOneTimeCodeStore,
    InMemoryOtpRateLimitStore,
    OneTimeCodeService,
    OtpConfig,
)

# Ports
from .ports import (
    IAttemptCounterStore,
    IBackupCodeStore,
    IChallengeSessionStore,
    IFactorStore,
    IFullSessionIssuer,
    IMfaAuditStore,
    IMfaDeliveryHook,
    IOneTimeCodeStore,
    IOtpRateLimitStore,
    IPrimaryCredentialVerifier,
    ITotpReplayCache,
)
from .registry import FactorRegistry, InMemoryFactorStore
from .session import ChallengeSessionManager, InMemoryChallengeSessionStore
from .sweeper import ExpirySweeper
from .totp import InMemoryTotpReplayCache, TotpSetup, TotpVerifier

__version__ = "0.1.0"

__all__: list[str] = [
    # Clock
    "IClock",
    "SystemClock",
    "FrozenClock",
    # Models
    "FactorKind",
    "VerificationOutcome",
    "ChallengeState",
    "EnrolledFactor",
    "OneTimeCode",
    "BackupCode",
    "ChallengeSession",
    "VerifierResult",
    # Exceptions
    "MfaError",
    "MfaSetupError",
    "FactorNotFoundError",
    "NoFactorsEnrolledError",
    "InvalidCredentialsError",
    "OtpCooldownError",
    "MfaDeliveryError",
    "LockAcquisitionError",
    # Ports
    "IFactorStore",
    "IOneTimeCodeStore",
    "IOtpRateLimitStore",
    "IBackupCodeStore",
    "ITotpReplayCache",
    "IChallengeSessionStore",
    "IAttemptCounterStore",
    "IMfaAuditStore",
    "IMfaDeliveryHook",
    "IPrimaryCredentialVerifier",
    "IFullSessionIssuer",
    # Services
    "KeyedLock",
    "FactorRegistry",
    "InMemoryFactorStore",
    "TotpSetup",
    "TotpVerifier",
    "InMemoryTotpReplayCache",
    "OtpConfig",
    "OneTimeCodeService",
    "InMemoryOneTimeCodeStore",
    "InMemoryOtpRateLimitStore",
    "BackupCodeService",
    "InMemoryBackupCodeStore",
    "hash_backup_code",
    "ChallengeSessionManager",
    "InMemoryChallengeSessionStore",
    "AttemptStatus",
    "AttemptLimiter",
    "InMemoryAttemptCounterStore",
    # Audit
    "MfaEventType",
    "MfaAuditEvent",
    "InMemoryMfaAuditStore",
    # Orchestrator
    "MfaConfig",
    "FailureReason",
    "ChallengeInfo",
    "CodeRequestResult",
    "VerificationResponse",
    "SweepResult",
    "MfaOrchestrator",
    "create_in_memory_orchestrator",
    "ExpirySweeper",
]
