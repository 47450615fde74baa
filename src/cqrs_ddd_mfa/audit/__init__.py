"""Audit module for MFA events.

This module provides audit event types, factory functions, and an
in-memory store for tracking MFA activity.
"""

from __future__ import annotations

from .events import (
    MfaAuditEvent,
    MfaEventType,
    backup_codes_generated_event,
    challenge_completed_event,
    challenge_expired_event,
    challenge_opened_event,
    factor_disabled_event,
    factor_enrolled_event,
    otp_delivery_failed_event,
    otp_generated_event,
    session_locked_event,
    verification_event,
)
from .memory import InMemoryMfaAuditStore

__all__: list[str] = [
    # Event types and classes
    "MfaEventType",
    "MfaAuditEvent",
    # Event factory functions
    "challenge_opened_event",
    "challenge_completed_event",
    "challenge_expired_event",
    "session_locked_event",
    "verification_event",
    "otp_generated_event",
    "otp_delivery_failed_event",
    "backup_codes_generated_event",
    "factor_enrolled_event",
    "factor_disabled_event",
    # Store implementations
    "InMemoryMfaAuditStore",
]
