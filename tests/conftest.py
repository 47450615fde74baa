"""Test configuration and fixtures."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from cqrs_ddd_mfa import (
    FactorRegistry,
    FrozenClock,
    InMemoryFactorStore,
    InMemoryMfaAuditStore,
    MfaOrchestrator,
    create_in_memory_orchestrator,
)

# Aligned to a 30 second TOTP step boundary.
START = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests that require external services",
    )


class MockDeliveryHook:
    """Mock delivery hook for testing."""

    def __init__(self) -> None:
        self.emails_sent: list[tuple[str, str]] = []
        self.sms_sent: list[tuple[str, str]] = []
        self.fail_with: Exception | None = None

    async def send_email_otp(self, email: str, code: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.emails_sent.append((email, code))

    async def send_sms_otp(self, phone: str, code: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sms_sent.append((phone, code))


class StubCredentialVerifier:
    """Accepts a single password for every user."""

    def __init__(self, password: str = "correct horse") -> None:
        self.password = password

    async def verify_primary_credential(self, user_id: str, secret: str) -> bool:
        return secret == self.password


class StubSessionIssuer:
    """Issues predictable session tokens."""

    def __init__(self) -> None:
        self.issued: list[str] = []

    async def issue_full_session(self, user_id: str) -> str:
        self.issued.append(user_id)
        return f"session-for-{user_id}"


@pytest.fixture
def clock() -> FrozenClock:
    """Create a frozen clock at a fixed UTC time."""
    return FrozenClock(START)


@pytest.fixture
def delivery_hook() -> MockDeliveryHook:
    return MockDeliveryHook()


@pytest.fixture
def audit_store(clock: FrozenClock) -> InMemoryMfaAuditStore:
    return InMemoryMfaAuditStore(clock=clock)


@pytest.fixture
def registry(clock: FrozenClock, audit_store: InMemoryMfaAuditStore) -> FactorRegistry:
    return FactorRegistry(InMemoryFactorStore(), clock=clock, audit_store=audit_store)


@pytest.fixture
def session_issuer() -> StubSessionIssuer:
    return StubSessionIssuer()


@pytest.fixture
def orchestrator(
    clock: FrozenClock,
    delivery_hook: MockDeliveryHook,
    session_issuer: StubSessionIssuer,
) -> MfaOrchestrator:
    """Create a fully wired in-memory orchestrator."""
    return create_in_memory_orchestrator(
        clock=clock,
        delivery_hook=delivery_hook,
        credential_verifier=StubCredentialVerifier(),
        session_issuer=session_issuer,
    )
