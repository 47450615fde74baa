"""MFA metrics helpers for Prometheus integration.

Works as a no-op when prometheus_client is not installed.

Usage:
    ```python
    from cqrs_ddd_mfa.observability import MfaMetrics

    with MfaMetrics.operation("verify_factor"):
        response = await orchestrator.verify_factor(challenge_id, "totp", code)

    MfaMetrics.record_verification("totp", "invalid_code")
    ```
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

_logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Generator


class _MfaMetricsRegistry:
    """Registry for MFA Prometheus metrics.

    Lazily initializes Prometheus metrics on first use.
    """

    def __init__(self) -> None:
        self._histogram: Any = None
        self._verifications: Any = None
        self._challenges: Any = None
        self._initialized = False

    def _ensure_initialized(self) -> None:
        """Initialize Prometheus metrics if available."""
        if self._initialized:
            return

        try:
            from prometheus_client import Counter, Histogram

            self._histogram = Histogram(
                "mfa_operation_duration_seconds",
                "MFA operation duration",
                ["operation"],
            )
            self._verifications = Counter(
                "mfa_verifications_total",
                "MFA verification attempts",
                ["kind", "outcome"],
            )
            self._challenges = Counter(
                "mfa_challenges_total",
                "MFA challenge lifecycle transitions",
                ["action"],
            )
        except ImportError:
            _logger.debug("prometheus_client not available, metrics disabled")

        self._initialized = True

    @property
    def histogram(self) -> Any:
        self._ensure_initialized()
        return self._histogram

    @property
    def verifications(self) -> Any:
        self._ensure_initialized()
        return self._verifications

    @property
    def challenges(self) -> Any:
        self._ensure_initialized()
        return self._challenges


# Global registry instance
_registry = _MfaMetricsRegistry()


class MfaMetrics:
    """MFA metrics helpers.

    Integrates with Prometheus when available but works as a no-op
    otherwise. Metric failures are logged and never reach the caller.
    """

    @staticmethod
    @contextmanager
    def operation(operation: str) -> Generator[None, None, None]:
        """Context manager for timing an MFA operation.

        Args:
            operation: Operation name (open_challenge, verify_factor, ...).
        """
        start = time.monotonic()
        try:
            yield
        finally:
            duration = time.monotonic() - start
            if _registry.histogram:
                try:
                    _registry.histogram.labels(operation=operation).observe(duration)
                except Exception:
                    _logger.debug("Failed to record histogram")

    @staticmethod
    def record_verification(kind: str, outcome: str) -> None:
        """Count one verification attempt.

        Args:
            kind: Factor kind value.
            outcome: Verification outcome value.
        """
        if not _registry.verifications:
            return
        try:
            _registry.verifications.labels(kind=kind, outcome=outcome).inc()
        except Exception:
            _logger.debug("Failed to record verification metric")

    @staticmethod
    def record_challenge(action: str) -> None:
        """Count a challenge transition (opened, verified, locked, expired)."""
        if not _registry.challenges:
            return
        try:
            _registry.challenges.labels(action=action).inc()
        except Exception:
            _logger.debug("Failed to record challenge metric")


__all__: list[str] = ["MfaMetrics"]
