"""MFA tracing helpers for OpenTelemetry integration.

Usage:
    ```python
    from cqrs_ddd_mfa.observability import MfaTracing

    with MfaTracing.span("verify_factor", attributes={"mfa.kind": "totp"}) as span:
        response = await orchestrator.verify_factor(challenge_id, "totp", code)
        MfaTracing.set_outcome(span, "success")
    ```
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Generator

# Try to import OpenTelemetry (optional dependency)
try:
    from opentelemetry import trace
    from opentelemetry.trace import Status, StatusCode

    HAS_OTEL = True
except ImportError:
    HAS_OTEL = False
    trace = None
    Status = None
    StatusCode = None


class _TracerRegistry:
    """Lazy tracer initialization."""

    def __init__(self) -> None:
        self._tracer = None
        self._initialized = False

    def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        if HAS_OTEL and trace:
            self._tracer = trace.get_tracer("cqrs-ddd-mfa")
        self._initialized = True

    @property
    def tracer(self) -> Any:
        self._ensure_initialized()
        return self._tracer


_registry = _TracerRegistry()


class MfaTracing:
    """MFA tracing helpers for OpenTelemetry.

    Spans are named ``mfa.<operation>``. Without OpenTelemetry every helper
    is a no-op and spans are ``None``.
    """

    @staticmethod
    @contextmanager
    def span(
        operation: str,
        *,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[Any, None, None]:
        """Context manager for a traced MFA operation.

        Args:
            operation: Operation name (open_challenge, verify_factor, ...).
            attributes: Additional span attributes. Never pass code values.

        Yields:
            Span object or None if tracing disabled.
        """
        tracer = _registry.tracer
        if not tracer:
            yield None
            return

        with tracer.start_as_current_span(f"mfa.{operation}") as span:
            try:
                span.set_attribute("mfa.operation", operation)
                if attributes:
                    for key, value in attributes.items():
                        span.set_attribute(key, str(value))

                yield span

            except Exception as e:
                if Status and StatusCode:
                    span.set_status(Status(StatusCode.ERROR, str(e)))
                    span.record_exception(e)
                raise

    @staticmethod
    def set_outcome(span: Any, outcome: str) -> None:
        """Record the verification outcome on a span."""
        if span:
            span.set_attribute("mfa.outcome", outcome)


__all__: list[str] = ["MfaTracing", "HAS_OTEL"]
