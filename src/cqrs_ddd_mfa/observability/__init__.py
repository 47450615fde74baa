"""MFA observability helpers for metrics and tracing.

Both integrate with Prometheus and OpenTelemetry when they are installed
and are no-ops otherwise.
"""

from __future__ import annotations

from .metrics import MfaMetrics
from .tracing import HAS_OTEL, MfaTracing

__all__: list[str] = [
    # Metrics
    "MfaMetrics",
    # Tracing
    "MfaTracing",
    "HAS_OTEL",
]
