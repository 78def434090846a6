"""Observability for the promotion pipeline: tracing, metrics and logging."""

from __future__ import annotations

from promoter_core.telemetry.logging import add_trace_context, configure_logging
from promoter_core.telemetry.metrics import (
    CircuitBreakerStateValue,
    PromotionMetrics,
    get_promotion_metrics,
    set_promotion_metrics,
)
from promoter_core.telemetry.tracing import (
    create_span,
    current_trace_id,
    get_tracer,
    reset_tracer,
    sanitize_error_message,
    set_tracer,
)

__all__ = [
    "CircuitBreakerStateValue",
    "PromotionMetrics",
    "add_trace_context",
    "configure_logging",
    "create_span",
    "current_trace_id",
    "get_promotion_metrics",
    "get_tracer",
    "reset_tracer",
    "sanitize_error_message",
    "set_promotion_metrics",
    "set_tracer",
]
