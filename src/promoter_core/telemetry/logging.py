"""Structured logging setup with OpenTelemetry trace correlation.

Logs emitted inside an active span carry ``trace_id`` and ``span_id`` so a
promotion can be followed from the CLI output to the trace backend.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import MutableMapping
from typing import Any

import structlog
from opentelemetry import trace
from opentelemetry.trace import INVALID_SPAN_ID, INVALID_TRACE_ID

EventDict = MutableMapping[str, Any]

_LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def add_trace_context(
    logger: Any,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor injecting trace_id and span_id of the active span.

    Args:
        logger: The logger instance (unused, required by structlog processor API).
        method_name: The log method name (unused).
        event_dict: The event dictionary to enrich.

    Returns:
        The event dictionary, with trace context added if a span is active.
    """
    ctx = trace.get_current_span().get_span_context()
    if ctx.trace_id != INVALID_TRACE_ID and ctx.span_id != INVALID_SPAN_ID:
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True,
) -> None:
    """Configure structlog with trace context injection.

    Logs go to stderr so that machine-readable CLI output on stdout stays clean.

    Args:
        log_level: Minimum level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_output: Render JSON lines if True, console format otherwise.

    Raises:
        ValueError: If log_level is not a known level name.

    Examples:
        >>> configure_logging(log_level="DEBUG", json_output=False)
    """
    level = _LOG_LEVELS.get(log_level.upper())
    if level is None:
        raise ValueError(f"Unknown log level: {log_level}. Valid: {sorted(_LOG_LEVELS)}")

    renderer: Any = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_trace_context,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


__all__ = [
    "add_trace_context",
    "configure_logging",
]
