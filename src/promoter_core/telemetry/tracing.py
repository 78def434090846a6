"""OpenTelemetry tracing utilities for the promotion pipeline.

Provides a cached, replaceable tracer and the create_span() context manager
used to instrument listener, publisher and mutator stages. Error messages
recorded on spans are sanitized so registry credentials never leak into
trace backends.
"""

from __future__ import annotations

import re
import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

if TYPE_CHECKING:
    from collections.abc import Generator

    from opentelemetry.trace import Span, Tracer

_TRACER_NAME = "promoter_core"

_SENSITIVE_KEY_PATTERN = re.compile(
    r"(password|secret|token|api_key|authorization|credential)\s*[=:]\s*\S+",
    re.IGNORECASE,
)
_URL_CREDENTIAL_PATTERN = re.compile(r"://[^@/\s]+:[^@/\s]+@")

_tracers: dict[str, Tracer] = {}
_lock = threading.Lock()


def get_tracer(name: str = _TRACER_NAME) -> Tracer:
    """Get or create the tracer for ``name``.

    Uses double-checked locking so concurrent workers share one tracer.
    Falls back to a NoOpTracer if the OpenTelemetry global state is unusable.
    """
    if name in _tracers:
        return _tracers[name]

    with _lock:
        if name in _tracers:
            return _tracers[name]
        try:
            tracer = trace.get_tracer(name)
        except Exception:
            tracer = trace.NoOpTracer()
        _tracers[name] = tracer
        return tracer


def set_tracer(tracer: Tracer | None, name: str = _TRACER_NAME) -> None:
    """Set or clear the tracer for ``name`` (for testing).

    Example:
        >>> from opentelemetry.sdk.trace import TracerProvider
        >>> set_tracer(TracerProvider().get_tracer("test"))
    """
    with _lock:
        if tracer is None:
            _tracers.pop(name, None)
        else:
            _tracers[name] = tracer


def reset_tracer() -> None:
    """Clear all cached tracers for test isolation."""
    with _lock:
        _tracers.clear()


def sanitize_error_message(msg: str, max_length: int = 500) -> str:
    """Redact credentials from an error message and truncate it.

    Example:
        >>> sanitize_error_message("login failed: password=hunter2")
        'login failed: password=<REDACTED>'
    """
    sanitized = _URL_CREDENTIAL_PATTERN.sub("://<REDACTED>@", msg)
    sanitized = _SENSITIVE_KEY_PATTERN.sub(
        lambda m: re.split(r"\s*[=:]", m.group(0), maxsplit=1)[0] + "=<REDACTED>",
        sanitized,
    )
    return sanitized[:max_length]


@contextmanager
def create_span(
    name: str,
    attributes: dict[str, Any] | None = None,
) -> Generator[Span, None, None]:
    """Create a span as a context manager.

    On exception the span status is set to ERROR with a sanitized message and
    the exception is re-raised.

    Args:
        name: The name for the span.
        attributes: Optional attributes to set on the span.

    Yields:
        The created span for additional attribute setting.

    Examples:
        >>> with create_span("promoter.publish", {"artifact.name": "my-app"}) as span:
        ...     span.set_attribute("artifact.digest", digest)
    """
    tracer = get_tracer()
    with tracer.start_as_current_span(
        name,
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)
        try:
            yield span
        except Exception as e:
            sanitized = sanitize_error_message(str(e))
            span.set_status(Status(StatusCode.ERROR, sanitized))
            span.set_attribute("exception.type", type(e).__name__)
            span.set_attribute("exception.message", sanitized)
            raise


def current_trace_id() -> str:
    """Return the active trace id as 32-char hex, or an empty string."""
    span_context = trace.get_current_span().get_span_context()
    if not span_context.is_valid:
        return ""
    return format(span_context.trace_id, "032x")


__all__ = [
    "create_span",
    "current_trace_id",
    "get_tracer",
    "reset_tracer",
    "sanitize_error_message",
    "set_tracer",
]
