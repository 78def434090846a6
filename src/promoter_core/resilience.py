"""Resilience patterns for registry and config store operations.

This module implements retry policy, circuit breaker and call timeouts for
handling transient failures in the promotion pipeline.

Key Components:
    RetryPolicy: Exponential backoff with jitter for transient failures
    CircuitBreaker: Three-state pattern (CLOSED/OPEN/HALF_OPEN) for availability
    run_with_timeout: Bound a blocking call so it fails instead of hanging

Which errors are retried is decided by the error itself: a RetryPolicy only
retries exceptions of its retryable types whose ``retryable`` attribute is
not False. CircuitBreakerOpenError is a PublishUnavailableError that opts out.

Example:
    >>> policy = RetryPolicy(RetryConfig(max_attempts=3))
    >>> reference = policy.wrap(push_once)()
    >>>
    >>> circuit = CircuitBreaker("registry.example.com", CircuitBreakerConfig())
    >>> with circuit.protect():
    ...     digest = backend.push(name, tag, handle)
"""

from __future__ import annotations

import contextvars
import functools
import random
import threading
import time
from collections.abc import Callable, Iterator
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, ParamSpec, TypeVar

import structlog

from promoter_core.errors import (
    CircuitBreakerOpenError,
    PublishUnavailableError,
    StoreUnavailableError,
)
from promoter_core.schemas.config import CircuitBreakerConfig, RetryConfig

if TYPE_CHECKING:
    from promoter_core.telemetry.metrics import PromotionMetrics

logger = structlog.get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


class RetryPolicy:
    """Retry policy with exponential backoff and jitter.

    Retry Timeline (default config):
    - Attempt 1: Immediate
    - Attempt 2: ~1s delay (with jitter)
    - Attempt 3: ~2s delay (with jitter)

    Attributes:
        config: RetryConfig with max_attempts, delays, and jitter settings.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        retryable_exceptions: tuple[type[Exception], ...] | None = None,
    ) -> None:
        """Initialize RetryPolicy.

        Args:
            config: Retry configuration. Uses defaults if None.
            retryable_exceptions: Exception types to retry on. Defaults to
                (PublishUnavailableError, StoreUnavailableError, ConnectionError, TimeoutError).
        """
        self._config = config or RetryConfig()
        self._retryable_exceptions = retryable_exceptions or (
            PublishUnavailableError,
            StoreUnavailableError,
            ConnectionError,
            TimeoutError,
        )

    @property
    def config(self) -> RetryConfig:
        """Return the retry configuration."""
        return self._config

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay before next retry attempt.

        Uses exponential backoff: delay = initial * (multiplier ^ attempt),
        capped at max_delay_ms, with optional ±25% jitter.

        Args:
            attempt: Current attempt number (0-indexed).

        Returns:
            Delay in seconds.
        """
        base_delay_ms = min(
            self._config.initial_delay_ms * (self._config.backoff_multiplier**attempt),
            self._config.max_delay_ms,
        )

        if self._config.jitter:
            jitter_range = base_delay_ms * 0.25
            base_delay_ms += random.uniform(-jitter_range, jitter_range)

        return max(base_delay_ms, 0.0) / 1000.0

    def should_retry(self, exception: Exception) -> bool:
        """Check if exception is retryable.

        Args:
            exception: The exception that was raised.

        Returns:
            True if the exception is a retryable type and does not opt out.
        """
        if not isinstance(exception, self._retryable_exceptions):
            return False
        return getattr(exception, "retryable", True) is not False

    def wrap(self, func: Callable[P, T]) -> Callable[P, T]:
        """Decorator to wrap a function with retry logic.

        Non-retryable exceptions propagate immediately. When attempts run out
        the last retryable exception is re-raised.

        Example:
            >>> @policy.wrap
            ... def push_once():
            ...     return backend.push(name, tag, handle)
        """

        @functools.wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            last_exception: Exception | None = None

            for attempt in range(self._config.max_attempts):
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    if not self.should_retry(e):
                        raise

                    last_exception = e
                    remaining = self._config.max_attempts - attempt - 1

                    if remaining > 0:
                        delay = self.calculate_delay(attempt)
                        logger.debug(
                            "retry_attempt",
                            attempt=attempt + 1,
                            max_attempts=self._config.max_attempts,
                            delay_seconds=delay,
                            error=str(e),
                        )
                        time.sleep(delay)
                    else:
                        logger.warning(
                            "retry_exhausted",
                            attempts=self._config.max_attempts,
                            error=str(e),
                        )

            if last_exception:
                raise last_exception
            raise RuntimeError("Retry exhausted without exception")

        return wrapper


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation, requests allowed
    OPEN = "open"  # Failures exceeded threshold, requests rejected
    HALF_OPEN = "half_open"  # Testing recovery, limited requests allowed


class CircuitBreaker:
    """Circuit breaker for registry availability.

    State Transitions:
    - CLOSED -> OPEN: After failure_threshold consecutive failures
    - OPEN -> HALF_OPEN: After recovery_timeout_ms elapses
    - HALF_OPEN -> CLOSED: On successful probe
    - HALF_OPEN -> OPEN: On failed probe

    Only failures matching ``counted_exceptions`` move the breaker; a
    rejected push (bad credentials) says nothing about availability.

    Thread Safety:
        All state mutations are protected by a threading lock.
    """

    def __init__(
        self,
        registry: str,
        config: CircuitBreakerConfig | None = None,
        *,
        metrics: PromotionMetrics | None = None,
        counted_exceptions: tuple[type[Exception], ...] = (PublishUnavailableError,),
    ) -> None:
        """Initialize CircuitBreaker.

        Args:
            registry: Registry identifier for logging/metrics.
            config: Circuit breaker configuration. Uses defaults if None.
            metrics: Optional PromotionMetrics for the state gauge.
            counted_exceptions: Exception types that count as failures.
        """
        self._registry = registry
        self._config = config or CircuitBreakerConfig()
        self._metrics = metrics
        self._counted_exceptions = counted_exceptions
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: datetime | None = None
        self._half_open_requests = 0
        self._lock = threading.Lock()

        self._emit_state_metric()

    @property
    def state(self) -> CircuitState:
        """Return current circuit state."""
        with self._lock:
            self._update_state()
            return self._state

    @property
    def recovery_time(self) -> datetime | None:
        """Return timestamp when circuit will transition to HALF_OPEN."""
        with self._lock:
            if self._state != CircuitState.OPEN or self._last_failure_time is None:
                return None
            return self._last_failure_time + timedelta(
                milliseconds=self._config.recovery_timeout_ms
            )

    def _emit_state_metric(self) -> None:
        if self._metrics is None:
            return

        from promoter_core.telemetry.metrics import CircuitBreakerStateValue

        state_value_map = {
            CircuitState.CLOSED: CircuitBreakerStateValue.CLOSED,
            CircuitState.OPEN: CircuitBreakerStateValue.OPEN,
            CircuitState.HALF_OPEN: CircuitBreakerStateValue.HALF_OPEN,
        }
        self._metrics.set_circuit_breaker_state(self._registry, state_value_map[self._state])

    def allow_request(self) -> bool:
        """Check if a request should be allowed.

        Returns:
            True if request is allowed, False if it should fail fast.
        """
        if not self._config.enabled:
            return True

        with self._lock:
            self._update_state()

            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.OPEN:
                return False

            if self._half_open_requests < self._config.half_open_requests:
                self._half_open_requests += 1
                logger.debug(
                    "circuit_half_open_probe",
                    registry=self._registry,
                    probe_number=self._half_open_requests,
                )
                return True

            return False

    def record_success(self) -> None:
        """Record a successful request; closes a HALF_OPEN circuit."""
        if not self._config.enabled:
            return

        with self._lock:
            state_changed = False
            if self._state == CircuitState.HALF_OPEN:
                logger.info(
                    "circuit_closed",
                    registry=self._registry,
                    previous_failures=self._failure_count,
                )
                self._state = CircuitState.CLOSED
                state_changed = True

            self._failure_count = 0

            if state_changed:
                self._emit_state_metric()

    def record_failure(self) -> None:
        """Record a failed request; may open the circuit."""
        if not self._config.enabled:
            return

        with self._lock:
            self._failure_count += 1
            self._last_failure_time = datetime.now(timezone.utc)
            state_changed = False

            if self._state == CircuitState.HALF_OPEN:
                logger.warning(
                    "circuit_reopened",
                    registry=self._registry,
                    failure_count=self._failure_count,
                )
                self._state = CircuitState.OPEN
                self._half_open_requests = 0
                state_changed = True

            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self._config.failure_threshold
            ):
                logger.warning(
                    "circuit_opened",
                    registry=self._registry,
                    failure_count=self._failure_count,
                    recovery_timeout_ms=self._config.recovery_timeout_ms,
                )
                self._state = CircuitState.OPEN
                state_changed = True

            if state_changed:
                self._emit_state_metric()

    def _update_state(self) -> None:
        """Transition OPEN -> HALF_OPEN after the recovery timeout. Lock must be held."""
        if self._state != CircuitState.OPEN or self._last_failure_time is None:
            return

        elapsed_ms = (datetime.now(timezone.utc) - self._last_failure_time).total_seconds() * 1000

        if elapsed_ms >= self._config.recovery_timeout_ms:
            logger.info("circuit_half_open", registry=self._registry, elapsed_ms=elapsed_ms)
            self._state = CircuitState.HALF_OPEN
            self._half_open_requests = 0
            self._emit_state_metric()

    @contextmanager
    def protect(self) -> Iterator[None]:
        """Context manager for circuit breaker protection.

        Raises:
            CircuitBreakerOpenError: If circuit is open and request not allowed.

        Example:
            >>> with circuit.protect():
            ...     digest = backend.push(name, tag, handle)
        """
        if not self.allow_request():
            recovery_at = self.recovery_time
            raise CircuitBreakerOpenError(
                registry=self._registry,
                failure_count=self._failure_count,
                recovery_at=recovery_at.isoformat() if recovery_at else None,
            )

        try:
            yield
        except self._counted_exceptions:
            self.record_failure()
            raise
        except Exception:
            # The registry answered; it is available even if it said no
            self.record_success()
            raise
        else:
            self.record_success()

    def reset(self) -> None:
        """Reset circuit breaker to initial state."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._last_failure_time = None
            self._half_open_requests = 0
            logger.info("circuit_reset", registry=self._registry)
            self._emit_state_metric()


def run_with_timeout(
    func: Callable[[], T],
    timeout: float,
    on_timeout: Callable[[], Exception],
) -> T:
    """Run a blocking call in a worker thread and give up after ``timeout``.

    The worker thread is abandoned on timeout rather than joined, so the
    caller never blocks longer than ``timeout``. The current contextvars
    context (active span, bound log context) is carried into the worker.

    Args:
        func: Zero-argument callable to run.
        timeout: Maximum time in seconds to wait.
        on_timeout: Factory for the exception raised on timeout.

    Returns:
        Whatever ``func`` returns.

    Raises:
        Exception: ``on_timeout()`` on timeout, or anything ``func`` raises.
    """
    ctx = contextvars.copy_context()
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="promoter-call")
    try:
        future = executor.submit(ctx.run, func)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            future.cancel()
            raise on_timeout() from None
    finally:
        executor.shutdown(wait=False)


__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "RetryPolicy",
    "run_with_timeout",
]
