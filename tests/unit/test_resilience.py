"""Unit tests for retry policy, circuit breaker and run_with_timeout."""

from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from promoter_core.errors import (
    CircuitBreakerOpenError,
    PublishRejectedError,
    PublishUnavailableError,
    StoreUnavailableError,
)
from promoter_core.resilience import CircuitBreaker, CircuitState, RetryPolicy, run_with_timeout
from promoter_core.schemas.config import CircuitBreakerConfig, RetryConfig
from promoter_core.telemetry.metrics import CircuitBreakerStateValue


class TestRetryPolicyBackoff:
    def test_calculate_delay_exponential_no_jitter(self) -> None:
        policy = RetryPolicy(
            RetryConfig(initial_delay_ms=1000, backoff_multiplier=2.0, jitter=False)
        )

        assert policy.calculate_delay(0) == pytest.approx(1.0)
        assert policy.calculate_delay(1) == pytest.approx(2.0)
        assert policy.calculate_delay(2) == pytest.approx(4.0)

    def test_delay_capped(self) -> None:
        policy = RetryPolicy(
            RetryConfig(initial_delay_ms=1000, max_delay_ms=5000, jitter=False)
        )

        assert policy.calculate_delay(3) == pytest.approx(5.0)

    def test_jitter_within_25_percent(self) -> None:
        policy = RetryPolicy(RetryConfig(initial_delay_ms=1000, jitter=True))

        delays = [policy.calculate_delay(0) for _ in range(50)]

        assert all(0.75 <= d <= 1.25 for d in delays)


class TestRetryPolicyWrap:
    def test_retries_transient_failure(self) -> None:
        policy = RetryPolicy(RetryConfig(max_attempts=3, jitter=False))
        operation = MagicMock(
            side_effect=[
                PublishUnavailableError("registry", "refused"),
                PublishUnavailableError("registry", "refused"),
                "ok",
            ]
        )

        with patch("time.sleep") as mock_sleep:
            result = policy.wrap(operation)()

        assert result == "ok"
        assert operation.call_count == 3
        assert mock_sleep.call_count == 2

    def test_reraises_after_max_attempts(self) -> None:
        policy = RetryPolicy(RetryConfig(max_attempts=2, jitter=False))
        operation = MagicMock(side_effect=PublishUnavailableError("registry", "down"))

        with patch("time.sleep"), pytest.raises(PublishUnavailableError):
            policy.wrap(operation)()

        assert operation.call_count == 2

    def test_non_retryable_type_propagates_immediately(self) -> None:
        policy = RetryPolicy(RetryConfig(max_attempts=3))
        operation = MagicMock(side_effect=PublishRejectedError("registry", "401"))

        with patch("time.sleep") as mock_sleep, pytest.raises(PublishRejectedError):
            policy.wrap(operation)()

        assert operation.call_count == 1
        mock_sleep.assert_not_called()

    def test_retryable_flag_opts_out(self) -> None:
        """CircuitBreakerOpenError is a PublishUnavailableError that must not be retried."""
        policy = RetryPolicy(
            RetryConfig(max_attempts=3),
            retryable_exceptions=(PublishUnavailableError,),
        )
        operation = MagicMock(side_effect=CircuitBreakerOpenError("registry"))

        with patch("time.sleep"), pytest.raises(CircuitBreakerOpenError):
            policy.wrap(operation)()

        assert operation.call_count == 1

    def test_should_retry_respects_configured_types(self) -> None:
        policy = RetryPolicy(retryable_exceptions=(StoreUnavailableError,))

        assert policy.should_retry(StoreUnavailableError("memory", "down")) is True
        assert policy.should_retry(PublishUnavailableError("registry", "down")) is False
        assert policy.should_retry(ValueError("bug")) is False


class TestCircuitBreaker:
    @pytest.fixture
    def breaker(self) -> CircuitBreaker:
        return CircuitBreaker(
            "registry.example.com",
            CircuitBreakerConfig(failure_threshold=3, recovery_timeout_ms=60000),
        )

    def _fail(self, breaker: CircuitBreaker) -> None:
        with pytest.raises(PublishUnavailableError), breaker.protect():
            raise PublishUnavailableError("registry.example.com", "refused")

    def test_opens_after_threshold(self, breaker: CircuitBreaker) -> None:
        for _ in range(3):
            self._fail(breaker)

        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitBreakerOpenError) as exc_info, breaker.protect():
            pytest.fail("request should not be allowed")
        assert exc_info.value.failure_count == 3
        assert exc_info.value.recovery_at is not None

    def test_success_resets_failure_count(self, breaker: CircuitBreaker) -> None:
        self._fail(breaker)
        self._fail(breaker)
        with breaker.protect():
            pass

        assert breaker.failure_count == 0
        assert breaker.state == CircuitState.CLOSED

    def test_rejection_does_not_count_as_failure(self, breaker: CircuitBreaker) -> None:
        for _ in range(5):
            with pytest.raises(PublishRejectedError), breaker.protect():
                raise PublishRejectedError("registry.example.com", "401")

        assert breaker.state == CircuitState.CLOSED

    def test_half_open_after_recovery_timeout(self, breaker: CircuitBreaker) -> None:
        for _ in range(3):
            self._fail(breaker)

        breaker._last_failure_time = datetime.now(timezone.utc) - timedelta(minutes=2)

        assert breaker.state == CircuitState.HALF_OPEN
        with breaker.protect():
            pass
        assert breaker.state == CircuitState.CLOSED

    def test_failed_probe_reopens(self, breaker: CircuitBreaker) -> None:
        for _ in range(3):
            self._fail(breaker)
        breaker._last_failure_time = datetime.now(timezone.utc) - timedelta(minutes=2)

        self._fail(breaker)

        assert breaker.state == CircuitState.OPEN

    def test_disabled_breaker_always_allows(self) -> None:
        breaker = CircuitBreaker(
            "registry.example.com",
            CircuitBreakerConfig(enabled=False, failure_threshold=1),
        )
        for _ in range(3):
            self._fail(breaker)

        assert breaker.allow_request() is True

    def test_emits_state_gauge(self) -> None:
        metrics = MagicMock()
        breaker = CircuitBreaker(
            "registry.example.com",
            CircuitBreakerConfig(failure_threshold=1),
            metrics=metrics,
        )

        self._fail(breaker)

        metrics.set_circuit_breaker_state.assert_called_with(
            "registry.example.com", CircuitBreakerStateValue.OPEN
        )

    def test_reset(self, breaker: CircuitBreaker) -> None:
        for _ in range(3):
            self._fail(breaker)

        breaker.reset()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0


class TestRunWithTimeout:
    def test_returns_result(self) -> None:
        assert run_with_timeout(lambda: 42, 1.0, on_timeout=lambda: TimeoutError()) == 42

    def test_propagates_exception(self) -> None:
        def fail() -> None:
            raise StoreUnavailableError("memory", "down")

        with pytest.raises(StoreUnavailableError):
            run_with_timeout(fail, 1.0, on_timeout=lambda: TimeoutError())

    def test_times_out_without_waiting_for_worker(self) -> None:
        release = threading.Event()

        def hang() -> None:
            release.wait(5.0)

        start = time.monotonic()
        try:
            with pytest.raises(PublishUnavailableError, match="timed out"):
                run_with_timeout(
                    hang,
                    0.05,
                    on_timeout=lambda: PublishUnavailableError("registry", "push timed out"),
                )
        finally:
            release.set()

        assert time.monotonic() - start < 2.0
