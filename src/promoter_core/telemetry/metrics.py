"""OpenTelemetry metrics for the promotion pipeline.

Metrics Emitted:
    Counters:
        - promoter_promotions_total: Promotions by final state
        - promoter_publish_attempts_total: Registry push attempts by result
        - promoter_config_write_conflicts_total: Optimistic concurrency conflicts

    Histograms:
        - promoter_stage_duration_seconds: Duration of validate/publish/config stages

    Gauges:
        - promoter_circuit_breaker_state: Circuit breaker state (0=closed, 1=open, 2=half_open)

Example:
    >>> metrics = PromotionMetrics()
    >>> with metrics.stage_timer("publish", artifact="my-app"):
    ...     reference = publisher.publish(request, handle)
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from enum import IntEnum
from typing import TYPE_CHECKING, Any

import structlog
from opentelemetry import metrics

if TYPE_CHECKING:
    from collections.abc import Generator

    from opentelemetry.metrics import Counter, Histogram
    from opentelemetry.metrics._internal.instrument import Gauge

logger = structlog.get_logger(__name__)


class CircuitBreakerStateValue(IntEnum):
    """Numeric values for circuit breaker state gauge."""

    CLOSED = 0
    OPEN = 1
    HALF_OPEN = 2


class PromotionMetrics:
    """OpenTelemetry metrics collector for promotions.

    Instruments are created lazily so that constructing the collector is
    cheap and safe before a MeterProvider is installed.
    """

    PROMOTIONS_TOTAL = "promoter_promotions_total"
    PUBLISH_ATTEMPTS_TOTAL = "promoter_publish_attempts_total"
    CONFIG_WRITE_CONFLICTS_TOTAL = "promoter_config_write_conflicts_total"
    STAGE_DURATION_SECONDS = "promoter_stage_duration_seconds"
    CIRCUIT_BREAKER_STATE = "promoter_circuit_breaker_state"

    def __init__(self, meter_name: str = "promoter", meter_version: str = "0.1.0") -> None:
        self._meter = metrics.get_meter(meter_name, meter_version)
        self._promotions_counter: Counter | None = None
        self._publish_attempts_counter: Counter | None = None
        self._conflicts_counter: Counter | None = None
        self._duration_histogram: Histogram | None = None
        self._circuit_breaker_gauge: Gauge | None = None

    @property
    def promotions_counter(self) -> Counter:
        """Get or create the promotions counter."""
        if self._promotions_counter is None:
            self._promotions_counter = self._meter.create_counter(
                self.PROMOTIONS_TOTAL,
                unit="1",
                description="Promotions by final state",
            )
        return self._promotions_counter

    @property
    def publish_attempts_counter(self) -> Counter:
        """Get or create the publish attempts counter."""
        if self._publish_attempts_counter is None:
            self._publish_attempts_counter = self._meter.create_counter(
                self.PUBLISH_ATTEMPTS_TOTAL,
                unit="1",
                description="Registry push attempts by result",
            )
        return self._publish_attempts_counter

    @property
    def conflicts_counter(self) -> Counter:
        """Get or create the config write conflicts counter."""
        if self._conflicts_counter is None:
            self._conflicts_counter = self._meter.create_counter(
                self.CONFIG_WRITE_CONFLICTS_TOTAL,
                unit="1",
                description="Optimistic concurrency conflicts on config writes",
            )
        return self._conflicts_counter

    @property
    def duration_histogram(self) -> Histogram:
        """Get or create the stage duration histogram."""
        if self._duration_histogram is None:
            self._duration_histogram = self._meter.create_histogram(
                self.STAGE_DURATION_SECONDS,
                unit="s",
                description="Duration of promotion stages in seconds",
            )
        return self._duration_histogram

    @property
    def circuit_breaker_gauge(self) -> Gauge:
        """Get or create the circuit breaker state gauge."""
        if self._circuit_breaker_gauge is None:
            self._circuit_breaker_gauge = self._meter.create_gauge(
                self.CIRCUIT_BREAKER_STATE,
                unit="1",
                description="Circuit breaker state (0=closed, 1=open, 2=half_open)",
            )
        return self._circuit_breaker_gauge

    def record_promotion(self, state: str, artifact: str) -> None:
        """Record a promotion reaching a terminal state."""
        self.promotions_counter.add(1, attributes={"state": state, "artifact": artifact})
        logger.debug("promotion_recorded", state=state, artifact=artifact)

    def record_publish_attempt(self, registry: str, result: str) -> None:
        """Record one registry push attempt (success, unavailable, rejected, reused)."""
        self.publish_attempts_counter.add(1, attributes={"registry": registry, "result": result})

    def record_conflict(self, record_id: str) -> None:
        """Record a version conflict on a config write."""
        self.conflicts_counter.add(1, attributes={"record": record_id})

    def record_duration(self, stage: str, duration_seconds: float, **labels: str) -> None:
        """Record how long a stage took."""
        attributes: dict[str, Any] = {"stage": stage, **labels}
        self.duration_histogram.record(duration_seconds, attributes=attributes)

    def set_circuit_breaker_state(self, registry: str, state: CircuitBreakerStateValue) -> None:
        """Set the circuit breaker state gauge for a registry."""
        self.circuit_breaker_gauge.set(int(state), attributes={"registry": registry})

    @contextmanager
    def stage_timer(self, stage: str, **labels: str) -> Generator[None, None, None]:
        """Time a stage and record its duration with a success/failure label.

        Example:
            >>> with metrics.stage_timer("config_update", record="my-app"):
            ...     mutator.apply(reference, "my-app")
        """
        start_time = time.monotonic()
        status = "failure"
        try:
            yield
            status = "success"
        finally:
            self.record_duration(stage, time.monotonic() - start_time, status=status, **labels)


_default_metrics: PromotionMetrics | None = None


def get_promotion_metrics() -> PromotionMetrics:
    """Get the default PromotionMetrics instance."""
    global _default_metrics
    if _default_metrics is None:
        _default_metrics = PromotionMetrics()
    return _default_metrics


def set_promotion_metrics(metrics_instance: PromotionMetrics | None) -> None:
    """Set the default PromotionMetrics instance (for testing)."""
    global _default_metrics
    _default_metrics = metrics_instance


__all__ = [
    "CircuitBreakerStateValue",
    "PromotionMetrics",
    "get_promotion_metrics",
    "set_promotion_metrics",
]
