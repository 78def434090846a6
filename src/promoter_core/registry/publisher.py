"""Registry Publisher: push a built artifact and return its immutable reference.

Publishing is idempotent on content digest. Every attempt first asks the
backend whether the digest is already published; if so the existing
ArtifactReference is returned and nothing is uploaded. Because the check runs
on every attempt, a push that landed but whose response was lost (timeout,
dropped connection) is not duplicated by the retry.

Failure handling:
    - PublishUnavailableError: retried with exponential backoff up to
      ``RetryConfig.max_attempts``, then surfaced
    - PublishRejectedError: surfaced immediately, never retried
    - CircuitBreakerOpenError: surfaced immediately while the registry's
      circuit is open

Example:
    >>> publisher = RegistryPublisher(InMemoryRegistry())
    >>> reference = publisher.publish(request, ArtifactHandle(content=b"..."))
    >>> reference.pinned_ref
    'memory.local/apps/my-app@sha256:...'
"""

from __future__ import annotations

from contextlib import nullcontext
from typing import TYPE_CHECKING

import structlog

from promoter_core.errors import PromotionError, PublishRejectedError, PublishUnavailableError
from promoter_core.registry.backend import ArtifactHandle, InMemoryRegistry, RegistryBackend
from promoter_core.resilience import CircuitBreaker, RetryPolicy, run_with_timeout
from promoter_core.schemas.promotion import ArtifactReference, PromotionRequest
from promoter_core.telemetry.metrics import PromotionMetrics, get_promotion_metrics
from promoter_core.telemetry.tracing import create_span

if TYPE_CHECKING:
    from collections.abc import Callable
    from typing import TypeVar

    from promoter_core.schemas.config import RegistryConfig

    T = TypeVar("T")

logger = structlog.get_logger(__name__)


class RegistryPublisher:
    """Publishes artifacts through a RegistryBackend with retries and a circuit breaker.

    Stateless apart from the shared circuit breaker, so one publisher can
    serve many concurrent promotions.
    """

    def __init__(
        self,
        backend: RegistryBackend,
        *,
        retry_policy: RetryPolicy | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        timeout_seconds: float = 30.0,
        metrics: PromotionMetrics | None = None,
    ) -> None:
        """Initialize RegistryPublisher.

        Args:
            backend: Registry backend to push through.
            retry_policy: Backoff for PublishUnavailableError. Defaults to RetryPolicy().
            circuit_breaker: Optional circuit breaker shared by all publishes
                to this registry.
            timeout_seconds: Upper bound for each backend call.
            metrics: Metrics collector. Defaults to the module singleton.
        """
        self._backend = backend
        self._retry_policy = retry_policy or RetryPolicy(
            retryable_exceptions=(PublishUnavailableError,)
        )
        self._circuit_breaker = circuit_breaker
        self._timeout_seconds = timeout_seconds
        self._metrics = metrics

    @classmethod
    def from_config(
        cls,
        config: RegistryConfig,
        *,
        backend: RegistryBackend | None = None,
        metrics: PromotionMetrics | None = None,
    ) -> RegistryPublisher:
        """Build a publisher, its backend and resilience from RegistryConfig."""
        if backend is None:
            if config.backend == "memory":
                backend = InMemoryRegistry(config.uri)
            else:
                from promoter_core.registry.oras_backend import OrasRegistry

                backend = OrasRegistry(config)

        resilience = config.resilience
        circuit_breaker = None
        if resilience.circuit_breaker.enabled:
            circuit_breaker = CircuitBreaker(
                backend.registry,
                resilience.circuit_breaker,
                metrics=metrics,
            )

        return cls(
            backend,
            retry_policy=RetryPolicy(
                resilience.retry,
                retryable_exceptions=(PublishUnavailableError,),
            ),
            circuit_breaker=circuit_breaker,
            timeout_seconds=config.timeout_seconds,
            metrics=metrics,
        )

    @property
    def backend(self) -> RegistryBackend:
        return self._backend

    @property
    def circuit_breaker(self) -> CircuitBreaker | None:
        return self._circuit_breaker

    @property
    def metrics(self) -> PromotionMetrics:
        if self._metrics is None:
            self._metrics = get_promotion_metrics()
        return self._metrics

    def _call(self, operation: str, func: Callable[[], T]) -> T:
        """Run one backend call under the timeout, normalizing unknown failures."""
        registry = self._backend.registry
        timeout = self._timeout_seconds
        try:
            return run_with_timeout(
                func,
                timeout,
                on_timeout=lambda: PublishUnavailableError(
                    registry, f"{operation} timed out after {timeout}s"
                ),
            )
        except PromotionError:
            raise
        except Exception as e:
            raise PublishUnavailableError(registry, f"{operation} failed: {e}") from e

    def _attempt(
        self,
        request: PromotionRequest,
        handle: ArtifactHandle,
        digest: str,
    ) -> ArtifactReference:
        """One lookup-then-push attempt under circuit breaker protection."""
        name = request.artifact_name
        registry = self._backend.registry
        guard = self._circuit_breaker.protect() if self._circuit_breaker else nullcontext()

        with guard:
            existing = self._call("lookup", lambda: self._backend.lookup(name, digest))
            if existing is not None:
                self.metrics.record_publish_attempt(registry, "reused")
                return existing

            try:
                pushed_digest = self._call(
                    "push", lambda: self._backend.push(name, request.requested_tag, handle)
                )
            except PublishRejectedError:
                self.metrics.record_publish_attempt(registry, "rejected")
                raise
            except PublishUnavailableError:
                self.metrics.record_publish_attempt(registry, "unavailable")
                raise

        if pushed_digest != digest:
            self.metrics.record_publish_attempt(registry, "rejected")
            raise PublishRejectedError(
                registry,
                f"registry reported digest {pushed_digest}, expected {digest}",
            )

        self.metrics.record_publish_attempt(registry, "success")
        return ArtifactReference(
            location=self._backend.location(name),
            digest=digest,
            tag=request.requested_tag,
        )

    def publish(self, request: PromotionRequest, handle: ArtifactHandle) -> ArtifactReference:
        """Publish ``handle`` for ``request`` and return the artifact reference.

        Args:
            request: Admitted promotion request.
            handle: Locally built artifact.

        Returns:
            Reference to the published (or previously published) artifact.

        Raises:
            PublishRejectedError: Authentication, authorization or quota failure.
            PublishUnavailableError: Registry unreachable after all retries,
                or circuit breaker open.
        """
        digest = handle.digest
        log = logger.bind(
            promotion_id=str(request.promotion_id),
            artifact=request.artifact_name,
            tag=request.requested_tag,
            digest=digest,
            registry=self._backend.registry,
        )

        with create_span(
            "promoter.publish",
            attributes={
                "promotion.id": str(request.promotion_id),
                "artifact.name": request.artifact_name,
                "artifact.tag": request.requested_tag,
                "artifact.digest": digest,
                "registry.host": self._backend.registry,
            },
        ) as span, self.metrics.stage_timer("publish", artifact=request.artifact_name):
            log.info("publish_started")
            try:
                reference = self._retry_policy.wrap(self._attempt)(request, handle, digest)
            except PromotionError as e:
                log.error("publish_failed", error=str(e), error_type=type(e).__name__)
                raise

            span.set_attribute("artifact.ref", reference.pinned_ref)
            log.info("publish_completed", reference=reference.pinned_ref, tag=reference.tag)
            return reference


__all__ = ["RegistryPublisher"]
