"""Promotion Coordinator: drives one promotion through Listener, Publisher and Mutator.

Each promotion walks a small state machine:

    Received -> Validated -> Published -> ConfigUpdated
        |           |            |
        v           v            v
    Rejected   PublishFailed  ConfigUpdateFailed

No state is re-entrant. A failed promotion is resubmitted as a new
PromotionRequest (new promotion id).

Pending promotions live in an explicit PromotionQueue that callers construct
and pass around; a PromotionWorkerPool drains it concurrently. Promotions for
different artifacts are independent. Promotions for the same artifact publish
concurrently and are serialized only at the config write, by the store's
version check.

Example:
    >>> coordinator = PromotionCoordinator.from_config(load_config("promoter.yaml"))
    >>> outcome = coordinator.execute(request, ArtifactHandle.from_path("dist/app.tar.gz"))
    >>> outcome.state
    <PromotionState.CONFIG_UPDATED: 'config_updated'>
"""

from __future__ import annotations

import queue
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, ConfigDict

from promoter_core.errors import (
    InvalidRequestError,
    InvalidStateTransitionError,
    PromotionError,
)
from promoter_core.listener import BuildTriggerListener
from promoter_core.mutator import ConfigMutator, MutationResult
from promoter_core.registry.backend import ArtifactHandle, RegistryBackend
from promoter_core.registry.publisher import RegistryPublisher
from promoter_core.schemas.promotion import (
    ALLOWED_TRANSITIONS,
    ArtifactReference,
    ConfigRecord,
    PromotionOutcome,
    PromotionRequest,
    PromotionState,
    StateTransition,
)
from promoter_core.store import create_store
from promoter_core.telemetry.metrics import PromotionMetrics, get_promotion_metrics
from promoter_core.telemetry.tracing import create_span, current_trace_id
from promoter_core.webhooks import (
    EVENT_PROMOTION_FAILED,
    EVENT_PROMOTION_SUCCEEDED,
    EVENT_ROLLBACK,
    WebhookNotifier,
)

if TYPE_CHECKING:
    from promoter_core.schemas.config import CoordinatorConfig
    from promoter_core.store.base import ConfigStore

logger = structlog.get_logger(__name__)

DEFAULT_MAX_WORKERS = 4


class PromotionStateMachine:
    """Tracks one promotion's state and the timestamped transitions it took."""

    def __init__(self) -> None:
        self._transitions = [StateTransition(state=PromotionState.RECEIVED)]

    @property
    def state(self) -> PromotionState:
        return self._transitions[-1].state

    @property
    def transitions(self) -> list[StateTransition]:
        return list(self._transitions)

    def advance(self, target: PromotionState) -> None:
        """Move to ``target``.

        Raises:
            InvalidStateTransitionError: If ``target`` is not reachable from the current state.
        """
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidStateTransitionError(self.state.value, target.value)
        self._transitions.append(StateTransition(state=target))


class PromotionCoordinator:
    """Runs promotions end to end and reports an auditable PromotionOutcome."""

    def __init__(
        self,
        publisher: RegistryPublisher,
        mutator: ConfigMutator,
        *,
        listener: BuildTriggerListener | None = None,
        notifier: WebhookNotifier | None = None,
        metrics: PromotionMetrics | None = None,
    ) -> None:
        self.listener = listener or BuildTriggerListener()
        self.publisher = publisher
        self.mutator = mutator
        self._notifier = notifier
        self._metrics = metrics

    @classmethod
    def from_config(
        cls,
        config: CoordinatorConfig,
        *,
        registry_backend: RegistryBackend | None = None,
        store: ConfigStore | None = None,
        metrics: PromotionMetrics | None = None,
    ) -> PromotionCoordinator:
        """Wire publisher, mutator and webhooks from CoordinatorConfig.

        ``registry_backend`` and ``store`` override the configured backends.
        """
        publisher = RegistryPublisher.from_config(
            config.registry,
            backend=registry_backend,
            metrics=metrics,
        )
        mutator = ConfigMutator.from_config(
            store or create_store(config.store),
            config.store,
            config.mutator,
            metrics=metrics,
        )
        notifier = WebhookNotifier(config.webhooks) if config.webhooks else None
        return cls(publisher, mutator, notifier=notifier, metrics=metrics)

    @property
    def metrics(self) -> PromotionMetrics:
        if self._metrics is None:
            self._metrics = get_promotion_metrics()
        return self._metrics

    def _notify(self, event_type: str, event_data: dict[str, Any]) -> None:
        """Fire-and-forget webhook delivery; failures are logged, never raised."""
        if self._notifier is None:
            return
        try:
            results = self._notifier.send(event_type, event_data)
        except Exception as e:
            logger.error("webhook_notification_error", event_type=event_type, error=str(e))
            return
        for result in results:
            if not result.success:
                logger.warning(
                    "webhook_delivery_failed",
                    event_type=event_type,
                    url=result.url,
                    error=result.error,
                    attempts=result.attempts,
                )

    def execute(self, request: PromotionRequest, handle: ArtifactHandle) -> PromotionOutcome:
        """Run one promotion and return its outcome.

        Pipeline failures do not raise; they end the promotion in a failure
        state and are attached to the outcome. Use ``promote`` to raise.

        Args:
            request: Promotion request (admitted here).
            handle: Locally built artifact to publish.

        Returns:
            PromotionOutcome in a terminal state.
        """
        machine = PromotionStateMachine()
        log = logger.bind(
            promotion_id=str(request.promotion_id),
            artifact=request.artifact_name,
            revision=request.source_revision,
        )
        artifact: ArtifactReference | None = None
        mutation: MutationResult | None = None
        error: PromotionError | None = None

        with create_span(
            "promoter.promotion",
            attributes={
                "promotion.id": str(request.promotion_id),
                "artifact.name": request.artifact_name,
                "source.revision": request.source_revision,
                "promotion.requested_by": request.requested_by,
            },
        ) as span:
            trace_id = current_trace_id() or None
            log.info("promotion_received", tag=request.requested_tag)

            try:
                self.listener.admit(request)
            except InvalidRequestError as e:
                error = e
                machine.advance(PromotionState.REJECTED)
            else:
                machine.advance(PromotionState.VALIDATED)

            if error is None:
                try:
                    artifact = self.publisher.publish(request, handle)
                except PromotionError as e:
                    error = e
                except Exception as e:
                    error = PromotionError(f"Unexpected error during publish: {e}")
                    error.__cause__ = e
                    log.exception("publish_unexpected_error")
                if error is None:
                    machine.advance(PromotionState.PUBLISHED)
                else:
                    machine.advance(PromotionState.PUBLISH_FAILED)

            if error is None:
                assert artifact is not None
                try:
                    mutation = self.mutator.apply(
                        artifact,
                        request.record_id,
                        promotion_id=request.promotion_id,
                        source_revision=request.source_revision,
                    )
                except PromotionError as e:
                    error = e
                except Exception as e:
                    error = PromotionError(f"Unexpected error during config update: {e}")
                    error.__cause__ = e
                    log.exception("config_update_unexpected_error")
                if error is None:
                    machine.advance(PromotionState.CONFIG_UPDATED)
                else:
                    machine.advance(PromotionState.CONFIG_UPDATE_FAILED)

            span.set_attribute("promotion.state", machine.state.value)

        outcome = PromotionOutcome(
            promotion_id=request.promotion_id,
            request=request,
            state=machine.state,
            transitions=machine.transitions,
            artifact=artifact,
            config_revision=mutation.revision.revision if mutation else None,
            config_version=mutation.version if mutation else None,
            trace_id=trace_id,
        )
        self.metrics.record_promotion(outcome.state.value, request.artifact_name)

        if error is not None:
            outcome.attach_error(error)
            log.error(
                "promotion_failed",
                state=outcome.state.value,
                error_type=outcome.error_type,
                error=outcome.error_message,
            )
            self._notify(
                EVENT_PROMOTION_FAILED,
                {
                    "promotion_id": str(request.promotion_id),
                    "artifact_name": request.artifact_name,
                    "source_revision": request.source_revision,
                    "state": outcome.state.value,
                    "error_type": outcome.error_type,
                    "error": outcome.error_message,
                    "artifact": artifact.pinned_ref if artifact else None,
                },
            )
        else:
            assert artifact is not None and mutation is not None
            log.info(
                "promotion_completed",
                reference=artifact.pinned_ref,
                config_revision=outcome.config_revision,
                config_version=outcome.config_version,
            )
            self._notify(
                EVENT_PROMOTION_SUCCEEDED,
                {
                    "promotion_id": str(request.promotion_id),
                    "artifact_name": request.artifact_name,
                    "source_revision": request.source_revision,
                    "record_id": request.record_id,
                    "artifact": artifact.pinned_ref,
                    "tag": artifact.tag,
                    "config_revision": outcome.config_revision,
                },
            )

        return outcome

    def promote(self, request: PromotionRequest, handle: ArtifactHandle) -> PromotionOutcome:
        """Run one promotion, raising its error if it fails.

        Raises:
            PromotionError: The subclass that ended the promotion.
        """
        outcome = self.execute(request, handle)
        outcome.raise_for_failure()
        return outcome

    def rollback(self, record_id: str, revision: int) -> MutationResult:
        """Point ``record_id`` back at a retained revision's artifact.

        Raises:
            RevisionNotFoundError: ``revision`` is not retained.
            ConcurrentUpdateConflictError: Lost the version race too many times.
            ConfigUpdateFailedError: Store unavailable after retries.
        """
        result = self.mutator.rollback(record_id, revision)
        self._notify(
            EVENT_ROLLBACK,
            {
                "record_id": record_id,
                "restored_revision": revision,
                "config_revision": result.revision.revision,
                "artifact": result.revision.artifact.pinned_ref,
            },
        )
        return result

    def history(self, record_id: str) -> ConfigRecord:
        return self.mutator.history(record_id)


# =============================================================================
# Queue and workers
# =============================================================================


class PromotionJob(BaseModel):
    """A queued promotion: the request plus the artifact it promotes."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    request: PromotionRequest
    handle: ArtifactHandle


class PromotionQueue:
    """FIFO of pending promotions. Thread-safe.

    Example:
        >>> pending = PromotionQueue()
        >>> pending.submit(request, handle)
        >>> len(pending)
        1
    """

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: queue.Queue[PromotionJob] = queue.Queue(maxsize=maxsize)

    def submit(self, request: PromotionRequest, handle: ArtifactHandle) -> PromotionJob:
        job = PromotionJob(request=request, handle=handle)
        self._queue.put(job)
        logger.debug(
            "promotion_queued",
            promotion_id=str(request.promotion_id),
            artifact=request.artifact_name,
        )
        return job

    def get(self, timeout: float | None = None) -> PromotionJob | None:
        """Next job, or None if none arrives within ``timeout``."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain_pending(self) -> list[PromotionJob]:
        """Remove and return every job currently queued."""
        jobs: list[PromotionJob] = []
        while True:
            try:
                jobs.append(self._queue.get_nowait())
            except queue.Empty:
                return jobs

    def __len__(self) -> int:
        return self._queue.qsize()


class PromotionWorkerPool:
    """Executes queued promotions on a thread pool.

    Example:
        >>> pool = PromotionWorkerPool(coordinator, pending, max_workers=8)
        >>> outcomes = pool.drain()
    """

    def __init__(
        self,
        coordinator: PromotionCoordinator,
        pending: PromotionQueue,
        *,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> None:
        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers}")
        self._coordinator = coordinator
        self._pending = pending
        self._max_workers = max_workers
        self._stop = threading.Event()

    @property
    def max_workers(self) -> int:
        return self._max_workers

    def drain(self) -> list[PromotionOutcome]:
        """Run every currently queued promotion concurrently.

        Returns:
            One outcome per job, in queue order.
        """
        jobs = self._pending.drain_pending()
        if not jobs:
            return []

        log = logger.bind(jobs=len(jobs), max_workers=self._max_workers)
        log.info("worker_pool_drain_started")

        with ThreadPoolExecutor(
            max_workers=self._max_workers, thread_name_prefix="promoter-worker"
        ) as executor:
            futures = [
                executor.submit(self._coordinator.execute, job.request, job.handle)
                for job in jobs
            ]
            outcomes = [future.result() for future in futures]

        log.info(
            "worker_pool_drain_completed",
            succeeded=sum(1 for o in outcomes if o.succeeded),
            failed=sum(1 for o in outcomes if not o.succeeded),
        )
        return outcomes

    def run(
        self,
        poll_interval: float = 0.5,
        on_outcome: Callable[[PromotionOutcome], None] | None = None,
    ) -> None:
        """Serve the queue until ``stop()`` is called.

        Args:
            poll_interval: Seconds to wait on an empty queue before rechecking
                the stop flag.
            on_outcome: Called with each finished promotion's outcome, from
                the worker thread that ran it.
        """
        self._stop.clear()
        logger.info("worker_pool_started", max_workers=self._max_workers)
        with ThreadPoolExecutor(
            max_workers=self._max_workers, thread_name_prefix="promoter-worker"
        ) as executor:
            while not self._stop.is_set():
                job = self._pending.get(timeout=poll_interval)
                if job is None:
                    continue
                future = executor.submit(self._coordinator.execute, job.request, job.handle)
                future.add_done_callback(
                    lambda done, job=job: self._job_finished(job, done, on_outcome)
                )
        logger.info("worker_pool_stopped")

    def _job_finished(
        self,
        job: PromotionJob,
        future: Future[PromotionOutcome],
        on_outcome: Callable[[PromotionOutcome], None] | None,
    ) -> None:
        log = logger.bind(
            promotion_id=str(job.request.promotion_id),
            artifact=job.request.artifact_name,
        )
        exc = future.exception()
        if exc is not None:
            log.error(
                "worker_job_crashed",
                error_type=type(exc).__name__,
                error_summary=str(exc)[:200],
            )
            return

        outcome = future.result()
        log.info("worker_job_finished", state=outcome.state.value, succeeded=outcome.succeeded)
        if on_outcome is None:
            return
        try:
            on_outcome(outcome)
        except Exception as e:
            log.exception("worker_outcome_callback_failed", error_type=type(e).__name__)

    def stop(self) -> None:
        self._stop.set()


__all__ = [
    "DEFAULT_MAX_WORKERS",
    "PromotionCoordinator",
    "PromotionJob",
    "PromotionQueue",
    "PromotionStateMachine",
    "PromotionWorkerPool",
]
