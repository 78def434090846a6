"""Config Mutator: point a ConfigRecord at a new artifact with optimistic concurrency.

Every change is a read-modify-write against a versioned ConfigStore:

    1. read the record and its version token
    2. compute the updated record (new current artifact, one revision appended)
    3. write it back, expecting the token from step 1

If another writer got there first the store raises VersionConflictError and
the whole cycle is repeated, up to ``max_conflict_retries`` times, before the
mutator gives up with ConcurrentUpdateConflictError. Store unavailability is
retried separately with backoff and surfaces as ConfigUpdateFailedError.

Writes are idempotent per promotion: if a previous attempt's write actually
landed (the store timed out after committing), the re-read finds the revision
tagged with the same promotion id and returns it instead of appending a
duplicate.

Example:
    >>> mutator = ConfigMutator(InMemoryConfigStore())
    >>> result = mutator.apply(reference, "my-app", promotion_id=request.promotion_id)
    >>> result.revision.revision
    1
    >>> mutator.rollback("my-app", 1).revision.kind
    <RevisionKind.ROLLBACK: 'rollback'>
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from typing import Any, TypeVar
from uuid import UUID, uuid4

import structlog
from pydantic import BaseModel, ConfigDict

from promoter_core.errors import (
    ConcurrentUpdateConflictError,
    ConfigUpdateFailedError,
    RevisionNotFoundError,
    StoreUnavailableError,
    VersionConflictError,
)
from promoter_core.listener import validate_artifact_name
from promoter_core.resilience import RetryPolicy, run_with_timeout
from promoter_core.schemas.config import MutatorConfig, RetryConfig, StoreConfig
from promoter_core.schemas.promotion import (
    ArtifactReference,
    ConfigRecord,
    ConfigRevision,
    RevisionKind,
)
from promoter_core.store.base import ConfigStore, StoredDocument
from promoter_core.telemetry.metrics import PromotionMetrics, get_promotion_metrics
from promoter_core.telemetry.tracing import create_span

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class MutationResult(BaseModel):
    """Outcome of a committed config change."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    record: ConfigRecord
    revision: ConfigRevision
    version: str | None
    attempts: int
    already_applied: bool = False

    @property
    def record_id(self) -> str:
        return self.record.record_id


class ConfigMutator:
    """Owns all writes to ConfigRecords.

    Thread-safe as long as the underlying store is: no state is kept between
    calls, serialization of same-record writers is done by the store's
    version check.
    """

    def __init__(
        self,
        store: ConfigStore,
        *,
        config: MutatorConfig | None = None,
        store_retry: RetryConfig | None = None,
        store_timeout_seconds: float = 10.0,
        metrics: PromotionMetrics | None = None,
    ) -> None:
        """Initialize ConfigMutator.

        Args:
            store: Versioned config store.
            config: Conflict retry bounds and history retention.
            store_retry: Backoff for StoreUnavailableError.
            store_timeout_seconds: Upper bound for each store read or write.
            metrics: Metrics collector. Defaults to the module singleton.
        """
        self._store = store
        self._config = config or MutatorConfig()
        self._store_retry = RetryPolicy(
            store_retry or StoreConfig().retry,
            retryable_exceptions=(StoreUnavailableError,),
        )
        self._store_timeout_seconds = store_timeout_seconds
        self._metrics = metrics

    @classmethod
    def from_config(
        cls,
        store: ConfigStore,
        store_config: StoreConfig,
        mutator_config: MutatorConfig,
        *,
        metrics: PromotionMetrics | None = None,
    ) -> ConfigMutator:
        return cls(
            store,
            config=mutator_config,
            store_retry=store_config.retry,
            store_timeout_seconds=store_config.timeout_seconds,
            metrics=metrics,
        )

    @property
    def store(self) -> ConfigStore:
        return self._store

    @property
    def config(self) -> MutatorConfig:
        return self._config

    @property
    def metrics(self) -> PromotionMetrics:
        if self._metrics is None:
            self._metrics = get_promotion_metrics()
        return self._metrics

    # -------------------------------------------------------------------------
    # Store access
    # -------------------------------------------------------------------------

    def _store_call(self, record_id: str, operation: str, func: Callable[[], T]) -> T:
        """Run a store call with timeout and backoff; map exhaustion to ConfigUpdateFailedError."""
        store_name = self._store.name
        timeout = self._store_timeout_seconds

        def bounded() -> T:
            return run_with_timeout(
                func,
                timeout,
                on_timeout=lambda: StoreUnavailableError(
                    store_name, f"{operation} timed out after {timeout}s"
                ),
            )

        try:
            return self._store_retry.wrap(bounded)()
        except StoreUnavailableError as e:
            raise ConfigUpdateFailedError(record_id, str(e)) from e

    def _read(self, record_id: str) -> StoredDocument:
        return self._store_call(record_id, "read", lambda: self._store.read(record_id))

    def _conflict_delay(self, attempt: int) -> float:
        base_ms = self._config.conflict_backoff_ms * (attempt + 1)
        return random.uniform(0, base_ms) / 1000.0

    # -------------------------------------------------------------------------
    # Read-modify-write
    # -------------------------------------------------------------------------

    def _mutate(
        self,
        record_id: str,
        operation_id: UUID,
        compute: Callable[[ConfigRecord], ConfigRecord],
        log: Any,
    ) -> MutationResult:
        """Run the optimistic read-modify-write loop for one change."""
        max_attempts = self._config.max_conflict_retries + 1

        for attempt in range(max_attempts):
            document = self._read(record_id)
            record = ConfigRecord.from_document(record_id, document.content)

            existing = record.find_by_promotion(operation_id)
            if existing is not None:
                log.info(
                    "config_change_already_applied",
                    revision=existing.revision,
                    version=document.version,
                )
                return MutationResult(
                    record=record,
                    revision=existing,
                    version=document.version,
                    attempts=attempt + 1,
                    already_applied=True,
                )

            updated = compute(record)
            try:
                version = self._store_call(
                    record_id,
                    "write",
                    lambda: self._store.write(
                        record_id, updated.to_document(), document.version
                    ),
                )
            except VersionConflictError as e:
                self.metrics.record_conflict(record_id)
                remaining = max_attempts - attempt - 1
                log.warning(
                    "config_write_conflict",
                    attempt=attempt + 1,
                    remaining=remaining,
                    expected_version=e.expected,
                    actual_version=e.actual,
                )
                if remaining > 0:
                    time.sleep(self._conflict_delay(attempt))
                continue

            revision = updated.latest_revision
            assert revision is not None
            log.info(
                "config_write_committed",
                revision=revision.revision,
                version=version,
                attempts=attempt + 1,
            )
            return MutationResult(
                record=updated,
                revision=revision,
                version=version,
                attempts=attempt + 1,
            )

        log.error("config_write_conflict_exhausted", attempts=max_attempts)
        raise ConcurrentUpdateConflictError(record_id, max_attempts)

    def apply(
        self,
        reference: ArtifactReference,
        record_id: str,
        *,
        promotion_id: UUID | None = None,
        source_revision: str | None = None,
    ) -> MutationResult:
        """Point ``record_id`` at ``reference`` and append a promote revision.

        Args:
            reference: Successfully published artifact.
            record_id: ConfigRecord identity.
            promotion_id: Promotion performing the change; makes the write
                idempotent. A fresh id is used when omitted.
            source_revision: Commit that produced the artifact.

        Returns:
            The committed MutationResult.

        Raises:
            InvalidRequestError: ``record_id`` violates the naming policy.
            ConcurrentUpdateConflictError: Lost the version race too many times.
            ConfigUpdateFailedError: Store unavailable after retries.
        """
        validate_artifact_name(record_id)
        operation_id = promotion_id or uuid4()
        log = logger.bind(
            record=record_id,
            promotion_id=str(operation_id),
            reference=reference.pinned_ref,
        )
        history_limit = self._config.history_limit

        def compute(record: ConfigRecord) -> ConfigRecord:
            return record.with_revision(
                reference,
                kind=RevisionKind.PROMOTE,
                promotion_id=operation_id,
                source_revision=source_revision,
                history_limit=history_limit,
            )

        with create_span(
            "promoter.config_update",
            attributes={
                "config.record": record_id,
                "promotion.id": str(operation_id),
                "artifact.digest": reference.digest,
            },
        ) as span, self.metrics.stage_timer("config_update", record=record_id):
            result = self._mutate(record_id, operation_id, compute, log)
            span.set_attribute("config.revision", result.revision.revision)
            if result.version is not None:
                span.set_attribute("config.version", result.version)
            return result

    def rollback(self, record_id: str, revision: int) -> MutationResult:
        """Restore the artifact of a retained revision as a new rollback revision.

        Raises:
            RevisionNotFoundError: ``revision`` is not retained in the record.
            InvalidRequestError: ``record_id`` violates the naming policy.
            ConcurrentUpdateConflictError: Lost the version race too many times.
            ConfigUpdateFailedError: Store unavailable after retries.
        """
        validate_artifact_name(record_id)
        operation_id = uuid4()
        log = logger.bind(record=record_id, rollback_to=revision, operation_id=str(operation_id))
        history_limit = self._config.history_limit

        def compute(record: ConfigRecord) -> ConfigRecord:
            target = record.find_revision(revision)
            if target is None:
                raise RevisionNotFoundError(
                    record_id,
                    revision,
                    available=[entry.revision for entry in record.revisions],
                )
            return record.with_revision(
                target.artifact,
                kind=RevisionKind.ROLLBACK,
                promotion_id=operation_id,
                source_revision=target.source_revision,
                restores_revision=target.revision,
                history_limit=history_limit,
            )

        with create_span(
            "promoter.rollback",
            attributes={"config.record": record_id, "config.rollback_to": revision},
        ), self.metrics.stage_timer("rollback", record=record_id):
            log.info("rollback_started")
            return self._mutate(record_id, operation_id, compute, log)

    def history(self, record_id: str) -> ConfigRecord:
        """Return the current ConfigRecord, empty if it was never written."""
        validate_artifact_name(record_id)
        document = self._read(record_id)
        return ConfigRecord.from_document(record_id, document.content)


__all__ = ["ConfigMutator", "MutationResult"]
