"""Promotion pipeline exception hierarchy.

This module defines all custom exceptions raised by the promotion pipeline.
All exceptions inherit from PromotionError, the base exception class.

Exception Hierarchy:
    PromotionError (base)
    ├── InvalidRequestError            # Request failed admission checks
    ├── ConfigurationError             # Coordinator configuration is invalid
    ├── PublishRejectedError           # Registry refused the push (auth, quota)
    ├── PublishUnavailableError        # Registry not reachable or timed out
    │   └── CircuitBreakerOpenError    # Circuit breaker open, failing fast
    ├── ConcurrentUpdateConflictError  # Config write lost the race too often
    ├── ConfigUpdateFailedError        # Config store unavailable after retries
    ├── RevisionNotFoundError          # Rollback target not in history
    ├── InvalidStateTransitionError    # Promotion state machine misuse
    ├── VersionConflictError           # Store: expected version token is stale
    └── StoreUnavailableError          # Store: backend unreachable or timed out

VersionConflictError and StoreUnavailableError are raised by config store
backends and are translated by the ConfigMutator into
ConcurrentUpdateConflictError and ConfigUpdateFailedError respectively.

Exit Codes:
    0 - Success
    1 - General error (PromotionError)
    2 - Invalid request or configuration
    3 - Publish rejected
    4 - Registry unavailable (including open circuit breaker)
    5 - Concurrent update conflict
    6 - Config update failed
    7 - Revision not found

Example:
    >>> from promoter_core.errors import InvalidRequestError
    >>> raise InvalidRequestError("artifact_name", "must be lowercase")
    Traceback (most recent call last):
        ...
    InvalidRequestError: Invalid promotion request: artifact_name must be lowercase
"""

from __future__ import annotations


class PromotionError(Exception):
    """Base exception for all promotion pipeline errors.

    Attributes:
        exit_code: CLI exit code for this error type (default: 1).
        retryable: Whether a retry policy may retry the failed operation.

    Example:
        >>> try:
        ...     coordinator.promote(request, handle)
        ... except PromotionError as e:
        ...     sys.exit(e.exit_code)
    """

    exit_code: int = 1
    retryable: bool = False


class InvalidRequestError(PromotionError):
    """Raised when a promotion request fails admission checks.

    This is a caller error. Validation is deterministic, so the request is
    never retried; fix the request and resubmit.

    Attributes:
        field: Name of the offending request field.
        reason: Why the value was rejected.
        exit_code: CLI exit code (2).
    """

    exit_code: int = 2

    def __init__(self, field: str, reason: str) -> None:
        """Initialize InvalidRequestError.

        Args:
            field: Name of the offending request field.
            reason: Why the value was rejected.
        """
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid promotion request: {field} {reason}")


class ConfigurationError(PromotionError):
    """Raised when coordinator configuration cannot be loaded or is invalid."""

    exit_code: int = 2


class PublishRejectedError(PromotionError):
    """Raised when the registry permanently refuses a push.

    Covers authentication, authorization, and quota failures. Never retried;
    the pipeline halts and the error is surfaced immediately.

    Attributes:
        registry: Registry host that rejected the push.
        reason: Description of the rejection.
        exit_code: CLI exit code (3).
    """

    exit_code: int = 3

    def __init__(self, registry: str, reason: str) -> None:
        self.registry = registry
        self.reason = reason
        super().__init__(f"Publish rejected by {registry}: {reason}")


class PublishUnavailableError(PromotionError):
    """Raised when the registry is not reachable.

    Indicates a transient connectivity issue or a push that exceeded its
    timeout. The publisher retries with exponential backoff before letting
    this error escape.

    Attributes:
        registry: Registry host that is unreachable.
        reason: Description of the connectivity failure.
        exit_code: CLI exit code (4).

    Example:
        >>> raise PublishUnavailableError("registry.example.com", "Connection refused")
        Traceback (most recent call last):
            ...
        PublishUnavailableError: Registry unavailable: registry.example.com: Connection refused
    """

    exit_code: int = 4
    retryable: bool = True

    def __init__(self, registry: str, reason: str) -> None:
        self.registry = registry
        self.reason = reason
        super().__init__(f"Registry unavailable: {registry}: {reason}")


class CircuitBreakerOpenError(PublishUnavailableError):
    """Raised when the circuit breaker is open and failing fast.

    The registry has failed too many consecutive requests. Requests are
    rejected without a network call until the recovery timeout elapses, so
    retrying inside the same promotion is pointless.

    Attributes:
        registry: Registry host with the open circuit.
        failure_count: Consecutive failures that opened the circuit.
        recovery_at: ISO timestamp when half-open probing begins.
    """

    retryable: bool = False

    def __init__(
        self,
        registry: str,
        failure_count: int = 0,
        recovery_at: str | None = None,
    ) -> None:
        self.failure_count = failure_count
        self.recovery_at = recovery_at

        reason = "circuit breaker open"
        if failure_count > 0:
            reason += f" after {failure_count} failures"
        if recovery_at:
            reason += f", retry after {recovery_at}"
        super().__init__(registry, reason)


class ConcurrentUpdateConflictError(PromotionError):
    """Raised when a config write keeps losing the optimistic concurrency race.

    Another promotion updated the same ConfigRecord between our read and our
    write more times than the mutator is allowed to retry. The promotion must
    be resubmitted.

    Attributes:
        record_id: ConfigRecord identity that was contended.
        attempts: Number of read-modify-write attempts made.
        exit_code: CLI exit code (5).
    """

    exit_code: int = 5

    def __init__(self, record_id: str, attempts: int) -> None:
        self.record_id = record_id
        self.attempts = attempts
        super().__init__(
            f"Concurrent update conflict on config record '{record_id}' "
            f"after {attempts} attempts. Resubmit the promotion."
        )


class ConfigUpdateFailedError(PromotionError):
    """Raised when the config store stays unavailable after retries.

    Attributes:
        record_id: ConfigRecord identity being written.
        reason: Description of the last store failure.
        exit_code: CLI exit code (6).
    """

    exit_code: int = 6

    def __init__(self, record_id: str, reason: str) -> None:
        self.record_id = record_id
        self.reason = reason
        super().__init__(f"Config update failed for '{record_id}': {reason}")


class RevisionNotFoundError(PromotionError):
    """Raised when a rollback targets a revision that is not retained."""

    exit_code: int = 7

    def __init__(self, record_id: str, revision: int, available: list[int] | None = None) -> None:
        self.record_id = record_id
        self.revision = revision
        self.available = available or []

        msg = f"Revision {revision} not found in config record '{record_id}'"
        if self.available:
            preview = ", ".join(str(r) for r in self.available[-5:])
            msg += f". Retained revisions: {preview}"
        super().__init__(msg)


class InvalidStateTransitionError(PromotionError):
    """Raised when a promotion is driven through an illegal state change."""

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Illegal promotion state transition: {current} -> {target}")


class VersionConflictError(PromotionError):
    """Raised by a config store when the expected version token is stale.

    Attributes:
        record_id: Record being written.
        expected: Version token the writer expected.
        actual: Version token currently stored (None if the record is absent).
    """

    retryable: bool = True

    def __init__(self, record_id: str, expected: str | None, actual: str | None) -> None:
        self.record_id = record_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Version conflict on '{record_id}': expected {expected!r}, found {actual!r}"
        )


class StoreUnavailableError(PromotionError):
    """Raised by a config store backend on transient failure or timeout."""

    retryable: bool = True

    def __init__(self, store: str, reason: str) -> None:
        self.store = store
        self.reason = reason
        super().__init__(f"Config store unavailable: {store}: {reason}")


__all__ = [
    "CircuitBreakerOpenError",
    "ConcurrentUpdateConflictError",
    "ConfigUpdateFailedError",
    "ConfigurationError",
    "InvalidRequestError",
    "InvalidStateTransitionError",
    "PromotionError",
    "PublishRejectedError",
    "PublishUnavailableError",
    "RevisionNotFoundError",
    "StoreUnavailableError",
    "VersionConflictError",
]
