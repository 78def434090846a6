"""Unit tests for the promotion exception hierarchy and exit codes."""

from __future__ import annotations

import pytest

from promoter_core.errors import (
    CircuitBreakerOpenError,
    ConcurrentUpdateConflictError,
    ConfigUpdateFailedError,
    ConfigurationError,
    InvalidRequestError,
    InvalidStateTransitionError,
    PromotionError,
    PublishRejectedError,
    PublishUnavailableError,
    RevisionNotFoundError,
    StoreUnavailableError,
    VersionConflictError,
)


class TestExitCodes:
    """Each failure class maps to its own CLI exit code."""

    @pytest.mark.parametrize(
        ("error", "exit_code"),
        [
            (PromotionError("boom"), 1),
            (InvalidRequestError("artifact_name", "must not be empty"), 2),
            (ConfigurationError("bad config"), 2),
            (PublishRejectedError("registry.example.com", "401"), 3),
            (PublishUnavailableError("registry.example.com", "refused"), 4),
            (CircuitBreakerOpenError("registry.example.com"), 4),
            (ConcurrentUpdateConflictError("my-app", 6), 5),
            (ConfigUpdateFailedError("my-app", "disk full"), 6),
            (RevisionNotFoundError("my-app", 9), 7),
            (InvalidStateTransitionError("received", "published"), 1),
        ],
    )
    def test_exit_code(self, error: PromotionError, exit_code: int) -> None:
        assert error.exit_code == exit_code
        assert isinstance(error, PromotionError)


class TestRetryability:
    def test_unavailable_is_retryable(self) -> None:
        assert PublishUnavailableError("r", "x").retryable is True

    def test_rejected_is_not_retryable(self) -> None:
        assert PublishRejectedError("r", "x").retryable is False

    def test_circuit_open_is_unavailable_but_not_retryable(self) -> None:
        error = CircuitBreakerOpenError("registry.example.com", failure_count=5)

        assert isinstance(error, PublishUnavailableError)
        assert error.retryable is False

    def test_store_errors_are_retryable(self) -> None:
        assert VersionConflictError("my-app", "1", "2").retryable is True
        assert StoreUnavailableError("memory", "down").retryable is True

    def test_invalid_request_is_not_retryable(self) -> None:
        assert InvalidRequestError("source_revision", "must not be empty").retryable is False


class TestMessages:
    def test_invalid_request_message(self) -> None:
        error = InvalidRequestError("artifact_name", "must be lowercase")

        assert str(error) == "Invalid promotion request: artifact_name must be lowercase"
        assert error.field == "artifact_name"
        assert error.reason == "must be lowercase"

    def test_circuit_breaker_message_includes_recovery(self) -> None:
        error = CircuitBreakerOpenError(
            "registry.example.com",
            failure_count=5,
            recovery_at="2026-01-01T00:00:00+00:00",
        )

        assert "after 5 failures" in str(error)
        assert "2026-01-01T00:00:00+00:00" in str(error)
        assert error.registry == "registry.example.com"

    def test_revision_not_found_lists_retained_revisions(self) -> None:
        error = RevisionNotFoundError("my-app", 42, available=[1, 2, 3])

        assert "Revision 42" in str(error)
        assert "1, 2, 3" in str(error)

    def test_conflict_message_asks_for_resubmission(self) -> None:
        error = ConcurrentUpdateConflictError("my-app", 6)

        assert "after 6 attempts" in str(error)
        assert "Resubmit" in str(error)

    def test_version_conflict_carries_tokens(self) -> None:
        error = VersionConflictError("my-app", "3", "4")

        assert error.expected == "3"
        assert error.actual == "4"
