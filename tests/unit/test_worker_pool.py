"""Unit tests for PromotionQueue and PromotionWorkerPool."""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest
import structlog.testing

from promoter_core.coordinator import PromotionQueue, PromotionWorkerPool
from promoter_core.registry.backend import ArtifactHandle
from promoter_core.schemas.promotion import PromotionState

if TYPE_CHECKING:
    from collections.abc import Callable

    from promoter_core.coordinator import PromotionCoordinator
    from promoter_core.schemas.promotion import PromotionOutcome, PromotionRequest


class TestPromotionQueue:
    def test_fifo(
        self, request_factory: Callable[..., PromotionRequest], handle: ArtifactHandle
    ) -> None:
        pending = PromotionQueue()
        first = pending.submit(request_factory(requested_tag="v1"), handle)
        second = pending.submit(request_factory(requested_tag="v2"), handle)

        assert len(pending) == 2
        assert pending.drain_pending() == [first, second]
        assert len(pending) == 0

    def test_get_times_out(self) -> None:
        assert PromotionQueue().get(timeout=0.01) is None


class TestPromotionWorkerPool:
    def test_rejects_zero_workers(self, coordinator: PromotionCoordinator) -> None:
        with pytest.raises(ValueError, match="max_workers"):
            PromotionWorkerPool(coordinator, PromotionQueue(), max_workers=0)

    def test_drain_empty(self, coordinator: PromotionCoordinator) -> None:
        assert PromotionWorkerPool(coordinator, PromotionQueue()).drain() == []

    def test_drain_returns_outcomes_in_queue_order(
        self,
        coordinator: PromotionCoordinator,
        request_factory: Callable[..., PromotionRequest],
    ) -> None:
        pending = PromotionQueue()
        names = ["api", "web", "My_App", "worker"]
        for name in names:
            pending.submit(
                request_factory(artifact_name=name),
                ArtifactHandle(content=name.encode()),
            )

        outcomes = PromotionWorkerPool(coordinator, pending, max_workers=4).drain()

        assert [o.request.artifact_name for o in outcomes] == names
        assert [o.state for o in outcomes] == [
            PromotionState.CONFIG_UPDATED,
            PromotionState.CONFIG_UPDATED,
            PromotionState.REJECTED,
            PromotionState.CONFIG_UPDATED,
        ]

    def test_same_artifact_promotions_serialize_at_config_write(
        self,
        coordinator: PromotionCoordinator,
        request_factory: Callable[..., PromotionRequest],
    ) -> None:
        pending = PromotionQueue()
        for n in range(6):
            pending.submit(
                request_factory(requested_tag=f"v{n}"),
                ArtifactHandle(content=f"build {n}".encode()),
            )

        outcomes = PromotionWorkerPool(coordinator, pending, max_workers=6).drain()

        assert all(o.succeeded for o in outcomes)
        assert sorted(o.config_revision for o in outcomes) == [1, 2, 3, 4, 5, 6]
        record = coordinator.history("my-app")
        assert len(record.revisions) == 6
        assert record.current == record.revisions[-1].artifact

    def test_run_until_stopped(
        self,
        coordinator: PromotionCoordinator,
        request_factory: Callable[..., PromotionRequest],
        handle: ArtifactHandle,
    ) -> None:
        pending = PromotionQueue()
        pool = PromotionWorkerPool(coordinator, pending, max_workers=2)
        outcomes: list[PromotionOutcome] = []
        worker = _serve(pool, outcomes)

        request = request_factory()
        pending.submit(request, handle)
        _wait_for(lambda: len(outcomes) == 1)
        pool.stop()
        worker.join(timeout=5.0)

        assert not worker.is_alive()
        (outcome,) = outcomes
        assert outcome.request.promotion_id == request.promotion_id
        assert outcome.state == PromotionState.CONFIG_UPDATED
        assert coordinator.history("my-app").current == outcome.artifact

    def test_run_after_stop_serves_again(
        self,
        coordinator: PromotionCoordinator,
        request_factory: Callable[..., PromotionRequest],
    ) -> None:
        pending = PromotionQueue()
        pool = PromotionWorkerPool(coordinator, pending, max_workers=1)
        outcomes: list[PromotionOutcome] = []

        for n in (1, 2):
            worker = _serve(pool, outcomes)
            pending.submit(
                request_factory(requested_tag=f"v{n}"),
                ArtifactHandle(content=f"build {n}".encode()),
            )
            _wait_for(lambda n=n: len(outcomes) == n)
            pool.stop()
            worker.join(timeout=5.0)
            assert not worker.is_alive()

        assert [o.artifact.tag for o in outcomes if o.artifact] == ["v1", "v2"]

    def test_crashed_job_is_logged_and_pool_keeps_serving(
        self,
        coordinator: PromotionCoordinator,
        request_factory: Callable[..., PromotionRequest],
        handle: ArtifactHandle,
    ) -> None:
        execute = coordinator.execute

        def crash_on_first(request: PromotionRequest, artifact: ArtifactHandle) -> PromotionOutcome:
            if request.requested_tag == "crash":
                raise RuntimeError("outcome construction failed")
            return execute(request, artifact)

        pending = PromotionQueue()
        pool = PromotionWorkerPool(coordinator, pending, max_workers=1)
        outcomes: list[PromotionOutcome] = []

        with (
            patch.object(coordinator, "execute", side_effect=crash_on_first),
            structlog.testing.capture_logs() as captured_logs,
        ):
            worker = _serve(pool, outcomes)
            crashed = request_factory(requested_tag="crash")
            pending.submit(crashed, handle)
            pending.submit(request_factory(requested_tag="v1"), handle)
            _wait_for(lambda: len(outcomes) == 1)
            pool.stop()
            worker.join(timeout=5.0)

        assert [o.artifact.tag for o in outcomes if o.artifact] == ["v1"]
        crash_logs = [log for log in captured_logs if log["event"] == "worker_job_crashed"]
        assert len(crash_logs) == 1
        assert crash_logs[0]["promotion_id"] == str(crashed.promotion_id)
        assert crash_logs[0]["error_type"] == "RuntimeError"

    def test_failing_outcome_callback_does_not_stop_pool(
        self,
        coordinator: PromotionCoordinator,
        request_factory: Callable[..., PromotionRequest],
    ) -> None:
        pending = PromotionQueue()
        pool = PromotionWorkerPool(coordinator, pending, max_workers=1)
        seen: list[PromotionOutcome] = []

        def on_outcome(outcome: PromotionOutcome) -> None:
            seen.append(outcome)
            raise ValueError("sink unavailable")

        worker = threading.Thread(
            target=pool.run, kwargs={"poll_interval": 0.01, "on_outcome": on_outcome}
        )
        worker.start()
        for n in (1, 2):
            pending.submit(
                request_factory(requested_tag=f"v{n}"),
                ArtifactHandle(content=f"build {n}".encode()),
            )
        _wait_for(lambda: len(seen) == 2)
        pool.stop()
        worker.join(timeout=5.0)

        assert len(seen) == 2
        assert not worker.is_alive()


def _serve(pool: PromotionWorkerPool, outcomes: list[PromotionOutcome]) -> threading.Thread:
    worker = threading.Thread(
        target=pool.run, kwargs={"poll_interval": 0.01, "on_outcome": outcomes.append}
    )
    worker.start()
    return worker


def _wait_for(condition: Callable[[], bool], timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not condition() and time.monotonic() < deadline:
        time.sleep(0.01)
