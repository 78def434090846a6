"""Unit test fixtures for promoter-core.

Unit tests run without external services: the registry is an
InMemoryRegistry (or a mocked ORAS client), the config store is in memory or
under tmp_path, and retry delays are zero.

Key Fixtures:
- request_factory: Build PromotionRequests with sensible defaults
- handle: In-memory ArtifactHandle
- registry / store: Fresh in-memory backends
- publisher / mutator / coordinator: Wired with zero-delay retries
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from promoter_core.coordinator import PromotionCoordinator
from promoter_core.errors import PublishUnavailableError
from promoter_core.mutator import ConfigMutator
from promoter_core.registry.backend import ArtifactHandle, InMemoryRegistry
from promoter_core.registry.publisher import RegistryPublisher
from promoter_core.resilience import RetryPolicy
from promoter_core.schemas.config import MutatorConfig, RetryConfig
from promoter_core.schemas.promotion import ArtifactReference, PromotionRequest
from promoter_core.store.memory import InMemoryConfigStore
from promoter_core.telemetry.metrics import PromotionMetrics

if TYPE_CHECKING:
    from collections.abc import Callable

FAST_RETRY = RetryConfig(max_attempts=3, initial_delay_ms=0, max_delay_ms=0, jitter=False)


@pytest.fixture
def sample_digest() -> str:
    """Return a valid SHA256 digest (of the empty string)."""
    return "sha256:e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


@pytest.fixture
def sample_reference(sample_digest: str) -> ArtifactReference:
    return ArtifactReference(
        location="registry.example.com/apps/my-app",
        digest=sample_digest,
        tag="v1.0.0",
    )


@pytest.fixture
def request_factory() -> Callable[..., PromotionRequest]:
    """Factory for PromotionRequests with valid defaults.

    Usage:
        def test_x(request_factory: Callable[..., PromotionRequest]) -> None:
            request = request_factory(artifact_name="other-app")
    """

    def _create(**overrides: Any) -> PromotionRequest:
        fields: dict[str, Any] = {
            "source_revision": "3f2a9c1d8e7b6a5f4e3d2c1b0a9f8e7d6c5b4a39",
            "artifact_name": "my-app",
            "requested_tag": "v1.0.0",
        }
        fields.update(overrides)
        return PromotionRequest(**fields)

    return _create


@pytest.fixture
def handle() -> ArtifactHandle:
    return ArtifactHandle(content=b"my-app build 1")


@pytest.fixture
def metrics() -> PromotionMetrics:
    """Metrics collector bound to the global no-op meter."""
    return PromotionMetrics(meter_name="promoter-test")


@pytest.fixture
def registry() -> InMemoryRegistry:
    return InMemoryRegistry("registry.example.com/apps")


@pytest.fixture
def store() -> InMemoryConfigStore:
    return InMemoryConfigStore()


@pytest.fixture
def publisher(registry: InMemoryRegistry, metrics: PromotionMetrics) -> RegistryPublisher:
    return RegistryPublisher(
        registry,
        retry_policy=RetryPolicy(FAST_RETRY, retryable_exceptions=(PublishUnavailableError,)),
        timeout_seconds=5.0,
        metrics=metrics,
    )


@pytest.fixture
def mutator(store: InMemoryConfigStore, metrics: PromotionMetrics) -> ConfigMutator:
    return ConfigMutator(
        store,
        config=MutatorConfig(max_conflict_retries=5, conflict_backoff_ms=0),
        store_retry=FAST_RETRY,
        store_timeout_seconds=5.0,
        metrics=metrics,
    )


@pytest.fixture
def coordinator(
    publisher: RegistryPublisher,
    mutator: ConfigMutator,
    metrics: PromotionMetrics,
) -> PromotionCoordinator:
    return PromotionCoordinator(publisher, mutator, metrics=metrics)
