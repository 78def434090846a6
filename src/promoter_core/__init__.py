"""promoter-core: deployment promotion coordinator.

Moves a built artifact from a build trigger to a GitOps config record:

    BuildTriggerListener -> RegistryPublisher -> ConfigMutator

The listener admits a PromotionRequest, the publisher pushes the artifact to
an OCI registry and returns an immutable, digest-pinned ArtifactReference,
and the mutator points the ConfigRecord at that reference with an optimistic
compare-and-swap. A downstream reconciler (ArgoCD, Flux) watches the config
store and performs the actual deployment.

Example:
    >>> from promoter_core import PromotionCoordinator, load_config
    >>> coordinator = PromotionCoordinator.from_config(load_config("promoter.yaml"))
    >>> outcome = coordinator.execute(request, handle)
"""

from __future__ import annotations

from promoter_core.coordinator import (
    PromotionCoordinator,
    PromotionQueue,
    PromotionStateMachine,
    PromotionWorkerPool,
)
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
)
from promoter_core.listener import BuildTriggerListener, parse_push_event
from promoter_core.mutator import ConfigMutator, MutationResult
from promoter_core.registry import ArtifactHandle, InMemoryRegistry, RegistryPublisher
from promoter_core.schemas import (
    ArtifactReference,
    ConfigRecord,
    CoordinatorConfig,
    PromotionOutcome,
    PromotionRequest,
    PromotionState,
    load_config,
)
from promoter_core.store import FileSystemConfigStore, InMemoryConfigStore

__all__ = [
    "ArtifactHandle",
    "ArtifactReference",
    "BuildTriggerListener",
    "CircuitBreakerOpenError",
    "ConcurrentUpdateConflictError",
    "ConfigMutator",
    "ConfigRecord",
    "ConfigUpdateFailedError",
    "ConfigurationError",
    "CoordinatorConfig",
    "FileSystemConfigStore",
    "InMemoryConfigStore",
    "InMemoryRegistry",
    "InvalidRequestError",
    "InvalidStateTransitionError",
    "MutationResult",
    "PromotionCoordinator",
    "PromotionError",
    "PromotionOutcome",
    "PromotionQueue",
    "PromotionRequest",
    "PromotionState",
    "PromotionStateMachine",
    "PromotionWorkerPool",
    "PublishRejectedError",
    "PublishUnavailableError",
    "RegistryPublisher",
    "RevisionNotFoundError",
    "parse_push_event",
]
