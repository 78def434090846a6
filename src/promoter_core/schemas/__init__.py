"""Pydantic schemas for promotion data and coordinator configuration."""

from __future__ import annotations

from promoter_core.schemas.config import (
    AuthType,
    CircuitBreakerConfig,
    CoordinatorConfig,
    MutatorConfig,
    RegistryAuth,
    RegistryConfig,
    ResilienceConfig,
    RetryConfig,
    StoreBackend,
    StoreConfig,
    WebhookConfig,
    load_config,
)
from promoter_core.schemas.promotion import (
    ALLOWED_TRANSITIONS,
    ArtifactReference,
    ConfigRecord,
    ConfigRevision,
    PromotionOutcome,
    PromotionRequest,
    PromotionState,
    RevisionKind,
    StateTransition,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "ArtifactReference",
    "AuthType",
    "CircuitBreakerConfig",
    "ConfigRecord",
    "ConfigRevision",
    "CoordinatorConfig",
    "MutatorConfig",
    "PromotionOutcome",
    "PromotionRequest",
    "PromotionState",
    "RegistryAuth",
    "RegistryConfig",
    "ResilienceConfig",
    "RetryConfig",
    "RevisionKind",
    "StateTransition",
    "StoreBackend",
    "StoreConfig",
    "WebhookConfig",
    "load_config",
]
