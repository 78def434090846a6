"""Artifact registry access: backends and the RegistryPublisher."""

from __future__ import annotations

from promoter_core.registry.backend import (
    DEFAULT_MEDIA_TYPE,
    ArtifactHandle,
    InMemoryRegistry,
    RegistryBackend,
)
from promoter_core.registry.publisher import RegistryPublisher

__all__ = [
    "DEFAULT_MEDIA_TYPE",
    "ArtifactHandle",
    "InMemoryRegistry",
    "RegistryBackend",
    "RegistryPublisher",
]
