"""Versioned config stores holding ConfigRecord documents."""

from __future__ import annotations

from promoter_core.schemas.config import StoreBackend, StoreConfig
from promoter_core.store.base import ConfigStore, StoredDocument
from promoter_core.store.filesystem import FileSystemConfigStore
from promoter_core.store.memory import InMemoryConfigStore


def create_store(config: StoreConfig) -> ConfigStore:
    """Create the config store named by ``config.backend``."""
    if config.backend == StoreBackend.FILESYSTEM:
        assert config.path is not None
        return FileSystemConfigStore(config.path)
    return InMemoryConfigStore()


__all__ = [
    "ConfigStore",
    "FileSystemConfigStore",
    "InMemoryConfigStore",
    "StoredDocument",
    "create_store",
]
