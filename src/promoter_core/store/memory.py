"""In-memory versioned config store."""

from __future__ import annotations

import copy
import threading
from typing import Any

import structlog

from promoter_core.errors import VersionConflictError
from promoter_core.store.base import ConfigStore, StoredDocument

logger = structlog.get_logger(__name__)


class InMemoryConfigStore(ConfigStore):
    """Config store held in a dict, guarded by a lock.

    Version tokens are decimal generation counters starting at "1". Content is
    deep-copied on the way in and out so callers never share mutable state
    with the store.

    Example:
        >>> store = InMemoryConfigStore()
        >>> store.write("my-app", {"image": {}}, expected_version=None)
        '1'
        >>> store.read("my-app").version
        '1'
    """

    def __init__(self) -> None:
        self._records: dict[str, tuple[dict[str, Any], int]] = {}
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "memory"

    def read(self, record_id: str) -> StoredDocument:
        with self._lock:
            entry = self._records.get(record_id)
            if entry is None:
                return StoredDocument(record_id=record_id)
            content, generation = entry
            return StoredDocument(
                record_id=record_id,
                content=copy.deepcopy(content),
                version=str(generation),
            )

    def write(
        self,
        record_id: str,
        content: dict[str, Any],
        expected_version: str | None,
    ) -> str:
        with self._lock:
            entry = self._records.get(record_id)
            actual = str(entry[1]) if entry is not None else None
            if actual != expected_version:
                raise VersionConflictError(record_id, expected_version, actual)

            generation = (entry[1] if entry is not None else 0) + 1
            self._records[record_id] = (copy.deepcopy(content), generation)

        logger.debug("memory_store_write", record=record_id, version=generation)
        return str(generation)

    def list_records(self) -> list[str]:
        with self._lock:
            return sorted(self._records)


__all__ = ["InMemoryConfigStore"]
