"""Versioned config store interface.

A config store holds one document per config record together with an opaque
version token. Writes are compare-and-swap: the writer passes the token it
read, and the store refuses the write if the record has moved on.

Contract:
    read(record_id) -> StoredDocument (content None and version None if absent)
    write(record_id, content, expected_version) -> new version token

Errors:
    VersionConflictError: expected_version does not match the stored token
    StoreUnavailableError: transient backend failure
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class StoredDocument(BaseModel):
    """A config document as read from the store, with its version token."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    record_id: str
    content: dict[str, Any] | None = Field(default=None)
    version: str | None = Field(
        default=None,
        description="Opaque token for compare-and-swap; None if the record does not exist",
    )

    @property
    def exists(self) -> bool:
        return self.version is not None


class ConfigStore(ABC):
    """Abstract versioned config store. Implementations must be thread-safe."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable store identifier for logs and errors."""

    @abstractmethod
    def read(self, record_id: str) -> StoredDocument:
        """Read the current document and version token for ``record_id``."""

    @abstractmethod
    def write(
        self,
        record_id: str,
        content: dict[str, Any],
        expected_version: str | None,
    ) -> str:
        """Replace the document if its version still equals ``expected_version``.

        ``expected_version=None`` means the record must not exist yet.

        Returns:
            The new version token.

        Raises:
            VersionConflictError: If the stored version differs.
            StoreUnavailableError: If the backend cannot be reached.
        """

    @abstractmethod
    def list_records(self) -> list[str]:
        """Identities of all stored records, sorted."""


__all__ = ["ConfigStore", "StoredDocument"]
