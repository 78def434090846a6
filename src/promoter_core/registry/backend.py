"""Registry backend interface and the in-memory reference backend.

A backend knows how to move bytes into one registry. It is deliberately
thin: retries, circuit breaking, timeouts and idempotence live in the
RegistryPublisher, which drives any backend the same way.

Key Components:
    ArtifactHandle: Locally addressable built artifact (file or bytes)
    RegistryBackend: push(name, tag, handle) -> digest, lookup(name, digest)
    InMemoryRegistry: Thread-safe dict-backed registry for tests and dry runs
"""

from __future__ import annotations

import hashlib
import threading
from abc import ABC, abstractmethod
from pathlib import Path

import structlog
from pydantic import BaseModel, ConfigDict, Field, model_validator

from promoter_core.schemas.promotion import ArtifactReference

logger = structlog.get_logger(__name__)

DEFAULT_MEDIA_TYPE = "application/vnd.oci.image.layer.v1.tar+gzip"

_CHUNK_SIZE = 1024 * 1024


class ArtifactHandle(BaseModel):
    """A built artifact ready to publish.

    Exactly one of ``path`` or ``content`` is set. The content digest is the
    sha256 of the artifact bytes, so identical builds share a digest.

    Examples:
        >>> handle = ArtifactHandle(content=b"image layers")
        >>> handle.digest.startswith("sha256:")
        True
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    path: Path | None = Field(default=None, description="Artifact file on local disk")
    content: bytes | None = Field(default=None, description="Artifact bytes held in memory")
    media_type: str = Field(default=DEFAULT_MEDIA_TYPE)

    @model_validator(mode="after")
    def validate_source(self) -> ArtifactHandle:
        """Require exactly one artifact source."""
        if (self.path is None) == (self.content is None):
            raise ValueError("exactly one of 'path' or 'content' must be set")
        return self

    @classmethod
    def from_path(cls, path: str | Path, media_type: str = DEFAULT_MEDIA_TYPE) -> ArtifactHandle:
        return cls(path=Path(path), media_type=media_type)

    @property
    def filename(self) -> str:
        """File name used for the registry layer."""
        return self.path.name if self.path is not None else "artifact.bin"

    def read_bytes(self) -> bytes:
        if self.content is not None:
            return self.content
        assert self.path is not None
        return self.path.read_bytes()

    @property
    def digest(self) -> str:
        """sha256 content digest in ``sha256:<hex>`` form."""
        hasher = hashlib.sha256()
        if self.content is not None:
            hasher.update(self.content)
        else:
            assert self.path is not None
            with self.path.open("rb") as f:
                for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
                    hasher.update(chunk)
        return f"sha256:{hasher.hexdigest()}"

    @property
    def size(self) -> int:
        if self.content is not None:
            return len(self.content)
        assert self.path is not None
        return self.path.stat().st_size


class RegistryBackend(ABC):
    """Interface for artifact registries.

    Implementations raise PublishUnavailableError for transient failures and
    PublishRejectedError for authentication, authorization or quota failures.
    Any other exception is treated as a transient failure by the publisher.
    """

    @property
    @abstractmethod
    def registry(self) -> str:
        """Registry host, used in errors, logs and metrics."""

    @abstractmethod
    def location(self, name: str) -> str:
        """Registry location (host and repository path) for an artifact name."""

    @abstractmethod
    def push(self, name: str, tag: str, handle: ArtifactHandle) -> str:
        """Upload ``handle`` as ``name:tag`` and return its content digest."""

    @abstractmethod
    def lookup(self, name: str, digest: str) -> ArtifactReference | None:
        """Return the reference already published for ``digest``, if any."""


class InMemoryRegistry(RegistryBackend):
    """Registry held in process memory.

    Keeps every pushed blob and counts pushes per repository so tests can
    assert that an idempotent republish did not create a duplicate entry.

    Example:
        >>> registry = InMemoryRegistry("registry.local/apps")
        >>> digest = registry.push("my-app", "v1", ArtifactHandle(content=b"x"))
        >>> registry.lookup("my-app", digest).tag
        'v1'
    """

    def __init__(self, base_location: str = "memory.local/apps") -> None:
        self._base_location = base_location.removeprefix("oci://").rstrip("/")
        self._references: dict[str, dict[str, ArtifactReference]] = {}
        self._blobs: dict[str, bytes] = {}
        self._push_counts: dict[str, int] = {}
        self._lock = threading.Lock()

    @property
    def registry(self) -> str:
        return self._base_location.split("/")[0]

    def location(self, name: str) -> str:
        return f"{self._base_location}/{name}"

    def push(self, name: str, tag: str, handle: ArtifactHandle) -> str:
        content = handle.read_bytes()
        digest = handle.digest
        reference = ArtifactReference(location=self.location(name), digest=digest, tag=tag)

        with self._lock:
            self._blobs[digest] = content
            self._references.setdefault(name, {})[digest] = reference
            self._push_counts[name] = self._push_counts.get(name, 0) + 1

        logger.debug("memory_registry_push", name=name, tag=tag, digest=digest)
        return digest

    def lookup(self, name: str, digest: str) -> ArtifactReference | None:
        with self._lock:
            return self._references.get(name, {}).get(digest)

    def entries(self, name: str) -> list[ArtifactReference]:
        """All distinct artifacts published under ``name``."""
        with self._lock:
            return list(self._references.get(name, {}).values())

    def push_count(self, name: str) -> int:
        """Number of uploads performed for ``name``."""
        with self._lock:
            return self._push_counts.get(name, 0)

    def blob(self, digest: str) -> bytes | None:
        with self._lock:
            return self._blobs.get(digest)


__all__ = [
    "DEFAULT_MEDIA_TYPE",
    "ArtifactHandle",
    "InMemoryRegistry",
    "RegistryBackend",
]
