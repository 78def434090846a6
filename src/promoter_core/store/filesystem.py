"""Filesystem config store: one YAML values file per config record.

Layout:
    <root>/
    ├── my-app.yaml          # values document read by the GitOps reconciler
    ├── .my-app.yaml.lock    # flock target serializing writers
    └── ...

The version token is the sha256 of the file bytes. Writers take an exclusive
``fcntl.flock`` on the record's lock file, compare the token, write a temp
file in the same directory and ``os.replace`` it over the target, so readers
never observe a partial document and never need the lock.

The directory is typically a git working copy; committing and pushing it is
left to the surrounding automation.
"""

from __future__ import annotations

import fcntl
import hashlib
import os
import tempfile
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import structlog
import yaml

from promoter_core.errors import StoreUnavailableError, VersionConflictError
from promoter_core.store.base import ConfigStore, StoredDocument

logger = structlog.get_logger(__name__)

DOCUMENT_SUFFIX = ".yaml"


def _version_of(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()[:16]


class FileSystemConfigStore(ConfigStore):
    """Versioned config store backed by a directory of YAML files.

    Args:
        root: Directory holding the values files. Created on first write.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    @property
    def name(self) -> str:
        return f"filesystem:{self._root}"

    @property
    def root(self) -> Path:
        return self._root

    def document_path(self, record_id: str) -> Path:
        return self._root / f"{record_id}{DOCUMENT_SUFFIX}"

    def _lock_path(self, record_id: str) -> Path:
        return self._root / f".{record_id}{DOCUMENT_SUFFIX}.lock"

    @contextmanager
    def _lock(self, record_id: str) -> Generator[None, None, None]:
        """Exclusive per-record lock via fcntl.flock."""
        lock_path = self._lock_path(record_id)
        lock_path.touch(exist_ok=True)

        lock_fd = os.open(str(lock_path), os.O_RDWR)
        try:
            fcntl.flock(lock_fd, fcntl.LOCK_EX)
            yield
        finally:
            fcntl.flock(lock_fd, fcntl.LOCK_UN)
            os.close(lock_fd)

    def _read_raw(self, record_id: str) -> bytes | None:
        path = self.document_path(record_id)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreUnavailableError(self.name, f"cannot read {path}: {e}") from e

    def read(self, record_id: str) -> StoredDocument:
        raw = self._read_raw(record_id)
        if raw is None:
            return StoredDocument(record_id=record_id)

        try:
            content = yaml.safe_load(raw) or {}
        except yaml.YAMLError as e:
            raise StoreUnavailableError(
                self.name, f"corrupt document for '{record_id}': {e}"
            ) from e
        if not isinstance(content, dict):
            raise StoreUnavailableError(
                self.name, f"document for '{record_id}' is not a mapping"
            )

        return StoredDocument(record_id=record_id, content=content, version=_version_of(raw))

    def write(
        self,
        record_id: str,
        content: dict[str, Any],
        expected_version: str | None,
    ) -> str:
        data = yaml.safe_dump(content, sort_keys=False, default_flow_style=False).encode()
        path = self.document_path(record_id)

        try:
            self._root.mkdir(parents=True, exist_ok=True)
            with self._lock(record_id):
                raw = self._read_raw(record_id)
                actual = _version_of(raw) if raw is not None else None
                if actual != expected_version:
                    raise VersionConflictError(record_id, expected_version, actual)

                # Write to temp file first, then replace for atomicity
                fd, temp_name = tempfile.mkstemp(
                    dir=self._root, prefix=f".{record_id}.", suffix=".tmp"
                )
                try:
                    with os.fdopen(fd, "wb") as f:
                        f.write(data)
                        f.flush()
                        os.fsync(f.fileno())
                    os.replace(temp_name, path)
                except BaseException:
                    Path(temp_name).unlink(missing_ok=True)
                    raise
        except OSError as e:
            raise StoreUnavailableError(self.name, f"cannot write {path}: {e}") from e

        version = _version_of(data)
        logger.debug("filesystem_store_write", record=record_id, path=str(path), version=version)
        return version

    def list_records(self) -> list[str]:
        if not self._root.is_dir():
            return []
        return sorted(
            p.name[: -len(DOCUMENT_SUFFIX)]
            for p in self._root.glob(f"*{DOCUMENT_SUFFIX}")
            if not p.name.startswith(".")
        )


__all__ = ["DOCUMENT_SUFFIX", "FileSystemConfigStore"]
