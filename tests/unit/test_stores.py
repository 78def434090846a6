"""Unit tests for the in-memory and filesystem config stores."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from promoter_core.errors import StoreUnavailableError, VersionConflictError
from promoter_core.schemas.config import StoreBackend, StoreConfig
from promoter_core.store import (
    ConfigStore,
    FileSystemConfigStore,
    InMemoryConfigStore,
    create_store,
)


@pytest.fixture(params=["memory", "filesystem"])
def any_store(request: pytest.FixtureRequest, tmp_path: Path) -> ConfigStore:
    """Run the shared contract against both store implementations."""
    if request.param == "filesystem":
        return FileSystemConfigStore(tmp_path / "values")
    return InMemoryConfigStore()


class TestStoreContract:
    def test_missing_record(self, any_store: ConfigStore) -> None:
        document = any_store.read("my-app")

        assert document.exists is False
        assert document.content is None
        assert document.version is None

    def test_create_then_read(self, any_store: ConfigStore) -> None:
        version = any_store.write("my-app", {"image": {"tag": "v1"}}, expected_version=None)

        document = any_store.read("my-app")
        assert document.exists is True
        assert document.version == version
        assert document.content == {"image": {"tag": "v1"}}

    def test_update_with_current_version(self, any_store: ConfigStore) -> None:
        first = any_store.write("my-app", {"n": 1}, expected_version=None)

        second = any_store.write("my-app", {"n": 2}, expected_version=first)

        assert second != first
        assert any_store.read("my-app").content == {"n": 2}

    def test_stale_version_conflicts(self, any_store: ConfigStore) -> None:
        first = any_store.write("my-app", {"n": 1}, expected_version=None)
        any_store.write("my-app", {"n": 2}, expected_version=first)

        with pytest.raises(VersionConflictError) as exc_info:
            any_store.write("my-app", {"n": 3}, expected_version=first)

        assert exc_info.value.expected == first
        assert any_store.read("my-app").content == {"n": 2}

    def test_create_conflicts_when_record_exists(self, any_store: ConfigStore) -> None:
        any_store.write("my-app", {"n": 1}, expected_version=None)

        with pytest.raises(VersionConflictError):
            any_store.write("my-app", {"n": 2}, expected_version=None)

    def test_list_records(self, any_store: ConfigStore) -> None:
        any_store.write("web", {}, expected_version=None)
        any_store.write("api", {}, expected_version=None)

        assert any_store.list_records() == ["api", "web"]


class TestInMemoryConfigStore:
    def test_versions_are_generation_counters(self, store: InMemoryConfigStore) -> None:
        assert store.write("my-app", {}, expected_version=None) == "1"
        assert store.write("my-app", {}, expected_version="1") == "2"

    def test_content_is_copied(self, store: InMemoryConfigStore) -> None:
        content = {"image": {"tag": "v1"}}
        store.write("my-app", content, expected_version=None)

        content["image"]["tag"] = "mutated"
        store.read("my-app").content["image"]["tag"] = "also-mutated"  # type: ignore[index]

        assert store.read("my-app").content == {"image": {"tag": "v1"}}


class TestFileSystemConfigStore:
    def test_writes_readable_yaml(self, tmp_path: Path) -> None:
        store = FileSystemConfigStore(tmp_path)

        store.write("my-app", {"image": {"repository": "r", "tag": "v1"}}, None)

        path = tmp_path / "my-app.yaml"
        assert yaml.safe_load(path.read_text()) == {"image": {"repository": "r", "tag": "v1"}}
        assert store.document_path("my-app") == path

    def test_no_temp_files_left_behind(self, tmp_path: Path) -> None:
        store = FileSystemConfigStore(tmp_path)
        version = store.write("my-app", {"n": 1}, None)
        store.write("my-app", {"n": 2}, version)

        leftovers = [p.name for p in tmp_path.iterdir() if p.name.endswith(".tmp")]
        assert leftovers == []

    def test_version_reflects_external_edit(self, tmp_path: Path) -> None:
        store = FileSystemConfigStore(tmp_path)
        version = store.write("my-app", {"n": 1}, None)

        (tmp_path / "my-app.yaml").write_text("n: 99\n")

        with pytest.raises(VersionConflictError):
            store.write("my-app", {"n": 2}, version)

    def test_lock_files_not_listed(self, tmp_path: Path) -> None:
        store = FileSystemConfigStore(tmp_path)
        store.write("my-app", {}, None)

        assert (tmp_path / ".my-app.yaml.lock").exists()
        assert store.list_records() == ["my-app"]

    def test_list_records_missing_root(self, tmp_path: Path) -> None:
        assert FileSystemConfigStore(tmp_path / "absent").list_records() == []

    def test_corrupt_document_is_unavailable(self, tmp_path: Path) -> None:
        (tmp_path / "my-app.yaml").write_text("image: [unclosed\n")

        with pytest.raises(StoreUnavailableError, match="corrupt"):
            FileSystemConfigStore(tmp_path).read("my-app")

    def test_non_mapping_document_is_unavailable(self, tmp_path: Path) -> None:
        (tmp_path / "my-app.yaml").write_text("- a\n- b\n")

        with pytest.raises(StoreUnavailableError, match="not a mapping"):
            FileSystemConfigStore(tmp_path).read("my-app")

    def test_unwritable_root_is_unavailable(self, tmp_path: Path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")

        with pytest.raises(StoreUnavailableError):
            FileSystemConfigStore(blocker / "values").write("my-app", {}, None)


class TestCreateStore:
    def test_memory(self) -> None:
        assert isinstance(create_store(StoreConfig()), InMemoryConfigStore)

    def test_filesystem(self, tmp_path: Path) -> None:
        store = create_store(StoreConfig(backend=StoreBackend.FILESYSTEM, path=tmp_path))

        assert isinstance(store, FileSystemConfigStore)
        assert store.root == tmp_path
