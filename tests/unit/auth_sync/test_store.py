"""
Unit tests for the key/value storage backends.

Coverage:
* DiskStorage atomic write leaves no temp files and reads back
* Two DiskStorage instances on one directory share values
* MemoryStorage quota enforcement
* default_storage / probe_storage degrade to None on unusable storage
"""

from __future__ import annotations

from pathlib import Path

import pytest

from easyroom.auth_sync.errors import StorageWriteError
from easyroom.auth_sync.store import DiskStorage, MemoryStorage, default_storage, probe_storage


def test_disk_storage_round_trip_and_no_temp_files(tmp_path: Path) -> None:
    storage = DiskStorage(tmp_path)
    storage.set_item("easyroom_auth_state", '{"a":1}')

    assert storage.get_item("easyroom_auth_state") == '{"a":1}'
    assert not list(tmp_path.glob("*.tmp"))
    assert len(list(tmp_path.glob("*.json"))) == 1


def test_disk_storage_missing_key_and_remove(tmp_path: Path) -> None:
    storage = DiskStorage(tmp_path)
    assert storage.get_item("nope") is None

    storage.set_item("k", "v")
    storage.remove_item("k")
    storage.remove_item("k")  # idempotent
    assert storage.get_item("k") is None


def test_disk_storage_is_shared_between_instances(tmp_path: Path) -> None:
    first = DiskStorage(tmp_path)
    second = DiskStorage(tmp_path)

    first.set_item("shared", "value")
    assert second.get_item("shared") == "value"


def test_disk_storage_uses_env_directory(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EASYROOM_AUTH_STORAGE_DIR", str(tmp_path / "env"))
    storage = DiskStorage()
    assert storage.base_dir == tmp_path / "env"


def test_memory_storage_quota() -> None:
    storage = MemoryStorage(quota_bytes=8)
    storage.set_item("a", "1234")

    with pytest.raises(StorageWriteError) as exc_info:
        storage.set_item("b", "123456")
    assert exc_info.value.key == "b"
    assert exc_info.value.to_payload()["error"] == "storage_write_failure"
    assert storage.keys() == ["a"]


def test_probe_storage() -> None:
    assert probe_storage(None) is False
    assert probe_storage(MemoryStorage()) is True
    assert probe_storage(MemoryStorage(quota_bytes=1)) is False


def test_default_storage_returns_disk_storage(tmp_path: Path) -> None:
    storage = default_storage(tmp_path)
    assert isinstance(storage, DiskStorage)


def test_default_storage_unusable_directory(tmp_path: Path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("x")
    # a regular file cannot be used as the storage directory
    assert default_storage(blocker / "sub") is None
