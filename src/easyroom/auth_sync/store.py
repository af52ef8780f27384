"""Shared key/value storage backends for the auth sync engine.

This module introduces a *narrow* persistence interface
(:class:`KeyValueStorage`) shaped like a browser's ``localStorage`` and two
implementations:

* :class:`MemoryStorage` – process-local dict, with an optional byte quota to
  reproduce "quota exceeded" failures.
* :class:`DiskStorage` – one file per key, shared by every process that points
  at the same directory.

The design follows these goals:

* **Atomicity** – writes use *temp-file + os.replace*, so concurrent writers
  give last-writer-wins and a reader never observes a torn record.
* **No locking** – envelopes are always fully replaced, never merged.
* **Filename safety** – key names are slugified and hashed before hitting the
  filesystem.

A storage of ``None`` stands for "no persistent store in this environment";
the engine degrades to reads returning nothing and writes doing nothing.

Environment variables
---------------------
EASYROOM_AUTH_STORAGE_DIR
    Base directory for :class:`DiskStorage`.
    Defaults to ``~/.easyroom/auth`` when unset.
"""

from __future__ import annotations

import os
import re
import secrets
from hashlib import sha256
from pathlib import Path
from typing import Protocol, runtime_checkable

from easyroom.auth_sync.errors import StorageWriteError

_PROBE_KEY = "__easyroom_storage_probe__"

# --------------------------------------------------------------------------- #
# helpers                                                                     #
# --------------------------------------------------------------------------- #


def _hash(text: str, length: int = 12) -> str:
    return sha256(text.encode()).hexdigest()[:length]


def _slug(text: str, max_len: int = 80) -> str:
    """Filesystem-safe slug."""
    text = (text or "").strip().lower()
    text = re.sub(r"[^a-z0-9._-]+", "-", text)
    text = re.sub(r"-{2,}", "-", text).strip("-")
    return text[:max_len] or "unknown"


def _atomic_write_text(path: Path, data: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    # unique temp name: two processes writing the same key must not share it
    tmp = path.with_name(f".{path.name}.{secrets.token_hex(4)}.tmp")
    try:
        with tmp.open("w", encoding="utf-8") as fh:
            fh.write(data)
        os.replace(tmp, path)  # atomic on POSIX
    finally:
        tmp.unlink(missing_ok=True)


# --------------------------------------------------------------------------- #
# public interface                                                            #
# --------------------------------------------------------------------------- #


@runtime_checkable
class KeyValueStorage(Protocol):
    """Minimal string key/value contract shared by every execution context."""

    def get_item(self, key: str) -> str | None: ...
    def set_item(self, key: str, value: str) -> None: ...
    def remove_item(self, key: str) -> None: ...


def probe_storage(storage: KeyValueStorage | None) -> bool:
    """Return *True* if *storage* accepts a write and a removal."""
    if storage is None:
        return False
    try:
        storage.set_item(_PROBE_KEY, _PROBE_KEY)
        storage.remove_item(_PROBE_KEY)
    except Exception:
        return False
    return True


# --------------------------------------------------------------------------- #
# Memory implementation                                                       #
# --------------------------------------------------------------------------- #


class MemoryStorage(KeyValueStorage):
    """Dict-backed implementation of :class:`KeyValueStorage`."""

    def __init__(self, *, quota_bytes: int | None = None) -> None:
        self._items: dict[str, str] = {}
        self.quota_bytes = quota_bytes

    def _size_with(self, key: str, value: str) -> int:
        size = sum(len(k) + len(v) for k, v in self._items.items() if k != key)
        return size + len(key) + len(value)

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        if self.quota_bytes is not None and self._size_with(key, value) > self.quota_bytes:
            raise StorageWriteError("Storage quota exceeded", key=key)
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)


# --------------------------------------------------------------------------- #
# Disk implementation                                                         #
# --------------------------------------------------------------------------- #


class DiskStorage(KeyValueStorage):
    """File-per-key implementation of :class:`KeyValueStorage`."""

    def __init__(self, base_dir: str | os.PathLike | None = None) -> None:
        self.base_dir = Path(
            base_dir
            or os.getenv("EASYROOM_AUTH_STORAGE_DIR")
            or Path.home() / ".easyroom" / "auth"
        ).expanduser()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.base_dir / f"{_slug(key, 48)}-{_hash(key, 8)}.json"

    def get_item(self, key: str) -> str | None:
        p = self._path(key)
        try:
            with p.open(encoding="utf-8") as fh:
                return fh.read()
        except FileNotFoundError:
            return None

    def set_item(self, key: str, value: str) -> None:
        try:
            _atomic_write_text(self._path(key), value)
        except OSError as exc:
            raise StorageWriteError(f"Could not write {key}: {exc}", key=key) from exc

    def remove_item(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


# --------------------------------------------------------------------------- #
# Convenience – default instance for the composition root                    #
# --------------------------------------------------------------------------- #


def default_storage(base_dir: str | os.PathLike | None = None) -> KeyValueStorage | None:
    """Return a :class:`DiskStorage`, or ``None`` when the directory is unusable."""
    try:
        storage = DiskStorage(base_dir)
    except OSError:
        return None
    return storage if probe_storage(storage) else None
