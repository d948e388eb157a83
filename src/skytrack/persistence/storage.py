"""Key-value storage media for persisted state.

Primary media implement :class:`KeyValueStorage` (async). The fallback
medium, :class:`FallbackStorage`, is synchronous and size-limited and only
ever holds the critical subset of user data.

Guarantees of the fallback medium are deliberately weaker than the primary:

* one file, rewritten whole on every save (last writer wins);
* no per-key independence: a save replaces every key at once;
* snapshots larger than ``max_bytes`` are rejected, never truncated;
* a crash during a write may lose the previous snapshot on filesystems
  without atomic rename.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol

from pydantic_core import to_jsonable_python

from skytrack.exceptions import FallbackCapacityError, PersistenceError, StorageUnavailableError

_logger = logging.getLogger(__name__)

#: Default size limit of the fallback medium (64 KiB).
DEFAULT_FALLBACK_MAX_BYTES = 64 * 1024

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.\-]")


def encode_json(value: Any) -> str:
    return json.dumps(to_jsonable_python(value), separators=(",", ":"), sort_keys=True)


class KeyValueStorage(Protocol):
    """Structural interface of the durable key-value medium."""

    async def get_item(self, key: str) -> Any | None: ...

    async def set_item(self, key: str, value: Any) -> None: ...

    async def remove_item(self, key: str) -> None: ...


class MemoryStorage:
    """In-process medium; values pass through a JSON round trip like on disk."""

    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    async def get_item(self, key: str) -> Any | None:
        encoded = self._items.get(key)
        return None if encoded is None else json.loads(encoded)

    async def set_item(self, key: str, value: Any) -> None:
        self._items[key] = encode_json(value)

    async def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._items)


def _write_atomic(path: Path, data: str) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(data, encoding="utf-8")
    os.replace(tmp, path)


class JsonDirectoryStorage:
    """One JSON file per key inside *directory*.

    File IO runs in a worker thread so the event loop never blocks.
    """

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)

    def _path_for(self, key: str) -> Path:
        return self._directory / f"{_UNSAFE_KEY_CHARS.sub('_', key)}.json"

    def _ensure_directory(self) -> None:
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
        except OSError as err:
            raise StorageUnavailableError(f"Storage directory {self._directory} unavailable: {err}") from err

    def _read(self, key: str) -> Any | None:
        path = self._path_for(key)
        if not self._directory.is_dir():
            raise StorageUnavailableError(f"Storage directory {self._directory} does not exist", key=key)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as err:
            raise PersistenceError(f"Could not read {path}: {err}", key=key) from err
        try:
            return json.loads(text)
        except json.JSONDecodeError as err:
            raise PersistenceError(f"Corrupt JSON in {path}: {err}", key=key) from err

    def _write(self, key: str, value: Any) -> None:
        self._ensure_directory()
        encoded = encode_json(value)
        try:
            _write_atomic(self._path_for(key), encoded)
        except OSError as err:
            raise PersistenceError(f"Could not write {key}: {err}", key=key) from err

    def _remove(self, key: str) -> None:
        try:
            self._path_for(key).unlink(missing_ok=True)
        except OSError as err:
            raise PersistenceError(f"Could not remove {key}: {err}", key=key) from err

    async def get_item(self, key: str) -> Any | None:
        return await asyncio.to_thread(self._read, key)

    async def set_item(self, key: str, value: Any) -> None:
        await asyncio.to_thread(self._write, key, value)

    async def remove_item(self, key: str) -> None:
        await asyncio.to_thread(self._remove, key)


class FallbackStorage:
    """Synchronous, size-limited single-file medium (see module docstring)."""

    def __init__(self, path: str | Path, *, max_bytes: int = DEFAULT_FALLBACK_MAX_BYTES) -> None:
        self._path = Path(path)
        self._max_bytes = max_bytes

    @property
    def path(self) -> Path:
        return self._path

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    def save(self, snapshot: Mapping[str, Any]) -> None:
        encoded = encode_json(dict(snapshot))
        size = len(encoded.encode("utf-8"))
        if size > self._max_bytes:
            raise FallbackCapacityError(
                f"Fallback snapshot is {size} bytes, limit is {self._max_bytes}",
                key=str(self._path),
            )
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            _write_atomic(self._path, encoded)
        except OSError as err:
            raise PersistenceError(f"Could not write fallback {self._path}: {err}", key=str(self._path)) from err

    def load(self) -> dict[str, Any] | None:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as err:
            raise PersistenceError(f"Could not read fallback {self._path}: {err}", key=str(self._path)) from err
        try:
            data = json.loads(text)
        except json.JSONDecodeError as err:
            raise PersistenceError(f"Corrupt fallback {self._path}: {err}", key=str(self._path)) from err
        return data if isinstance(data, dict) else None

    def clear(self) -> None:
        self._path.unlink(missing_ok=True)
