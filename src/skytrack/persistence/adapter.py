"""Per-path persistence of state subtrees.

Each persisted path is stored under its own key. Writes for different paths
are independent: one failing path never aborts the others, and a failed
write never rolls back in-memory state. There is no transaction across
paths, so callers must treat multi-path persistence as best effort.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict

from skytrack.exceptions import PersistenceError, SkytrackError, StorageUnavailableError
from skytrack.persistence.storage import FallbackStorage, KeyValueStorage
from skytrack.state.nodes import ABSENT
from skytrack.state.paths import format_path, parse_path
from skytrack.state.store import StateStore

_logger = logging.getLogger(__name__)

DEFAULT_PERSISTED_PATHS: tuple[str, ...] = ("user",)
DEFAULT_CRITICAL_PATHS: tuple[str, ...] = (
    "user.watchlist",
    "user.geofences",
    "user.settings",
    "user.preferences",
)


class PersistStatus(StrEnum):
    WRITTEN = "written"
    SKIPPED = "skipped"
    FAILED = "failed"


class PersistOutcome(BaseModel):
    """Result of persisting one path."""

    model_config = ConfigDict(frozen=True)

    path: str
    status: PersistStatus
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status != PersistStatus.FAILED


class PersistenceAdapter:
    """Save and restore store subtrees against a key-value medium.

    Parameters
    ----------
    store : StateStore
        Live state.
    storage : KeyValueStorage
        Primary async medium.
    fallback : FallbackStorage, optional
        Synchronous medium for the critical subset, used when the primary is
        unavailable.
    paths : sequence of str
        Paths restored by :meth:`load` and persisted by default.
    critical_paths : sequence of str
        Paths mirrored into the fallback medium.
    key_prefix : str
        Prepended to every storage key.
    """

    def __init__(
        self,
        store: StateStore,
        storage: KeyValueStorage,
        *,
        fallback: FallbackStorage | None = None,
        paths: Sequence[str] = DEFAULT_PERSISTED_PATHS,
        critical_paths: Sequence[str] = DEFAULT_CRITICAL_PATHS,
        key_prefix: str = "",
        on_error: Callable[[SkytrackError], None] | None = None,
    ) -> None:
        self._store = store
        self._storage = storage
        self._fallback = fallback
        self._paths = tuple(format_path(parse_path(path)) for path in paths)
        self._critical_paths = tuple(format_path(parse_path(path)) for path in critical_paths)
        self._key_prefix = key_prefix
        self._on_error = on_error

    def storage_key(self, path: str) -> str:
        return f"{self._key_prefix}{path}"

    def _report(self, err: SkytrackError) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(err)
        except Exception:
            _logger.exception("Error hook failed while reporting persistence failure")

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    async def persist(self, paths: Iterable[str] | None = None) -> list[PersistOutcome]:
        """Write each path's subtree under its own key, concurrently.

        Snapshots are cloned synchronously before the first suspension, so
        later mutations do not leak into this save. If no write succeeds and
        at least one failed, the critical subset goes to the fallback medium.
        """
        targets = [format_path(parse_path(path)) for path in (paths if paths is not None else self._paths)]
        snapshots = [(path, self._store.get(path)) for path in targets]
        outcomes = list(await asyncio.gather(*(self._write(path, value) for path, value in snapshots)))

        failed = [outcome for outcome in outcomes if outcome.status == PersistStatus.FAILED]
        written = [outcome for outcome in outcomes if outcome.status == PersistStatus.WRITTEN]
        if failed and not written and self._fallback is not None:
            _logger.warning("Primary storage failed for every path; saving critical subset to fallback")
            self.save_critical()
        return outcomes

    async def _write(self, path: str, value: Any) -> PersistOutcome:
        if value is ABSENT:
            return PersistOutcome(path=path, status=PersistStatus.SKIPPED)
        key = self.storage_key(path)
        try:
            await self._storage.set_item(key, value)
        except Exception as err:
            _logger.warning("Persisting %s failed: %s", path, err)
            failure = err if isinstance(err, PersistenceError) else PersistenceError(str(err), key=key)
            if failure is not err:
                failure.__cause__ = err
            self._report(failure)
            return PersistOutcome(path=path, status=PersistStatus.FAILED, error=str(err))
        _logger.debug("Persisted %s under %s", path, key)
        return PersistOutcome(path=path, status=PersistStatus.WRITTEN)

    def critical_snapshot(self) -> dict[str, Any]:
        snapshot: dict[str, Any] = {}
        for path in self._critical_paths:
            value = self._store.get(path)
            if value is not ABSENT:
                snapshot[path] = value
        return snapshot

    def save_critical(self) -> bool:
        """Synchronously mirror the critical subset into the fallback medium."""
        if self._fallback is None:
            return False
        try:
            self._fallback.save(self.critical_snapshot())
        except PersistenceError as err:
            _logger.warning("Fallback save failed: %s", err)
            self._report(err)
            return False
        return True

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    async def load(self) -> dict[str, Any]:
        """Restore persisted subtrees into the live tree.

        Each available subtree is shallow-merged over the current value at its
        path, so defaults survive for keys the saved copy lacks; paths with no
        saved copy keep their defaults entirely. Returns the merged values by
        path. Falls back to the fallback medium when the primary is
        unavailable.
        """
        results = await asyncio.gather(
            *(self._storage.get_item(self.storage_key(path)) for path in self._paths),
            return_exceptions=True,
        )

        if self._paths and all(isinstance(result, BaseException) for result in results):
            unavailable = any(isinstance(result, StorageUnavailableError) for result in results)
            _logger.warning(
                "Primary storage %s; loading fallback",
                "unavailable" if unavailable else "failed for every path",
            )
            for result in results:
                if isinstance(result, SkytrackError):
                    self._report(result)
            return self.load_fallback()

        restored: dict[str, Any] = {}
        for path, result in zip(self._paths, results, strict=True):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                _logger.warning("Loading %s failed: %s", path, result)
                self._report(
                    result if isinstance(result, PersistenceError) else PersistenceError(str(result), key=path)
                )
                continue
            if result is None:
                continue
            restored[path] = self._merge(path, result)
        _logger.debug("Restored persisted paths: %s", sorted(restored))
        return restored

    def load_fallback(self) -> dict[str, Any]:
        if self._fallback is None:
            return {}
        try:
            snapshot = self._fallback.load()
        except PersistenceError as err:
            _logger.warning("Fallback load failed: %s", err)
            self._report(err)
            return {}
        if not snapshot:
            return {}
        restored: dict[str, Any] = {}
        for path, value in snapshot.items():
            if path not in self._critical_paths:
                continue
            restored[path] = self._merge(path, value)
        return restored

    def _merge(self, path: str, value: Any) -> Any:
        current = self._store.get(path)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged = type(current)(current)
            merged.update(value)
        else:
            merged = value
        self._store.set(path, merged)
        return merged
