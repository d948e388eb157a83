"""High-level tracker composing store, persistence, geofencing and alerts."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiohttp

from skytrack import __version__
from skytrack.alerts.dedup import AlertDeduplicator
from skytrack.alerts.manager import AlertManager
from skytrack.config import TrackerConfig
from skytrack.exceptions import FeedError, SkytrackError
from skytrack.geo.detector import GeofenceTransitionDetector
from skytrack.ingestion.adsb import AdsbFeed
from skytrack.ingestion.apply import apply_batch
from skytrack.ingestion.normalize import normalize_batch
from skytrack.models.aircraft import Aircraft
from skytrack.models.geofence import Geofence, GeofenceAlertRules
from skytrack.persistence.adapter import PersistenceAdapter, PersistOutcome
from skytrack.persistence.storage import FallbackStorage, JsonDirectoryStorage, KeyValueStorage, MemoryStorage
from skytrack.state.history import HistoryEntry
from skytrack.state.nodes import ABSENT, KeyedMap, SequenceNode
from skytrack.state.notifier import SubscriberCallback, Subscription
from skytrack.state.paths import PathLike
from skytrack.state.store import StateStore

_logger = logging.getLogger(__name__)

MAX_APP_ERRORS = 50


def default_state(config: TrackerConfig) -> dict[str, Any]:
    """Initial tree: ``live``, ``ui``, ``user`` and ``app`` subtrees."""
    return {
        "live": {
            "aircraft": KeyedMap(),
            "lastUpdateTimestamp": None,
            "connectionStatus": "connecting",
            "dataSource": config.primary_source,
        },
        "ui": {
            "selectedAircraftHex": None,
            "map": {"center": [-98.5795, 39.8283], "zoom": 4, "style": "dark"},
            "isDetailsPanelOpen": False,
            "activeTab": "watchlist",
            "geofenceMode": False,
            "alertCount": 0,
        },
        "user": {
            "watchlist": [],
            "geofences": [],
            "settings": {
                "units": "imperial",
                "updateInterval": config.update_interval,
                "enableNotifications": True,
                "dataSource": config.primary_source,
            },
            "preferences": {"iconSize": "medium", "trailLength": 50},
        },
        "app": {
            "version": __version__,
            "lastStartTime": time.time(),
            "errors": [],
        },
    }


class SkyTracker:
    """Async aircraft tracker.

    Usage::

        async with SkyTracker(TrackerConfig.from_env()) as tracker:
            await tracker.load()
            tracker.subscribe("alerts.*", on_alert)
            tracker.start()
            ...

    Parameters
    ----------
    config : TrackerConfig
        Tracker configuration.
    session : aiohttp.ClientSession, optional
        HTTP session for the feed. Created (and closed) by the tracker when
        omitted.
    storage : KeyValueStorage, optional
        Primary persistence medium. Defaults to ``config.storage_dir`` or an
        in-memory medium.
    on_error : callable, optional
        Receives every isolated failure (subscriber, geometry, persistence).
    """

    def __init__(
        self,
        config: TrackerConfig | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
        storage: KeyValueStorage | None = None,
        fallback: FallbackStorage | None = None,
        on_error: Callable[[SkytrackError], None] | None = None,
        clock: Callable[[], datetime] | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config if config is not None else TrackerConfig()
        self._external_session = session is not None
        self._http_session = session
        self._feed: AdsbFeed | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._persist_tasks: set[asyncio.Task[list[PersistOutcome]]] = set()
        clock_kwargs: dict[str, Any] = {"clock": clock} if clock is not None else {}

        self.store = StateStore(
            default_state(self._config),
            history_capacity=self._config.history_capacity,
            on_error=on_error,
            max_dispatch_depth=self._config.max_dispatch_depth,
            max_deferred_rounds=self._config.max_deferred_rounds,
            **clock_kwargs,
        )
        self.detector = GeofenceTransitionDetector(on_error=on_error, **clock_kwargs)
        self.deduplicator = AlertDeduplicator(cooldown=self._config.alert_cooldown, clock=monotonic)
        self.alerts = AlertManager(
            self.store,
            detector=self.detector,
            deduplicator=self.deduplicator,
            max_history=self._config.max_alert_history,
            **clock_kwargs,
        )
        self.alerts.attach()

        if storage is None:
            storage = (
                JsonDirectoryStorage(self._config.storage_dir)
                if self._config.storage_dir is not None
                else MemoryStorage()
            )
        if fallback is None and self._config.fallback_file is not None:
            fallback = FallbackStorage(Path(self._config.fallback_file), max_bytes=self._config.fallback_max_bytes)
        self.persistence = PersistenceAdapter(self.store, storage, fallback=fallback, on_error=on_error)

        if self._config.persist_on_change:
            self.store.subscribe("user.*", self._schedule_persist)

    @property
    def config(self) -> TrackerConfig:
        return self._config

    @property
    def feed(self) -> AdsbFeed | None:
        return self._feed

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> SkyTracker:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        self._feed = AdsbFeed(self._config, self._http_session)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()
        if self._persist_tasks:
            await asyncio.gather(*self._persist_tasks, return_exceptions=True)
        self.save_critical()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self._feed = None

    def _require_feed(self) -> AdsbFeed:
        if self._feed is None:
            raise SkytrackError("Tracker not initialized. Use 'async with SkyTracker(...) as tracker:'")
        return self._feed

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def refresh(self) -> list[Aircraft]:
        """Run one poll cycle. Feed failures are recorded, not raised."""
        feed = self._require_feed()
        try:
            aircraft = await feed.fetch()
        except FeedError as err:
            _logger.warning("Feed poll failed: %s", err)
            self._record_error(err)
            self.store.set("live.connectionStatus", "error")
            self.store.set("live.dataSource", feed.current_source.name)
            return []
        apply_batch(self.store, aircraft, source=feed.current_source.name)
        return aircraft

    def ingest(self, payload: Any, *, source: str | None = None) -> list[Aircraft]:
        """Normalize and apply a raw feed payload received out of band."""
        aircraft = normalize_batch(payload, source=source, max_seen=self._config.max_seen)
        apply_batch(self.store, aircraft, source=source)
        return aircraft

    async def _poll_loop(self) -> None:
        while True:
            await self.refresh()
            await asyncio.sleep(self._config.update_interval)

    def start(self) -> None:
        """Start background polling. Idempotent."""
        self._require_feed()
        if self._poll_task is not None and not self._poll_task.done():
            return
        self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop())

    async def stop(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    @property
    def running(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def _record_error(self, err: Exception) -> None:
        errors = self.store.node("app.errors")
        if not isinstance(errors, SequenceNode):
            return
        errors.append(
            {
                "timestamp": datetime.now(UTC).isoformat(),
                "type": type(err).__name__,
                "message": str(err),
            }
        )
        while len(errors) > MAX_APP_ERRORS:
            errors.pop(0)

    # ------------------------------------------------------------------
    # Geofences
    # ------------------------------------------------------------------

    def _geofences(self) -> SequenceNode:
        node = self.store.node("user.geofences")
        if not isinstance(node, SequenceNode):
            raise SkytrackError("user.geofences is not a list")
        return node

    def _geofence_index(self, geofence_id: str) -> int | None:
        for index, region in enumerate(self._geofences().to_value()):
            if isinstance(region, Mapping) and region.get("id") == geofence_id:
                return index
        return None

    def add_geofence(
        self,
        name: str,
        geojson: Mapping[str, Any],
        *,
        on_enter: bool = True,
        on_exit: bool = True,
    ) -> Geofence:
        geofence = Geofence(
            name=name,
            geojson=dict(geojson),
            alerts=GeofenceAlertRules(on_enter=on_enter, on_exit=on_exit),
        )
        self._geofences().append(geofence.to_state())
        _logger.info("Geofence created: %s", geofence.display_name())
        return geofence

    def toggle_geofence(self, geofence_id: str) -> bool | None:
        """Flip ``active``; returns the new value, ``None`` if not found."""
        index = self._geofence_index(geofence_id)
        if index is None:
            return None
        geofences = self._geofences()
        region = geofences.get(index)
        region["active"] = region.get("active") is False
        geofences.set(index, region)
        return region["active"]

    def delete_geofence(self, geofence_id: str) -> bool:
        index = self._geofence_index(geofence_id)
        if index is None:
            return False
        self._geofences().pop(index)
        self.detector.remove_region(geofence_id)
        _logger.info("Geofence deleted: %s", geofence_id)
        return True

    def get_geofences(self) -> list[Geofence]:
        regions = self.store.get("user.geofences")
        return [Geofence.model_validate(region) for region in regions] if isinstance(regions, list) else []

    def export_geofences(self) -> str:
        return json.dumps(
            {
                "version": "1.0",
                "exported": datetime.now(UTC).isoformat(),
                "geofences": self.store.get("user.geofences") or [],
            },
            indent=2,
        )

    def import_geofences(self, data: str | Mapping[str, Any] | Iterable[Mapping[str, Any]]) -> int:
        """Append geofences from an export document; returns how many were added.

        Entries that fail validation or duplicate an existing id are skipped.
        """
        if isinstance(data, str):
            data = json.loads(data)
        entries = data.get("geofences", []) if isinstance(data, Mapping) else list(data)
        existing = {region.id for region in self.get_geofences()}
        accepted: list[dict[str, Any]] = []
        for entry in entries:
            try:
                geofence = Geofence.model_validate(entry)
            except ValueError as err:
                _logger.warning("Skipping invalid geofence on import: %s", err)
                continue
            if geofence.id in existing:
                continue
            existing.add(geofence.id)
            accepted.append(geofence.to_state())
        if accepted:
            self._geofences().extend(accepted)
        return len(accepted)

    # ------------------------------------------------------------------
    # Watchlist
    # ------------------------------------------------------------------

    def add_to_watchlist(self, hex_code: str) -> bool:
        hex_code = hex_code.strip().lower()
        watchlist = self.store.node("user.watchlist")
        if not isinstance(watchlist, SequenceNode) or hex_code in watchlist.to_value():
            return False
        watchlist.append(hex_code)
        return True

    def remove_from_watchlist(self, hex_code: str) -> bool:
        hex_code = hex_code.strip().lower()
        watchlist = self.store.node("user.watchlist")
        if not isinstance(watchlist, SequenceNode) or hex_code not in watchlist.to_value():
            return False
        watchlist.remove(hex_code)
        return True

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def load(self) -> dict[str, Any]:
        """Restore persisted user data over the defaults."""
        restored = await self.persistence.load()
        self.detector.sync_regions(self.store.get("user.geofences") or [])
        return restored

    async def persist_state(self, paths: Iterable[str] | None = None) -> list[PersistOutcome]:
        return await self.persistence.persist(paths)

    def save_critical(self) -> bool:
        return self.persistence.save_critical()

    def _schedule_persist(self, _path: str, _new: Any, _old: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self.persistence.persist())
        self._persist_tasks.add(task)
        task.add_done_callback(self._persist_tasks.discard)

    # ------------------------------------------------------------------
    # Consumer API
    # ------------------------------------------------------------------

    def get_state(self) -> dict[str, Any]:
        return self.store.get_state()

    def get_state_at(self, path: PathLike) -> Any:
        return self.store.get_state_at(path)

    def set_state(self, path: PathLike, value: Any) -> None:
        self.store.set_state(path, value)

    def subscribe(self, pattern: str, callback: SubscriberCallback) -> Subscription:
        return self.store.subscribe(pattern, callback)

    def get_history(self) -> list[HistoryEntry]:
        return self.store.get_history()

    def get_aircraft(self, hex_code: str) -> dict[str, Any] | None:
        value = self.store.get(("live", "aircraft", hex_code.strip().lower()))
        return None if value is ABSENT else value
