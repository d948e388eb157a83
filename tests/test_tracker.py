from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from skytrack.config import DataSource, TrackerConfig
from skytrack.models.alert import AlertKind
from skytrack.persistence.storage import MemoryStorage
from skytrack.state.nodes import KeyedMap
from skytrack.tracker import SkyTracker


class _FakeResponse:
    def __init__(self, status: int, body: str) -> None:
        self.status = status
        self._body = body

    async def text(self) -> str:
        return self._body

    async def __aenter__(self) -> _FakeResponse:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None


class _FakeSession:
    def __init__(self, responses: list[_FakeResponse]) -> None:
        self.responses = list(responses)
        self.closed = False

    def get(self, url: str, **kwargs: Any) -> _FakeResponse:
        return self.responses.pop(0)

    async def close(self) -> None:  # pragma: no cover
        self.closed = True


SQUARE = {"type": "Polygon", "coordinates": [[[0, 0], [10, 0], [10, 10], [0, 10], [0, 0]]]}


def _config(**overrides: Any) -> TrackerConfig:
    return TrackerConfig(
        primary_source="primary",
        sources=(DataSource(name="primary", base_url="https://primary.example/v2"),),
        **overrides,
    )


def _payload(*aircraft: dict[str, Any]) -> str:
    return json.dumps({"ac": list(aircraft)})


def test_initial_state_layout() -> None:
    tracker = SkyTracker(_config())
    state = tracker.get_state()

    assert set(state) >= {"live", "ui", "user", "app", "alerts"}
    assert isinstance(state["live"]["aircraft"], KeyedMap)
    assert state["live"]["connectionStatus"] == "connecting"
    assert state["user"]["watchlist"] == []
    assert state["ui"]["alertCount"] == 0


@pytest.mark.asyncio
async def test_refresh_applies_batch_and_raises_geofence_alert() -> None:
    session = _FakeSession([_FakeResponse(200, _payload({"hex": "abc123", "lat": 5, "lon": 5}))])
    async with SkyTracker(_config(), session=session) as tracker:  # type: ignore[arg-type]
        tracker.add_geofence("Base", SQUARE)

        batch = await tracker.refresh()

        assert [aircraft.hex for aircraft in batch] == ["abc123"]
        assert tracker.get_aircraft("ABC123") is not None
        assert tracker.get_state_at("live.dataSource") == "primary"
        alerts = tracker.alerts.active_alerts()
        assert [alert.kind for alert in alerts] == [AlertKind.GEOFENCE]
    assert not session.closed


@pytest.mark.asyncio
async def test_refresh_failure_sets_error_status() -> None:
    session = _FakeSession([_FakeResponse(502, "bad gateway")])
    async with SkyTracker(_config(), session=session) as tracker:  # type: ignore[arg-type]
        assert await tracker.refresh() == []

        assert tracker.get_state_at("live.connectionStatus") == "error"
        errors = tracker.get_state_at("app.errors")
        assert errors[0]["type"] == "FeedError"
        assert any(alert.kind == AlertKind.SYSTEM for alert in tracker.alerts.active_alerts())


def test_ingest_without_network() -> None:
    tracker = SkyTracker(_config())
    tracker.add_to_watchlist("ABC123")

    tracker.ingest({"ac": [{"hex": "abc123", "lat": 50, "lon": 50}]}, source="replay")

    assert tracker.get_state_at("live.dataSource") == "replay"
    assert [alert.kind for alert in tracker.alerts.active_alerts()] == [AlertKind.WATCHLIST]


def test_watchlist_add_and_remove() -> None:
    tracker = SkyTracker(_config())

    assert tracker.add_to_watchlist(" ABC123 ")
    assert not tracker.add_to_watchlist("abc123")
    assert tracker.get_state_at("user.watchlist") == ["abc123"]
    assert tracker.remove_from_watchlist("ABC123")
    assert not tracker.remove_from_watchlist("abc123")


def test_geofence_toggle_delete_and_export_import() -> None:
    tracker = SkyTracker(_config())
    geofence = tracker.add_geofence("Base", SQUARE, on_exit=False)

    assert tracker.toggle_geofence(geofence.id) is False
    assert tracker.get_geofences()[0].active is False
    assert tracker.toggle_geofence(geofence.id) is True
    assert tracker.toggle_geofence("missing") is None

    exported = tracker.export_geofences()
    assert tracker.delete_geofence(geofence.id)
    assert not tracker.delete_geofence(geofence.id)
    assert tracker.get_geofences() == []

    assert tracker.import_geofences(exported) == 1
    assert tracker.import_geofences(exported) == 0
    (restored,) = tracker.get_geofences()
    assert restored.id == geofence.id
    assert restored.alerts.on_exit is False


def test_import_skips_invalid_entries() -> None:
    tracker = SkyTracker(_config())
    assert tracker.import_geofences([{"id": "", "name": "broken"}, {"id": "ok", "geojson": SQUARE}]) == 1


@pytest.mark.asyncio
async def test_persist_and_reload_user_data() -> None:
    storage = MemoryStorage()
    tracker = SkyTracker(_config(), storage=storage)
    tracker.add_to_watchlist("abc123")
    tracker.add_geofence("Base", SQUARE)
    tracker.set_state("user.settings.units", "metric")

    outcomes = await tracker.persist_state()
    assert all(outcome.ok for outcome in outcomes)

    restarted = SkyTracker(_config(), storage=storage)
    await restarted.load()

    assert restarted.get_state_at("user.watchlist") == ["abc123"]
    assert restarted.get_state_at("user.settings.units") == "metric"
    assert restarted.get_state_at("user.settings.enableNotifications") is True
    assert len(restarted.get_geofences()) == 1


def test_save_critical_writes_fallback(tmp_path: Path) -> None:
    tracker = SkyTracker(_config(fallback_file=str(tmp_path / "critical.json")))
    tracker.add_to_watchlist("abc123")

    assert tracker.save_critical()
    saved = json.loads((tmp_path / "critical.json").read_text(encoding="utf-8"))
    assert saved["user.watchlist"] == ["abc123"]


def test_subscribe_and_history_pass_through() -> None:
    tracker = SkyTracker(_config())
    seen: list[str] = []
    handle = tracker.subscribe("ui.*", lambda path, _new, _old: seen.append(path))

    tracker.set_state("ui.selectedAircraftHex", "abc123")
    handle.cancel()
    tracker.set_state("ui.selectedAircraftHex", None)

    assert seen == ["ui.selectedAircraftHex"]
    assert tracker.get_history()[-1].path == "ui.selectedAircraftHex"


@pytest.mark.asyncio
async def test_refresh_requires_context_manager() -> None:
    tracker = SkyTracker(_config())
    with pytest.raises(Exception, match="not initialized"):
        await tracker.refresh()
