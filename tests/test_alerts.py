from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from skytrack.alerts.dedup import AlertDeduplicator
from skytrack.alerts.manager import AlertManager
from skytrack.models.alert import AlertKind, AlertSeverity
from skytrack.state.nodes import KeyedMap
from skytrack.state.store import StateStore


class _FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _dt() -> datetime:
    return datetime(2026, 1, 1, tzinfo=UTC)


def _square(**alerts: bool) -> dict[str, Any]:
    return {
        "id": "r1",
        "name": "Base",
        "geojson": {"type": "Polygon", "coordinates": [[[0, 0], [10, 0], [10, 10], [0, 10], [0, 0]]]},
        "alerts": alerts,
    }


def _setup(**kwargs: Any) -> tuple[StateStore, AlertManager, _FakeClock]:
    store = StateStore(
        {
            "live": {"aircraft": KeyedMap(), "connectionStatus": "connecting"},
            "ui": {"alertCount": 0},
            "user": {"watchlist": [], "geofences": []},
        }
    )
    monotonic = _FakeClock()
    manager = AlertManager(store, deduplicator=AlertDeduplicator(clock=monotonic), clock=_dt, **kwargs)
    manager.attach()
    return store, manager, monotonic


def _aircraft(hex_code: str, *, lat: float = 50.0, lon: float = 50.0, **extra: Any) -> KeyedMap:
    return KeyedMap({hex_code: {"hex": hex_code, "flight": "TEST1", "lat": lat, "lon": lon, **extra}})


def test_emergency_squawk_raises_critical_alert_once() -> None:
    store, manager, _ = _setup()

    store.set("live.aircraft", _aircraft("abc123", squawk="7700"))
    store.set("live.aircraft", _aircraft("abc123", squawk="7700"))

    active = manager.active_alerts()
    assert len(active) == 1
    assert active[0].kind == AlertKind.EMERGENCY
    assert active[0].severity == AlertSeverity.CRITICAL
    assert "GENERAL EMERGENCY" in active[0].title
    assert store.get("ui.alertCount") == 1


def test_changed_emergency_squawk_alerts_again() -> None:
    store, manager, _ = _setup()

    store.set("live.aircraft", _aircraft("abc123", squawk="7700"))
    store.set("live.aircraft", _aircraft("abc123", squawk="7600"))

    assert len(manager.active_alerts()) == 2


def test_watchlist_alert_is_deduplicated_until_cooldown_expires() -> None:
    store, manager, monotonic = _setup()
    store.set("user.watchlist", ["abc123"])

    store.set("live.aircraft", _aircraft("abc123"))
    store.set("live.aircraft", _aircraft("abc123"))
    assert len(manager.active_alerts()) == 1

    monotonic.now += 300
    store.set("live.aircraft", _aircraft("abc123"))
    assert len(manager.active_alerts()) == 2


def test_watchlist_military_aircraft_is_high_severity() -> None:
    store, manager, _ = _setup()
    store.set("live.aircraft", _aircraft("ae1234", military=True))

    store.set("user.watchlist", ["AE1234"])

    (alert,) = manager.active_alerts()
    assert alert.kind == AlertKind.WATCHLIST
    assert alert.severity == AlertSeverity.HIGH


def test_geofence_transitions_are_recorded_and_alerted_per_rules() -> None:
    store, manager, _ = _setup()
    store.set("user.geofences", [_square(on_exit=False)])

    store.set("live.aircraft", _aircraft("abc123", lat=5, lon=5))
    store.set("live.aircraft", _aircraft("abc123", lat=50, lon=50))

    transitions = store.get("alerts.transitions")
    assert [t["kind"] for t in transitions] == ["enter", "exit"]
    (alert,) = manager.active_alerts()
    assert alert.kind == AlertKind.GEOFENCE
    assert alert.title == "Aircraft Entered Geofence"
    assert alert.payload["region_id"] == "r1"


def test_geofence_alert_respects_camel_case_rules() -> None:
    store, manager, _ = _setup()
    store.set("user.geofences", [{**_square(), "alerts": {"onEnter": False}}])

    store.set("live.aircraft", _aircraft("abc123", lat=5, lon=5))

    assert manager.active_alerts() == []
    assert len(store.get("alerts.transitions")) == 1


def test_connection_error_raises_system_alert_once() -> None:
    store, manager, _ = _setup()

    store.set("live.connectionStatus", "error")
    store.set("live.connectionStatus", "error")
    store.set("live.connectionStatus", "connected")

    (alert,) = manager.active_alerts()
    assert alert.kind == AlertKind.SYSTEM
    assert alert.payload == {"status": "error"}


def test_alerts_are_observable_through_alerts_subtree() -> None:
    store, manager, _ = _setup()
    seen: list[str] = []
    store.subscribe("alerts.*", lambda path, _new, _old: seen.append(path))

    alert = manager.create_test_alert()

    assert f"alerts.active.{alert.id}" in seen
    assert "alerts.history" in seen


def test_dismiss_and_clear_all_update_count() -> None:
    store, manager, _ = _setup()
    first = manager.create_test_alert()
    manager.create_test_alert()
    manager.create_test_alert()

    assert manager.dismiss(first.id)
    assert not manager.dismiss(first.id)
    assert store.get("ui.alertCount") == 2

    assert manager.clear_all() == 2
    assert store.get("ui.alertCount") == 0
    assert len(store.get("alerts.history")) == 3


def test_history_is_bounded() -> None:
    store, manager, _ = _setup(max_history=3)
    for _ in range(5):
        manager.create_test_alert()

    assert len(store.get("alerts.history")) == 3
    manager.clear_history()
    assert store.get("alerts.history") == []


def test_statistics_counts_recent_alerts() -> None:
    store, manager, _ = _setup()
    store.set("live.aircraft", _aircraft("abc123", squawk="7500"))
    manager.create_test_alert()

    stats = manager.statistics()

    assert stats["total"] == 2
    assert stats["last_24h"] == 2
    assert stats["severity_counts"] == {"critical": 1, "medium": 1}
    assert stats["kind_counts"] == {"emergency": 1, "test": 1}


def test_detach_stops_reacting() -> None:
    store, manager, _ = _setup()
    manager.detach()

    store.set("live.aircraft", _aircraft("abc123", squawk="7700"))

    assert manager.active_alerts() == []


def test_expired_cooldowns_are_purged_on_next_batch() -> None:
    store, manager, monotonic = _setup()
    store.set("user.watchlist", ["abc123"])
    store.set("live.aircraft", _aircraft("abc123"))
    assert len(manager.deduplicator) == 1

    monotonic.now += 300
    store.set("live.aircraft", _aircraft("def456"))

    assert len(manager.deduplicator) == 0
