"""Alert generation wired to the state store.

The manager subscribes to the live and user subtrees, derives alerts
(emergency squawks, watchlist appearances, connection problems, geofence
transitions), filters them through an :class:`AlertDeduplicator` and writes
the survivors back into the ``alerts`` subtree:

* ``alerts.active`` - keyed map of active alerts by id;
* ``alerts.history`` - bounded list of every alert raised;
* ``alerts.transitions`` - bounded list of geofence transitions;
* ``ui.alertCount`` - number of active alerts.

Consumers observe alerts by subscribing to ``alerts.*``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

from skytrack.alerts.dedup import AlertDeduplicator
from skytrack.geo.detector import GeofenceTransitionDetector
from skytrack.models.aircraft import EMERGENCY_SQUAWKS
from skytrack.models.alert import (
    Alert,
    AlertAction,
    AlertKind,
    AlertSeverity,
    GeofenceEvent,
    GeofenceEventKind,
    generate_alert_id,
)
from skytrack.state.nodes import ABSENT, KeyedMap
from skytrack.state.notifier import Subscription
from skytrack.state.store import StateStore

_logger = logging.getLogger(__name__)

ACTIVE_PATH = ("alerts", "active")
HISTORY_PATH = ("alerts", "history")
TRANSITIONS_PATH = ("alerts", "transitions")
COUNT_PATH = ("ui", "alertCount")

DEFAULT_MAX_ALERT_HISTORY = 1000
DEFAULT_MAX_TRANSITIONS = 500

_CONNECTION_ALERT_STATES = frozenset({"error", "offline"})


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _aircraft_summary(aircraft: Mapping[str, Any], *fields: str) -> dict[str, Any]:
    summary: dict[str, Any] = {"hex": aircraft.get("hex"), "callsign": aircraft.get("flight")}
    for name in fields:
        summary[name] = aircraft.get(name)
    return summary


def _callsign(aircraft: Mapping[str, Any]) -> str:
    return str(aircraft.get("flight") or aircraft.get("hex") or "unknown")


class AlertManager:
    """Derives alerts from state changes and writes them into the store."""

    def __init__(
        self,
        store: StateStore,
        *,
        detector: GeofenceTransitionDetector | None = None,
        deduplicator: AlertDeduplicator | None = None,
        clock: Callable[[], datetime] = _utcnow,
        max_history: int = DEFAULT_MAX_ALERT_HISTORY,
        max_transitions: int = DEFAULT_MAX_TRANSITIONS,
    ) -> None:
        self._store = store
        self._detector = detector if detector is not None else GeofenceTransitionDetector(clock=clock)
        self._dedup = deduplicator if deduplicator is not None else AlertDeduplicator()
        self._clock = clock
        self._max_history = max_history
        self._max_transitions = max_transitions
        self._emergency_squawks: dict[str, str] = {}
        self._subscriptions: list[Subscription] = []
        self._ensure_subtree()

    @property
    def detector(self) -> GeofenceTransitionDetector:
        return self._detector

    @property
    def deduplicator(self) -> AlertDeduplicator:
        return self._dedup

    def _ensure_subtree(self) -> None:
        if self._store.get(ACTIVE_PATH) is ABSENT:
            self._store.set(ACTIVE_PATH, KeyedMap())
        if self._store.get(HISTORY_PATH) is ABSENT:
            self._store.set(HISTORY_PATH, [])
        if self._store.get(TRANSITIONS_PATH) is ABSENT:
            self._store.set(TRANSITIONS_PATH, [])

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def attach(self) -> None:
        """Subscribe to the store. Idempotent."""
        if self._subscriptions:
            return
        self._subscriptions = [
            self._store.subscribe("live.aircraft", self._on_aircraft),
            self._store.subscribe("user.watchlist", self._on_watchlist),
            self._store.subscribe("user.geofences", self._on_geofences),
            self._store.subscribe("live.connectionStatus", self._on_connection_status),
        ]

    def detach(self) -> None:
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions = []

    # ------------------------------------------------------------------
    # Store callbacks
    # ------------------------------------------------------------------

    def _on_aircraft(self, _path: str, aircraft_map: Any, _old: Any) -> None:
        if not isinstance(aircraft_map, Mapping):
            return
        purged = self._dedup.purge_expired()
        if purged:
            _logger.debug("Purged %d expired alert cooldown(s)", purged)
        self.check_emergencies(aircraft_map)
        watchlist = self._store.get("user.watchlist")
        if isinstance(watchlist, list) and watchlist:
            self.check_watchlist(watchlist, aircraft_map)
        regions = self._store.get("user.geofences")
        if isinstance(regions, list):
            self.process_transitions(self._detector.evaluate(aircraft_map, regions), regions)

    def _on_watchlist(self, _path: str, watchlist: Any, _old: Any) -> None:
        if not isinstance(watchlist, list) or not watchlist:
            return
        aircraft_map = self._store.get("live.aircraft")
        if isinstance(aircraft_map, Mapping):
            self.check_watchlist(watchlist, aircraft_map)

    def _on_geofences(self, _path: str, regions: Any, _old: Any) -> None:
        self._detector.sync_regions(regions if isinstance(regions, list) else [])

    def _on_connection_status(self, _path: str, status: Any, _old: Any) -> None:
        if status in _CONNECTION_ALERT_STATES:
            self.check_connection_status(str(status))

    # ------------------------------------------------------------------
    # Alert triggers
    # ------------------------------------------------------------------

    def check_emergencies(self, aircraft_map: Mapping[str, Mapping[str, Any]]) -> list[Alert]:
        """Alert when an aircraft starts (or changes) an emergency squawk.

        Emergency alerts bypass deduplication; they are edge-triggered so a
        continuing emergency does not re-alert every cycle.
        """
        raised: list[Alert] = []
        current: dict[str, str] = {}
        for hex_code, aircraft in aircraft_map.items():
            squawk = aircraft.get("squawk")
            if squawk is None or str(squawk) not in EMERGENCY_SQUAWKS:
                continue
            squawk = str(squawk)
            current[hex_code] = squawk
            if self._emergency_squawks.get(hex_code) == squawk:
                continue
            key = AlertDeduplicator.make_key(AlertKind.EMERGENCY, hex_code, squawk)
            if self._dedup.check_and_mark(key, emergency=True):
                raised.append(self._raise(self._emergency_alert(aircraft, squawk)))
        self._emergency_squawks = current
        return raised

    def check_watchlist(
        self,
        watchlist: Iterable[str],
        aircraft_map: Mapping[str, Mapping[str, Any]],
    ) -> list[Alert]:
        raised: list[Alert] = []
        for hex_code in watchlist:
            aircraft = aircraft_map.get(str(hex_code).lower())
            if aircraft is None:
                continue
            key = AlertDeduplicator.make_key(AlertKind.WATCHLIST, str(hex_code).lower())
            if self._dedup.check_and_mark(key):
                raised.append(self._raise(self._watchlist_alert(aircraft)))
        return raised

    def check_connection_status(self, status: str) -> Alert | None:
        key = AlertDeduplicator.make_key("connection", status)
        if not self._dedup.check_and_mark(key):
            return None
        offline = status == "offline"
        return self._raise(
            Alert(
                id=generate_alert_id(AlertKind.SYSTEM),
                kind=AlertKind.SYSTEM,
                severity=AlertSeverity.HIGH if offline else AlertSeverity.MEDIUM,
                title="System Offline" if offline else "Connection Error",
                message=(
                    "Data feed is offline. Aircraft tracking unavailable."
                    if offline
                    else "Connection error occurred. Retrying..."
                ),
                timestamp=self._clock(),
                payload={"status": status},
            )
        )

    def process_transitions(
        self,
        events: Iterable[GeofenceEvent],
        regions: Iterable[Mapping[str, Any]] = (),
    ) -> list[Alert]:
        """Record transitions and raise alerts for the ones the region wants."""
        rules = {str(region.get("id")): region.get("alerts") or {} for region in regions if isinstance(region, Mapping)}
        raised: list[Alert] = []
        for event in events:
            self._record_transition(event)
            region_rules = rules.get(event.region_id, {})
            flag = "on_enter" if event.kind == GeofenceEventKind.ENTER else "on_exit"
            camel = "onEnter" if event.kind == GeofenceEventKind.ENTER else "onExit"
            if not region_rules.get(flag, region_rules.get(camel, True)):
                continue
            emergency = bool(event.entity.get("emergency"))
            if self._dedup.check_and_mark(event.dedup_key, emergency=emergency):
                raised.append(self._raise(self._geofence_alert(event)))
        return raised

    def create_test_alert(self) -> Alert:
        return self._raise(
            Alert(
                id=generate_alert_id(AlertKind.TEST),
                kind=AlertKind.TEST,
                severity=AlertSeverity.MEDIUM,
                title="Test Alert",
                message="This is a test alert to verify the system is working correctly.",
                timestamp=self._clock(),
            )
        )

    # ------------------------------------------------------------------
    # Alert builders
    # ------------------------------------------------------------------

    def _emergency_alert(self, aircraft: Mapping[str, Any], squawk: str) -> Alert:
        hex_code = str(aircraft.get("hex"))
        return Alert(
            id=generate_alert_id(AlertKind.EMERGENCY),
            kind=AlertKind.EMERGENCY,
            severity=AlertSeverity.CRITICAL,
            title=f"EMERGENCY - {EMERGENCY_SQUAWKS.get(squawk, 'Unknown Emergency')}",
            message=f"Aircraft {_callsign(aircraft)} is broadcasting emergency squawk {squawk}",
            timestamp=self._clock(),
            payload={"aircraft": _aircraft_summary(aircraft, "squawk", "lat", "lon", "altitude")},
            actions=(
                AlertAction(label="Track Aircraft", action="track", target=hex_code),
                AlertAction(label="Add to Watchlist", action="watchlist", target=hex_code),
            ),
        )

    def _watchlist_alert(self, aircraft: Mapping[str, Any]) -> Alert:
        hex_code = str(aircraft.get("hex"))
        return Alert(
            id=generate_alert_id(AlertKind.WATCHLIST),
            kind=AlertKind.WATCHLIST,
            severity=AlertSeverity.HIGH if aircraft.get("military") else AlertSeverity.MEDIUM,
            title="Watchlist Aircraft Appeared",
            message=f"{_callsign(aircraft)} from your watchlist is now visible",
            timestamp=self._clock(),
            payload={"aircraft": _aircraft_summary(aircraft, "military", "lat", "lon")},
            actions=(
                AlertAction(label="View Details", action="details", target=hex_code),
                AlertAction(label="Track on Map", action="track", target=hex_code),
            ),
        )

    def _geofence_alert(self, event: GeofenceEvent) -> Alert:
        entity = event.entity
        if entity.get("emergency"):
            severity = AlertSeverity.CRITICAL
        elif entity.get("military"):
            severity = AlertSeverity.HIGH
        else:
            severity = AlertSeverity.MEDIUM
        entered = event.kind == GeofenceEventKind.ENTER
        return Alert(
            id=generate_alert_id(AlertKind.GEOFENCE),
            kind=AlertKind.GEOFENCE,
            severity=severity,
            title=f"Aircraft {'Entered' if entered else 'Exited'} Geofence",
            message=f"{_callsign(entity)} {'entered' if entered else 'exited'} {event.region_name or event.region_id}",
            timestamp=event.detected_at,
            payload=event.model_dump(mode="json"),
            actions=(
                AlertAction(label="View Aircraft", action="details", target=event.entity_id),
                AlertAction(label="View Geofence", action="geofence", target=event.region_id),
            ),
        )

    # ------------------------------------------------------------------
    # Store writes
    # ------------------------------------------------------------------

    def _raise(self, alert: Alert) -> Alert:
        value = alert.to_state()
        self._store.set((*ACTIVE_PATH, alert.id), value)
        history = self._store.node(HISTORY_PATH)
        history.append(value)
        while len(history) > self._max_history:
            history.pop(0)
        self._update_count()
        _logger.info("Alert raised: %s (%s)", alert.title, alert.severity)
        return alert

    def _record_transition(self, event: GeofenceEvent) -> None:
        transitions = self._store.node(TRANSITIONS_PATH)
        transitions.append(event.model_dump(mode="json"))
        while len(transitions) > self._max_transitions:
            transitions.pop(0)

    def _update_count(self) -> None:
        active = self._store.get(ACTIVE_PATH)
        self._store.set(COUNT_PATH, len(active) if isinstance(active, Mapping) else 0)

    def dismiss(self, alert_id: str) -> bool:
        if self._store.get((*ACTIVE_PATH, alert_id)) is ABSENT:
            return False
        self._store.delete((*ACTIVE_PATH, alert_id))
        self._update_count()
        return True

    def clear_all(self) -> int:
        active = self._store.node(ACTIVE_PATH)
        count = len(active)
        if count:
            active.clear()
            self._update_count()
        return count

    def clear_history(self) -> None:
        self._store.node(HISTORY_PATH).clear()

    def active_alerts(self) -> list[Alert]:
        active = self._store.get(ACTIVE_PATH)
        if not isinstance(active, Mapping):
            return []
        return [Alert.model_validate(value) for value in active.values()]

    def statistics(self) -> dict[str, Any]:
        """Counts over the last 24 hours of alert history."""
        history = self._store.get(HISTORY_PATH)
        history = history if isinstance(history, list) else []
        cutoff = self._clock() - timedelta(hours=24)
        recent = [Alert.model_validate(value) for value in history]
        recent = [alert for alert in recent if alert.timestamp >= cutoff]
        severity_counts: dict[str, int] = {}
        kind_counts: dict[str, int] = {}
        for alert in recent:
            severity_counts[alert.severity.value] = severity_counts.get(alert.severity.value, 0) + 1
            kind_counts[alert.kind.value] = kind_counts.get(alert.kind.value, 0) + 1
        active = self._store.get(ACTIVE_PATH)
        return {
            "total": len(active) if isinstance(active, Mapping) else 0,
            "last_24h": len(recent),
            "total_history": len(history),
            "severity_counts": severity_counts,
            "kind_counts": kind_counts,
        }
