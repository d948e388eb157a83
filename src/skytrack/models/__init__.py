"""Data models for skytrack."""

from skytrack.models.aircraft import EMERGENCY_SQUAWKS, Aircraft, is_emergency_squawk, military_branch
from skytrack.models.alert import (
    Alert,
    AlertAction,
    AlertKind,
    AlertSeverity,
    GeofenceEvent,
    GeofenceEventKind,
)
from skytrack.models.geofence import Geofence, GeofenceAlertRules

__all__ = [
    "EMERGENCY_SQUAWKS",
    "Aircraft",
    "Alert",
    "AlertAction",
    "AlertKind",
    "AlertSeverity",
    "Geofence",
    "GeofenceAlertRules",
    "GeofenceEvent",
    "GeofenceEventKind",
    "is_emergency_squawk",
    "military_branch",
]
