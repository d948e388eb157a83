"""Alert and geofence transition models."""

from __future__ import annotations

import secrets
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AlertSeverity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertKind(StrEnum):
    EMERGENCY = "emergency"
    WATCHLIST = "watchlist"
    GEOFENCE = "geofence"
    SYSTEM = "system"
    TEST = "test"


class GeofenceEventKind(StrEnum):
    ENTER = "enter"
    EXIT = "exit"


def generate_alert_id(kind: str) -> str:
    return f"{kind}-{secrets.token_hex(6)}"


class AlertAction(BaseModel):
    """Follow-up action offered with an alert (track, details, ...)."""

    model_config = ConfigDict(frozen=True)

    label: str
    action: str
    target: str


class Alert(BaseModel):
    """An alert written into the ``alerts`` subtree.

    Immutable once created; removed only by dismissal or clearing.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    kind: AlertKind
    severity: AlertSeverity
    title: str
    message: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    payload: dict[str, Any] = Field(default_factory=dict)
    actions: tuple[AlertAction, ...] = ()

    def to_state(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class GeofenceEvent(BaseModel):
    """One membership flip of an (entity, region) pair."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: GeofenceEventKind
    entity_id: str
    region_id: str
    region_name: str = ""
    detected_at: datetime
    entity: dict[str, Any] = Field(default_factory=dict)

    @property
    def dedup_key(self) -> str:
        return f"{self.kind}:{self.entity_id}:{self.region_id}"
