"""Geofence region model."""

from __future__ import annotations

import secrets
from datetime import UTC, datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def generate_geofence_id() -> str:
    return f"gf_{int(datetime.now(UTC).timestamp() * 1000)}_{secrets.token_hex(5)}"


class GeofenceAlertRules(BaseModel):
    """Which transitions of a geofence raise alerts."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    on_enter: bool = Field(default=True, validation_alias=AliasChoices("on_enter", "onEnter"))
    on_exit: bool = Field(default=True, validation_alias=AliasChoices("on_exit", "onExit"))


class Geofence(BaseModel):
    """A named region watched for enter/exit transitions.

    ``geojson`` is a GeoJSON ``Polygon`` or ``MultiPolygon`` geometry with
    ``[lon, lat]`` positions. Geometry is validated lazily by the geometry
    engine so one malformed region never blocks loading the others.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    id: str = Field(default_factory=generate_geofence_id)
    name: str = ""
    geojson: dict[str, Any] | None = None
    active: bool = True
    created: datetime = Field(default_factory=lambda: datetime.now(UTC))
    alerts: GeofenceAlertRules = Field(default_factory=GeofenceAlertRules)

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> str:
        text = str(value).strip() if value is not None else ""
        if not text:
            raise ValueError("geofence id must be non-empty")
        return text

    @field_validator("active", mode="before")
    @classmethod
    def _default_active(cls, value: Any) -> bool:
        # Only an explicit ``false`` disables a geofence.
        return value is not False

    def display_name(self) -> str:
        return self.name or self.id

    def to_state(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
