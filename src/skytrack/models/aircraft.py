"""Aircraft position record model."""

from __future__ import annotations

import time
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from skytrack.ingestion.normalize import safe_float, safe_int, safe_str

EMERGENCY_SQUAWKS: dict[str, str] = {
    "7500": "HIJACKING",
    "7600": "COMMUNICATION FAILURE",
    "7700": "GENERAL EMERGENCY",
}

# ICAO 24-bit address blocks allocated to military operators.
MILITARY_RANGES: dict[str, tuple[tuple[int, int], ...]] = {
    "US_MILITARY": ((0xAE0000, 0xAEFFFF), (0xA00000, 0xA3FFFF)),
    "UK_MILITARY": ((0x400000, 0x43FFFF),),
}


def is_emergency_squawk(squawk: Any) -> bool:
    return squawk is not None and str(squawk) in EMERGENCY_SQUAWKS


def military_branch(hex_code: str | None) -> str | None:
    """Military range label for an ICAO hex address, if any."""
    if not hex_code:
        return None
    try:
        icao = int(hex_code, 16)
    except ValueError:
        return None
    for label, ranges in MILITARY_RANGES.items():
        for start, end in ranges:
            if start <= icao <= end:
                return label
    return None


class Aircraft(BaseModel):
    """Normalized aircraft record from an ADS-B feed.

    Parameters
    ----------
    hex : str
        ICAO 24-bit address (lower-case hex), the stable identifier.
    flight : str or None
        Callsign, whitespace stripped.
    lat, lon : float or None
        Position in degrees. ``None`` when the feed has no position fix.
    altitude : float or None
        Barometric altitude, falling back to geometric. ``"ground"`` maps to 0.
    military : bool
        Flagged military by the feed or by ICAO address range.
    emergency : bool
        Squawking 7500, 7600 or 7700.
    raw : dict
        Original feed record.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    hex: str
    flight: str | None = None
    registration: str | None = Field(default=None, validation_alias=AliasChoices("registration", "r"))
    lat: float | None = None
    lon: float | None = None
    altitude: float | None = Field(default=None, validation_alias=AliasChoices("altitude", "alt_baro", "alt_geom"))
    ground_speed: float | None = Field(default=None, validation_alias=AliasChoices("ground_speed", "gs"))
    track: float | None = None
    vertical_rate: float | None = Field(
        default=None,
        validation_alias=AliasChoices("vertical_rate", "baro_rate", "geom_rate"),
    )
    squawk: str | None = None
    seen: float = 0.0
    seen_pos: float | None = None
    category: str | None = None
    military: bool = Field(default=False, validation_alias=AliasChoices("military", "mil"))
    emergency: bool = False
    source: str | None = None
    timestamp: float = Field(default_factory=time.time)
    raw: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _prepare(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        merged = dict(values)
        merged.setdefault("raw", values)
        # Prefer barometric altitude; fall back to geometric when it is missing.
        if merged.get("alt_baro") in (None, "") and "alt_geom" in merged and "altitude" not in merged:
            merged["altitude"] = merged.get("alt_geom")
        if merged.get("baro_rate") is None and "geom_rate" in merged and "vertical_rate" not in merged:
            merged["vertical_rate"] = merged.get("geom_rate")
        return merged

    @model_validator(mode="after")
    def _derive_flags(self) -> Aircraft:
        if not self.emergency and is_emergency_squawk(self.squawk):
            object.__setattr__(self, "emergency", True)
        if not self.military and military_branch(self.hex) is not None:
            object.__setattr__(self, "military", True)
        return self

    @field_validator("hex", mode="before")
    @classmethod
    def _normalize_hex(cls, value: Any) -> str:
        text = safe_str(value)
        if text is None or not text.strip():
            raise ValueError("hex must be non-empty")
        return text.strip().lower()

    @field_validator("flight", "registration", "category", mode="before")
    @classmethod
    def _strip_text(cls, value: Any) -> str | None:
        text = safe_str(value)
        if text is None:
            return None
        text = text.strip()
        return text or None

    @field_validator("squawk", mode="before")
    @classmethod
    def _coerce_squawk(cls, value: Any) -> str | None:
        if isinstance(value, int):
            return f"{value:04d}"
        return safe_str(value)

    @field_validator("lat", "lon", "ground_speed", "track", "vertical_rate", "seen_pos", mode="before")
    @classmethod
    def _coerce_floats(cls, value: Any) -> float | None:
        return safe_float(value)

    @field_validator("altitude", mode="before")
    @classmethod
    def _coerce_altitude(cls, value: Any) -> float | None:
        if isinstance(value, str) and value.strip().lower() == "ground":
            return 0.0
        return safe_float(value)

    @field_validator("seen", mode="before")
    @classmethod
    def _coerce_seen(cls, value: Any) -> float:
        parsed = safe_float(value)
        return 0.0 if parsed is None else parsed

    @field_validator("military", "emergency", mode="before")
    @classmethod
    def _coerce_flag(cls, value: Any) -> bool:
        if value is None:
            return False
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes"}
        return bool(safe_int(value)) if not isinstance(value, bool) else value

    @property
    def callsign(self) -> str:
        return self.flight or self.hex

    @property
    def has_position(self) -> bool:
        return self.lat is not None and self.lon is not None

    @property
    def emergency_type(self) -> str | None:
        if self.squawk is None:
            return None
        return EMERGENCY_SQUAWKS.get(self.squawk)

    def to_state(self) -> dict[str, Any]:
        """Plain dict written into the state tree (``raw`` excluded)."""
        return self.model_dump(exclude={"raw"})
