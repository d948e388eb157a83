"""Normalization helpers.

Centralizes defensive parsing of feed values and batch filtering.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

if TYPE_CHECKING:
    from skytrack.models.aircraft import Aircraft

_logger = logging.getLogger(__name__)

#: Aircraft not heard from for this many seconds are dropped from a batch.
MAX_SEEN_SECONDS = 60.0


def safe_float(value: Any) -> float | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def safe_int(value: Any) -> int | None:
    parsed = safe_float(value)
    if parsed is None:
        return None
    return int(parsed)


def safe_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text if text else None


def valid_coordinates(lat: Any, lon: Any) -> bool:
    """True for finite latitude/longitude inside their ranges."""
    lat_f = safe_float(lat)
    lon_f = safe_float(lon)
    if lat_f is None or lon_f is None:
        return False
    return -90.0 <= lat_f <= 90.0 and -180.0 <= lon_f <= 180.0


def normalize_timestamp_seconds(value: Any) -> float | None:
    """Normalize feed timestamps to epoch seconds.

    - Empty/missing -> None
    - <= 0 -> None
    - Milliseconds (> 1e11) -> seconds
    """

    ts = safe_float(value)
    if ts is None or ts <= 0:
        return None
    if ts > 1e11:
        ts /= 1000.0
    return ts


def normalize_batch(
    payload: Mapping[str, Any] | Iterable[Mapping[str, Any]] | None,
    *,
    source: str | None = None,
    max_seen: float = MAX_SEEN_SECONDS,
) -> list[Aircraft]:
    """Parse a raw feed payload into valid :class:`Aircraft` records.

    Accepts the ``{"ac": [...]}`` envelope or a bare list. Records without a
    hex address or a position fix, or not seen for ``max_seen`` seconds, are
    dropped. Records that fail validation are skipped individually.
    """
    from skytrack.models.aircraft import Aircraft

    if payload is None:
        return []
    if isinstance(payload, Mapping):
        records = payload.get("ac") or payload.get("aircraft") or []
        batch_ts = normalize_timestamp_seconds(payload.get("now") or payload.get("ctime"))
    else:
        records = payload
        batch_ts = None

    result: list[Aircraft] = []
    skipped = 0
    for record in records:
        if not isinstance(record, Mapping):
            skipped += 1
            continue
        data = dict(record)
        if source is not None:
            data.setdefault("source", source)
        if batch_ts is not None:
            data.setdefault("timestamp", batch_ts)
        try:
            aircraft = Aircraft.model_validate(data)
        except ValidationError:
            skipped += 1
            continue
        if not aircraft.has_position or not valid_coordinates(aircraft.lat, aircraft.lon):
            skipped += 1
            continue
        if aircraft.seen >= max_seen:
            skipped += 1
            continue
        result.append(aircraft)

    if skipped:
        _logger.debug("Normalized %d aircraft, skipped %d invalid or stale records", len(result), skipped)
    return result
