"""Ingestion application helpers.

Turns a normalized batch into store writes:

- ``live.aircraft`` is replaced by a :class:`KeyedMap` of aircraft by hex,
  so subscribers to ``live.aircraft`` see one notification per batch;
- ``live.lastUpdateTimestamp`` and ``live.dataSource`` describe the batch;
- ``live.connectionStatus`` becomes ``"connected"``.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable

from skytrack.models.aircraft import Aircraft
from skytrack.state.nodes import KeyedMap
from skytrack.state.store import StateStore

AIRCRAFT_PATH = "live.aircraft"


def build_aircraft_map(aircraft: Iterable[Aircraft]) -> KeyedMap:
    """Keyed map of state dicts by hex; later duplicates win."""
    result = KeyedMap()
    for item in aircraft:
        result[item.hex] = item.to_state()
    return result


def apply_batch(
    store: StateStore,
    aircraft: Iterable[Aircraft],
    *,
    source: str | None = None,
    now: Callable[[], float] = time.time,
) -> KeyedMap:
    """Write one batch into the live subtree and return the written map."""
    aircraft_map = build_aircraft_map(aircraft)
    store.set("live.lastUpdateTimestamp", now())
    if source is not None:
        store.set("live.dataSource", source)
    store.set("live.connectionStatus", "connected")
    store.set(AIRCRAFT_PATH, aircraft_map)
    return aircraft_map
