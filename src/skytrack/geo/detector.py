"""Geofence enter/exit transition detection.

The detector keeps one boolean per (entity, region) pair saying whether the
entity was inside the region at the last evaluation. Each call to
:meth:`GeofenceTransitionDetector.evaluate` recomputes containment for every
entity with a valid position against every active region and emits an event
only where that boolean flips.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from skytrack.exceptions import GeometryEvaluationError, SkytrackError
from skytrack.geo.geometry import BoundingBox, GeometryEngine, PlanarGeometry
from skytrack.ingestion.normalize import safe_float, valid_coordinates
from skytrack.models.aircraft import Aircraft
from skytrack.models.alert import GeofenceEvent, GeofenceEventKind
from skytrack.models.geofence import Geofence

_logger = logging.getLogger(__name__)

EntityInput = Aircraft | Mapping[str, Any]
RegionInput = Geofence | Mapping[str, Any]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _entity_items(entities: Iterable[EntityInput] | Mapping[str, EntityInput]) -> list[tuple[str, dict[str, Any]]]:
    """(entity_id, snapshot) pairs in input order."""
    if isinstance(entities, Mapping):
        pairs: Iterable[tuple[str | None, Any]] = entities.items()
    else:
        pairs = ((None, entity) for entity in entities)

    items: list[tuple[str, dict[str, Any]]] = []
    for key, entity in pairs:
        if isinstance(entity, Aircraft):
            snapshot = entity.to_state()
        elif isinstance(entity, Mapping):
            snapshot = copy.deepcopy(dict(entity))
        else:
            continue
        entity_id = key if key is not None else snapshot.get("hex") or snapshot.get("id")
        if not entity_id:
            continue
        items.append((str(entity_id), snapshot))
    return items


class GeofenceTransitionDetector:
    """Stateful enter/exit detector.

    Parameters
    ----------
    geometry : GeometryEngine, optional
        Containment collaborator. Defaults to :class:`PlanarGeometry`.
    clock : callable, optional
        Source of detection timestamps.
    on_error : callable, optional
        Receives a :class:`GeometryEvaluationError` for every region skipped
        during a cycle.
    """

    def __init__(
        self,
        geometry: GeometryEngine | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
        on_error: Callable[[SkytrackError], None] | None = None,
    ) -> None:
        self._geometry = geometry if geometry is not None else PlanarGeometry()
        self._clock = clock
        self._on_error = on_error
        self._membership: dict[tuple[str, str], bool] = {}

    def evaluate(
        self,
        entities: Iterable[EntityInput] | Mapping[str, EntityInput],
        regions: Iterable[RegionInput],
    ) -> list[GeofenceEvent]:
        """Evaluate one cycle and return the transitions, in input order.

        *regions* is the complete current region set: memberships of regions
        that no longer appear in it are discarded. Inactive regions are not
        evaluated but keep their memberships.
        """
        parsed_regions, malformed_ids = self._parse_regions(regions)
        self._prune({region.id for region in parsed_regions} | malformed_ids)

        evaluable: list[tuple[Geofence, BoundingBox]] = []
        for region in parsed_regions:
            if not region.active:
                continue
            if region.geojson is None:
                self._skip(region, GeometryEvaluationError("region has no geometry", region_id=region.id))
                continue
            try:
                bounds = self._geometry.region_bounds(region.geojson)
            except GeometryEvaluationError as err:
                err.region_id = region.id
                self._skip(region, err)
                continue
            evaluable.append((region, bounds))

        if not evaluable:
            return []

        now = self._clock()
        events: list[GeofenceEvent] = []
        broken: set[str] = set()
        for entity_id, snapshot in _entity_items(entities):
            lat, lon = snapshot.get("lat"), snapshot.get("lon")
            if not valid_coordinates(lat, lon):
                continue
            point = (safe_float(lon), safe_float(lat))
            for region, bounds in evaluable:
                if region.id in broken:
                    continue
                try:
                    inside = bounds.contains(point) and self._geometry.point_in_region(point, region.geojson)
                except GeometryEvaluationError as err:
                    err.region_id = region.id
                    broken.add(region.id)
                    self._skip(region, err)
                    continue
                key = (entity_id, region.id)
                was_inside = self._membership.get(key, False)
                if inside and not was_inside:
                    kind = GeofenceEventKind.ENTER
                elif was_inside and not inside:
                    kind = GeofenceEventKind.EXIT
                else:
                    kind = None
                # Pairs that were never inside need no entry.
                if inside or key in self._membership:
                    self._membership[key] = inside
                if kind is not None:
                    events.append(
                        GeofenceEvent(
                            kind=kind,
                            entity_id=entity_id,
                            region_id=region.id,
                            region_name=region.display_name(),
                            detected_at=now,
                            entity=copy.deepcopy(snapshot),
                        )
                    )
        if events:
            _logger.debug("Geofence cycle produced %d transition(s)", len(events))
        return events

    def _parse_regions(self, regions: Iterable[RegionInput]) -> tuple[list[Geofence], set[str]]:
        """Valid regions, plus the ids of malformed ones so their memberships survive."""
        parsed: list[Geofence] = []
        malformed_ids: set[str] = set()
        for region in regions:
            if isinstance(region, Geofence):
                parsed.append(region)
                continue
            try:
                parsed.append(Geofence.model_validate(region))
            except ValidationError as err:
                region_id = region.get("id") if isinstance(region, Mapping) else None
                failure = GeometryEvaluationError(
                    f"invalid region definition: {err.error_count()} error(s)",
                    region_id="" if region_id is None else str(region_id),
                )
                _logger.warning("Skipping malformed region %r", region_id if region_id is not None else region)
                self._report(failure)
                if region_id is not None:
                    malformed_ids.add(str(region_id))
        return parsed, malformed_ids

    def _skip(self, region: Geofence, err: GeometryEvaluationError) -> None:
        _logger.warning("Skipping geofence %s for this cycle: %s", region.id, err)
        self._report(err)

    def _report(self, err: SkytrackError) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(err)
        except Exception:
            _logger.exception("Error hook failed while reporting geometry failure")

    def _prune(self, region_ids: set[str]) -> None:
        stale = [key for key in self._membership if key[1] not in region_ids]
        for key in stale:
            del self._membership[key]

    def remove_region(self, region_id: str) -> int:
        """Forget all memberships of *region_id*; returns how many were dropped."""
        stale = [key for key in self._membership if key[1] == region_id]
        for key in stale:
            del self._membership[key]
        return len(stale)

    def sync_regions(self, regions: Iterable[RegionInput]) -> None:
        """Drop memberships of regions missing from *regions*."""
        parsed_regions, malformed_ids = self._parse_regions(regions)
        self._prune({region.id for region in parsed_regions} | malformed_ids)

    def is_inside(self, entity_id: str, region_id: str) -> bool:
        return self._membership.get((entity_id, region_id), False)

    def entities_inside(self, region_id: str) -> list[str]:
        return [entity_id for (entity_id, rid), inside in self._membership.items() if rid == region_id and inside]

    def count_inside(self, region_id: str) -> int:
        return len(self.entities_inside(region_id))

    def reset(self) -> None:
        self._membership.clear()
