"""Planar point-in-region geometry over GeoJSON polygons.

Positions are ``(lon, lat)`` pairs as in GeoJSON. Containment uses even-odd
ray casting on the raw coordinates, which is adequate for regions small
enough that the longitude/latitude grid is locally planar and that do not
cross the antimeridian.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from typing import Any, NamedTuple, Protocol

from skytrack.exceptions import GeometryEvaluationError

Point = tuple[float, float]
Ring = list[Point]


class BoundingBox(NamedTuple):
    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    def contains(self, point: Point) -> bool:
        lon, lat = point
        return self.min_lon <= lon <= self.max_lon and self.min_lat <= lat <= self.max_lat


class GeometryEngine(Protocol):
    """Structural interface of the geometry collaborator."""

    def point_in_region(self, point: Point, region: Mapping[str, Any]) -> bool: ...

    def region_bounds(self, region: Mapping[str, Any]) -> BoundingBox: ...


def _coerce_ring(raw: Any) -> Ring:
    if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)):
        raise GeometryEvaluationError("ring must be a sequence of positions")
    ring: Ring = []
    for position in raw:
        if not isinstance(position, Sequence) or isinstance(position, (str, bytes)) or len(position) < 2:
            raise GeometryEvaluationError(f"invalid position {position!r}")
        try:
            lon, lat = float(position[0]), float(position[1])
        except (TypeError, ValueError) as err:
            raise GeometryEvaluationError(f"invalid position {position!r}") from err
        if not (math.isfinite(lon) and math.isfinite(lat)):
            raise GeometryEvaluationError(f"non-finite position {position!r}")
        ring.append((lon, lat))
    if ring and ring[0] == ring[-1]:
        ring = ring[:-1]
    if len(ring) < 3:
        raise GeometryEvaluationError("ring needs at least three distinct positions")
    return ring


def polygons_of(region: Mapping[str, Any]) -> list[list[Ring]]:
    """Rings of every polygon in a Polygon/MultiPolygon geometry.

    Accepts a bare geometry or a GeoJSON Feature wrapping one.
    """
    if not isinstance(region, Mapping):
        raise GeometryEvaluationError("geometry must be a mapping")
    geometry: Any = region
    if region.get("type") == "Feature":
        geometry = region.get("geometry")
        if not isinstance(geometry, Mapping):
            raise GeometryEvaluationError("feature has no geometry")

    kind = geometry.get("type")
    coordinates = geometry.get("coordinates")
    if not isinstance(coordinates, Sequence) or not coordinates:
        raise GeometryEvaluationError(f"{kind} geometry has no coordinates")
    if kind == "Polygon":
        raw_polygons = [coordinates]
    elif kind == "MultiPolygon":
        raw_polygons = list(coordinates)
    else:
        raise GeometryEvaluationError(f"unsupported geometry type {kind!r}")
    polygons: list[list[Ring]] = []
    for raw_polygon in raw_polygons:
        if not isinstance(raw_polygon, Sequence) or not raw_polygon:
            raise GeometryEvaluationError("polygon has no rings")
        polygons.append([_coerce_ring(raw_ring) for raw_ring in raw_polygon])
    return polygons


def point_in_ring(point: Point, ring: Ring) -> bool:
    """Even-odd ray casting test."""
    px, py = point
    inside = False
    j = len(ring) - 1
    for i in range(len(ring)):
        xi, yi = ring[i]
        xj, yj = ring[j]
        if (yi > py) != (yj > py):
            x_cross = (xj - xi) * (py - yi) / (yj - yi) + xi
            if px < x_cross:
                inside = not inside
        j = i
    return inside


class PlanarGeometry:
    """Default :class:`GeometryEngine` implementation."""

    def region_bounds(self, region: Mapping[str, Any]) -> BoundingBox:
        lons: list[float] = []
        lats: list[float] = []
        for polygon in polygons_of(region):
            # The exterior ring bounds the polygon; holes are inside it.
            for lon, lat in polygon[0]:
                lons.append(lon)
                lats.append(lat)
        return BoundingBox(min(lons), min(lats), max(lons), max(lats))

    def point_in_region(self, point: Point, region: Mapping[str, Any]) -> bool:
        for polygon in polygons_of(region):
            exterior, holes = polygon[0], polygon[1:]
            if not point_in_ring(point, exterior):
                continue
            if any(point_in_ring(point, hole) for hole in holes):
                continue
            return True
        return False
