from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import pytest

from skytrack.exceptions import GeometryEvaluationError, SkytrackError
from skytrack.geo.detector import GeofenceTransitionDetector
from skytrack.geo.geometry import PlanarGeometry, point_in_ring
from skytrack.models.aircraft import Aircraft
from skytrack.models.alert import GeofenceEventKind


def _dt() -> datetime:
    return datetime(2026, 1, 1, tzinfo=UTC)


def _square(region_id: str = "r1", *, active: bool = True) -> dict[str, Any]:
    return {
        "id": region_id,
        "name": "Square",
        "active": active,
        "geojson": {
            "type": "Polygon",
            "coordinates": [[[0, 0], [10, 0], [10, 10], [0, 10], [0, 0]]],
        },
    }


def _at(lon: float, lat: float, hex_code: str = "e1") -> dict[str, Any]:
    return {"hex": hex_code, "lat": lat, "lon": lon}


def test_enter_exit_enter_sequence() -> None:
    detector = GeofenceTransitionDetector(clock=_dt)
    regions = [_square()]

    first = detector.evaluate([_at(5, 5)], regions)
    second = detector.evaluate([_at(50, 50)], regions)
    third = detector.evaluate([_at(5, 5)], regions)

    assert [(e.kind, e.entity_id, e.region_id) for e in first] == [(GeofenceEventKind.ENTER, "e1", "r1")]
    assert [e.kind for e in second] == [GeofenceEventKind.EXIT]
    assert [e.kind for e in third] == [GeofenceEventKind.ENTER]
    assert first[0].detected_at == _dt()
    assert first[0].region_name == "Square"


def test_repeated_identical_evaluation_is_silent() -> None:
    detector = GeofenceTransitionDetector(clock=_dt)
    regions = [_square()]

    detector.evaluate([_at(5, 5)], regions)

    assert detector.evaluate([_at(5, 5)], regions) == []
    assert detector.is_inside("e1", "r1")


def test_never_inside_emits_nothing() -> None:
    detector = GeofenceTransitionDetector(clock=_dt)
    assert detector.evaluate([_at(50, 50)], [_square()]) == []
    assert detector.count_inside("r1") == 0


def test_malformed_region_is_skipped_and_reported() -> None:
    errors: list[SkytrackError] = []
    detector = GeofenceTransitionDetector(clock=_dt, on_error=errors.append)
    broken = {"id": "bad", "geojson": {"type": "Polygon", "coordinates": [[[0, 0], [1, 1]]]}}

    events = detector.evaluate([_at(5, 5)], [broken, _square()])

    assert [(e.kind, e.region_id) for e in events] == [(GeofenceEventKind.ENTER, "r1")]
    assert isinstance(errors[0], GeometryEvaluationError)
    assert errors[0].region_id == "bad"


def test_region_failing_validation_keeps_membership_for_that_cycle() -> None:
    errors: list[SkytrackError] = []
    detector = GeofenceTransitionDetector(clock=_dt, on_error=errors.append)
    detector.evaluate([_at(5, 5)], [_square("R")])

    assert detector.evaluate([_at(5, 5)], [{"id": "R", "geojson": "oops"}]) == []
    assert detector.is_inside("e1", "R")
    assert detector.evaluate([_at(5, 5)], [_square("R")]) == []
    assert isinstance(errors[0], GeometryEvaluationError)
    assert errors[0].region_id == "R"


def test_entities_with_invalid_coordinates_are_skipped() -> None:
    detector = GeofenceTransitionDetector(clock=_dt)
    entities = [
        {"hex": "nolat", "lon": 5},
        {"hex": "nan", "lat": float("nan"), "lon": 5},
        {"hex": "range", "lat": 95, "lon": 5},
        _at(5, 5, "ok"),
    ]

    events = detector.evaluate(entities, [_square()])

    assert [e.entity_id for e in events] == ["ok"]


def test_events_follow_entity_then_region_input_order() -> None:
    detector = GeofenceTransitionDetector(clock=_dt)
    regions = [_square("r1"), _square("r2")]

    events = detector.evaluate({"b": _at(5, 5, "b"), "a": _at(5, 5, "a")}, regions)

    assert [(e.entity_id, e.region_id) for e in events] == [("b", "r1"), ("b", "r2"), ("a", "r1"), ("a", "r2")]


def test_inactive_region_is_not_evaluated_but_keeps_membership() -> None:
    detector = GeofenceTransitionDetector(clock=_dt)
    detector.evaluate([_at(5, 5)], [_square()])

    assert detector.evaluate([_at(50, 50)], [_square(active=False)]) == []
    assert detector.is_inside("e1", "r1")


def test_removed_region_forgets_membership() -> None:
    detector = GeofenceTransitionDetector(clock=_dt)
    detector.evaluate([_at(5, 5)], [_square()])

    detector.evaluate([_at(5, 5)], [])
    events = detector.evaluate([_at(5, 5)], [_square()])

    assert [e.kind for e in events] == [GeofenceEventKind.ENTER]


def test_accepts_aircraft_models() -> None:
    detector = GeofenceTransitionDetector(clock=_dt)
    aircraft = Aircraft.model_validate({"hex": "ABC123", "lat": 5, "lon": 5, "flight": "TEST1 "})

    events = detector.evaluate([aircraft], [_square()])

    assert events[0].entity_id == "abc123"
    assert events[0].entity["flight"] == "TEST1"


def test_polygon_holes_are_excluded() -> None:
    geometry = PlanarGeometry()
    donut = {
        "type": "Polygon",
        "coordinates": [
            [[0, 0], [10, 0], [10, 10], [0, 10], [0, 0]],
            [[4, 4], [6, 4], [6, 6], [4, 6], [4, 4]],
        ],
    }

    assert geometry.point_in_region((2, 2), donut)
    assert not geometry.point_in_region((5, 5), donut)


def test_multipolygon_membership() -> None:
    geometry = PlanarGeometry()
    region = {
        "type": "MultiPolygon",
        "coordinates": [
            [[[0, 0], [1, 0], [1, 1], [0, 1], [0, 0]]],
            [[[5, 5], [6, 5], [6, 6], [5, 6], [5, 5]]],
        ],
    }

    assert geometry.point_in_region((5.5, 5.5), region)
    assert not geometry.point_in_region((3, 3), region)
    assert geometry.region_bounds(region) == (0, 0, 6, 6)


def test_unsupported_geometry_type_raises() -> None:
    with pytest.raises(GeometryEvaluationError):
        PlanarGeometry().region_bounds({"type": "Point", "coordinates": [1, 2]})


def test_point_in_ring_triangle() -> None:
    ring = [(0.0, 0.0), (4.0, 0.0), (0.0, 4.0)]
    assert point_in_ring((1.0, 1.0), ring)
    assert not point_in_ring((3.0, 3.0), ring)
