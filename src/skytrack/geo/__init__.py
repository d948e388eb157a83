"""Geofencing: region geometry and enter/exit transition detection."""

from skytrack.geo.detector import GeofenceTransitionDetector
from skytrack.geo.geometry import BoundingBox, GeometryEngine, PlanarGeometry

__all__ = ["BoundingBox", "GeofenceTransitionDetector", "GeometryEngine", "PlanarGeometry"]
