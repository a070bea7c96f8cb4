"""Planar polygon helpers for coding coverage areas.

Coordinates are treated as a flat plane (lon as x, lat as y), which is
accurate enough at city scale.
"""

from collections.abc import Sequence

from beartype import beartype

from ..models.coding import GeoPoint


@beartype
def point_in_polygon(point: GeoPoint, polygon: Sequence[GeoPoint]) -> bool:
    """Ray casting test; the ring may or may not repeat its first point."""
    if len(polygon) < 3:
        return False

    inside = False
    j = len(polygon) - 1
    for i in range(len(polygon)):
        xi, yi = polygon[i].lon, polygon[i].lat
        xj, yj = polygon[j].lon, polygon[j].lat
        if (yi > point.lat) != (yj > point.lat) and (
            point.lon < (xj - xi) * (point.lat - yi) / (yj - yi) + xi
        ):
            inside = not inside
        j = i
    return inside


@beartype
def polygon_area(polygon: Sequence[GeoPoint]) -> float:
    """Absolute shoelace area in squared degrees."""
    if len(polygon) < 3:
        return 0.0
    total = 0.0
    for i in range(len(polygon)):
        a = polygon[i]
        b = polygon[(i + 1) % len(polygon)]
        total += a.lon * b.lat - b.lon * a.lat
    return abs(total) / 2.0


@beartype
def in_any(point: GeoPoint, polygons: Sequence[Sequence[GeoPoint]]) -> bool:
    """Whether ``point`` lies in at least one of ``polygons``."""
    return any(point_in_polygon(point, polygon) for polygon in polygons)
