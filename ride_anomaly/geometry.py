"""Great-circle helpers used by the rule detectors.

Points may be passed as ``(lat, lon)`` tuples or as any object exposing
``latitude`` / ``longitude`` attributes (``PositionSample``, ``Centroid``).
Callers are expected to have validated coordinate ranges.
"""

from __future__ import annotations

import math
from typing import Any, Iterable, Tuple

from .models import Centroid

LatLon = Tuple[float, float]

EARTH_RADIUS_M = 6_371_000.0


def _lat_lon(point: Any) -> LatLon:
    if isinstance(point, tuple):
        return float(point[0]), float(point[1])
    return float(point.latitude), float(point.longitude)


def distance_meters(first: Any, second: Any) -> float:
    """Return the haversine distance between two points in metres."""

    lat1, lon1 = _lat_lon(first)
    lat2, lon2 = _lat_lon(second)
    sin = math.sin
    cos = math.cos
    radians = math.radians
    lat1_rad = radians(lat1)
    lat2_rad = radians(lat2)
    delta_lat = lat2_rad - lat1_rad
    delta_lon = radians(lon2 - lon1)
    sin_half_lat = sin(delta_lat / 2.0)
    sin_half_lon = sin(delta_lon / 2.0)
    a = sin_half_lat**2 + cos(lat1_rad) * cos(lat2_rad) * sin_half_lon**2
    # Rounding can push ``a`` a hair outside [0, 1] for antipodal points.
    a = min(1.0, max(0.0, a))
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_M * c


def bearing_degrees(origin: Any, target: Any) -> float:
    """Initial bearing from ``origin`` to ``target`` in [0, 360)."""

    lat1, lon1 = _lat_lon(origin)
    lat2, lon2 = _lat_lon(target)
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lon = math.radians(lon2 - lon1)
    y = math.sin(delta_lon) * math.cos(lat2_rad)
    x = math.cos(lat1_rad) * math.sin(lat2_rad) - math.sin(lat1_rad) * math.cos(
        lat2_rad
    ) * math.cos(delta_lon)
    bearing = (math.degrees(math.atan2(y, x)) + 360.0) % 360.0
    # (-tiny + 360) % 360 rounds to exactly 360.0 in floating point.
    return 0.0 if bearing >= 360.0 else bearing


def angular_difference(first: float, second: float, *, shortest_arc: bool = True) -> float:
    """Absolute difference between two bearings.

    With ``shortest_arc`` the result is folded into [0, 180] so that 350 and
    10 degrees are 20 degrees apart. ``shortest_arc=False`` returns the raw
    ``abs(first - second)`` used by earlier releases.
    """

    diff = abs(first - second)
    if not shortest_arc:
        return diff
    diff %= 360.0
    return 360.0 - diff if diff > 180.0 else diff


def centroid(points: Iterable[Any]) -> Centroid | None:
    """Arithmetic mean position (not geodesic); ``None`` for no points."""

    coords = [_lat_lon(point) for point in points]
    if not coords:
        return None
    count = len(coords)
    return Centroid(
        latitude=sum(lat for lat, _ in coords) / count,
        longitude=sum(lon for _, lon in coords) / count,
    )


def format_distance(meters: float) -> str:
    if meters < 1000:
        return f"{meters:.0f} m"
    return f"{meters / 1000.0:.1f} km"


__all__ = [
    "EARTH_RADIUS_M",
    "LatLon",
    "angular_difference",
    "bearing_degrees",
    "centroid",
    "distance_meters",
    "format_distance",
]
