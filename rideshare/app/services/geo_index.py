"""
Geospatial helpers for route, stop and trip discovery.

Great-circle distance (haversine), radius filtering with stable ranking,
and a bounding box usable as an indexable SQL prefilter.
"""

import math
from typing import Any, Callable, Generic, Iterable, List, NamedTuple, Optional, TypeVar

EARTH_RADIUS_KM = 6371.0

T = TypeVar("T")


class Coordinate(NamedTuple):
    """A (latitude, longitude) pair in decimal degrees."""
    latitude: float
    longitude: float


class BoundingBox(NamedTuple):
    """Lat/lng box enclosing a radius circle. Longitude bounds are None when unusable."""
    min_latitude: float
    max_latitude: float
    min_longitude: Optional[float]
    max_longitude: Optional[float]


class Ranked(Generic[T]):
    """A candidate paired with its distance from the search center."""

    __slots__ = ("item", "distance_km")

    def __init__(self, item: T, distance_km: float):
        self.item = item
        self.distance_km = distance_km

    def __repr__(self):
        return f"<Ranked(item={self.item!r}, distance_km={self.distance_km:.3f})>"


def distance_km(a, b) -> float:
    """
    Great-circle distance between two coordinates in kilometres.

    Args:
        a: (latitude, longitude) in degrees
        b: (latitude, longitude) in degrees

    Returns:
        Distance in km (haversine, mean Earth radius 6371 km)
    """
    lat1, lng1 = math.radians(a[0]), math.radians(a[1])
    lat2, lng2 = math.radians(b[0]), math.radians(b[1])

    dlat = lat2 - lat1
    dlng = lng2 - lng1

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    # Rounding can push h a hair past 1 for antipodal points
    h = min(1.0, max(0.0, h))

    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(h))


def _as_list(located) -> list:
    if located is None:
        return []
    # A single (lat, lng) pair rather than a collection of pairs
    if len(located) == 2 and all(isinstance(v, (int, float)) for v in located):
        return [located]
    return [c for c in located if c is not None]


def within_radius(
    center,
    candidates: Iterable[T],
    radius_km: float,
    locate: Callable[[T], Any],
    identify: Callable[[T], Any] = id,
) -> List[Ranked[T]]:
    """
    Keep candidates within ``radius_km`` of ``center``, nearest first.

    ``locate`` returns one coordinate or several for a candidate (a route has
    a start and an end); the nearest one counts. Candidates without any
    coordinate are skipped. Ties are broken by ``identify`` so the ordering
    is stable across calls.
    """
    if radius_km < 0:
        return []

    ranked = []
    for candidate in candidates:
        coordinates = _as_list(locate(candidate))
        if not coordinates:
            continue

        nearest = min(distance_km(center, c) for c in coordinates)
        if nearest <= radius_km:
            ranked.append(Ranked(candidate, nearest))

    ranked.sort(key=lambda r: (r.distance_km, identify(r.item)))
    return ranked


def bounding_box(center, radius_km: float) -> BoundingBox:
    """
    Box that fully contains the circle of ``radius_km`` around ``center``.

    Only meant to cut down rows before the exact distance check. The
    longitude bound is dropped when the circle reaches a pole or wraps
    the antimeridian.
    """
    lat, lng = center[0], center[1]
    delta_lat = math.degrees(radius_km / EARTH_RADIUS_KM)

    min_lat = lat - delta_lat
    max_lat = lat + delta_lat

    if min_lat <= -90.0 or max_lat >= 90.0:
        return BoundingBox(max(min_lat, -90.0), min(max_lat, 90.0), None, None)

    # Widest longitude span occurs at the latitude nearest a pole
    widest_lat = max(abs(min_lat), abs(max_lat))
    delta_lng = math.degrees(radius_km / (EARTH_RADIUS_KM * math.cos(math.radians(widest_lat))))

    min_lng = lng - delta_lng
    max_lng = lng + delta_lng

    if delta_lng >= 180.0 or min_lng < -180.0 or max_lng > 180.0:
        return BoundingBox(min_lat, max_lat, None, None)

    return BoundingBox(min_lat, max_lat, min_lng, max_lng)
