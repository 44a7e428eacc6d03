# Role: Great-circle helpers. Used for insertion-cost estimates during stop ordering;
# real road distances come from the routing provider.

from __future__ import annotations

import math
from typing import List, Sequence

from errand_backend.models.geo import LatLng

EARTH_RADIUS_M = 6371000.0
METERS_PER_MILE = 1609.34


def haversine_m(a: LatLng, b: LatLng) -> float:
    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)
    x = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) * math.sin(d_lng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(x))


def path_length_m(points: Sequence[LatLng]) -> float:
    return sum(haversine_m(points[i], points[i + 1]) for i in range(len(points) - 1))


def interpolate(a: LatLng, b: LatLng, fraction: float) -> LatLng:
    # Planar interpolation; good enough for city-scale search centers.
    return LatLng(lat=a.lat + (b.lat - a.lat) * fraction, lng=a.lng + (b.lng - a.lng) * fraction)


def corridor_points(
    origin: LatLng,
    destination: LatLng,
    interval_m: float = 2000.0,
    max_points: int = 8,
    min_points: int = 3,
) -> List[LatLng]:
    """
    Evenly spaced search centers along the trip, origin and destination included.
    Roughly one every `interval_m`, never fewer than `min_points` nor more than `max_points`.
    """
    count = int(haversine_m(origin, destination) // interval_m) + 1
    count = max(min_points, min(max_points, count))
    return [interpolate(origin, destination, i / (count - 1)) for i in range(count)]


def meters_to_miles(m: float) -> float:
    return m / METERS_PER_MILE
