"""Distance helpers for "near me" filtering of the catalog."""

import math
from collections.abc import Iterable

from .models.performance import Performance
from .venue_directory import VenueDirectory

EARTH_RADIUS_KM = 6371.0


def distance_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points (haversine)."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def within_radius(
    performances: Iterable[Performance],
    directory: VenueDirectory,
    center: tuple[float, float],
    radius_km: float,
) -> list[tuple[Performance, float]]:
    """
    Keep performances whose venue lies within ``radius_km`` of ``center``.

    Args:
        performances: Catalog entries
        directory: Venue directory holding the coordinates
        center: (lat, lng)
        radius_km: Search radius

    Returns:
        (performance, distance) pairs, nearest first. Venues without
        coordinates are left out.
    """
    lat, lng = center
    matches: list[tuple[Performance, float]] = []
    for performance in performances:
        record = directory.lookup(performance.venue)
        if record is None or not record.has_coordinates:
            continue
        distance = distance_km(lat, lng, record.lat, record.lng)
        if distance <= radius_km:
            matches.append((performance, distance))
    matches.sort(key=lambda m: m[1])
    return matches
