"""Great-circle distance helpers shared by the client tracker and the API."""

from __future__ import annotations

import math

# Mean Earth radius in meters
EARTH_RADIUS_M = 6_371_000.0


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Haversine distance in meters between two lat/lng points.

    Inputs are degrees; converted to radians before the computation.
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = math.sin(d_phi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_M * c


def within_radius(
    lat: float,
    lng: float,
    center_lat: float,
    center_lng: float,
    radius_m: float,
) -> bool:
    """True when the point is inside or exactly on the circle boundary."""
    return haversine_m(center_lat, center_lng, lat, lng) <= radius_m
