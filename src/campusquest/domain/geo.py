"""Great-circle distance and geofence predicates.

Everything here is pure and cheap: position samples can arrive every few
seconds and each one may be checked against the active quest's target.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

EARTH_RADIUS_M = 6_371_000.0
DEFAULT_COMPLETION_RADIUS_M = 50.0
DEFAULT_MOVEMENT_THRESHOLD_M = 10.0


class LatLng(Protocol):
    @property
    def lat(self) -> float: ...

    @property
    def lng(self) -> float: ...


@dataclass(frozen=True, slots=True)
class PositionSample:
    """A single fix from the geolocation collaborator."""

    lat: float
    lng: float
    timestamp: datetime
    accuracy: float | None = None


def distance_m(a: LatLng, b: LatLng) -> float:
    """Haversine distance in meters between two lat/lng points."""
    lat1 = math.radians(a.lat)
    lat2 = math.radians(b.lat)
    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)

    sin_d_lat = math.sin(d_lat / 2)
    sin_d_lng = math.sin(d_lng / 2)
    h = sin_d_lat * sin_d_lat + math.cos(lat1) * math.cos(lat2) * sin_d_lng * sin_d_lng
    # Rounding can push h a hair outside [0, 1] for antipodal points.
    h = min(1.0, max(0.0, h))
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def is_within_radius(a: LatLng, b: LatLng, radius_m: float = DEFAULT_COMPLETION_RADIUS_M) -> bool:
    """True when ``a`` lies inside (or exactly on) the circle of ``radius_m`` around ``b``."""
    return distance_m(a, b) <= radius_m


def is_significant_movement(
    new: LatLng,
    previous: LatLng | None,
    threshold_m: float = DEFAULT_MOVEMENT_THRESHOLD_M,
) -> bool:
    """Filter GPS jitter: movements shorter than ``threshold_m`` are ignored."""
    if previous is None:
        return True
    return distance_m(new, previous) >= threshold_m
