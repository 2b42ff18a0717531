"""Job-site geofence math.

The configured radius is clamped to a band and padded by the reported GPS
accuracy, with a floor, before comparing distances.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Tuple

from core.settings import GEOFENCE


@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lng: float


@dataclass(frozen=True)
class GeofencePolicy:
    center_lat: float
    center_lng: float
    radius_m: Optional[float] = None

    @property
    def center(self) -> GeoPoint:
        return GeoPoint(self.center_lat, self.center_lng)


@dataclass(frozen=True)
class GeofenceDecision:
    distance_m: float
    base_radius_m: float
    effective_radius_m: float
    accuracy_m: Optional[float]

    @property
    def allowed(self) -> bool:
        return self.distance_m <= self.effective_radius_m


def _coords(point: GeoPoint | Tuple[float, float]) -> Tuple[float, float]:
    if isinstance(point, GeoPoint):
        return point.lat, point.lng
    lat, lng = point
    return float(lat), float(lng)


def distance_meters(a: GeoPoint | Tuple[float, float], b: GeoPoint | Tuple[float, float]) -> float:
    """Great-circle distance on a spherical Earth (haversine)."""

    lat1, lng1 = _coords(a)
    lat2, lng2 = _coords(b)
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    s1 = math.sin(d_phi / 2)
    s2 = math.sin(d_lambda / 2)
    h = s1 * s1 + math.cos(phi1) * math.cos(phi2) * s2 * s2
    # Rounding can push h a hair past 1.0 for antipodal points.
    h = min(1.0, max(0.0, h))
    return 2 * GEOFENCE.earth_radius_m * math.asin(math.sqrt(h))


def base_radius(policy: GeofencePolicy) -> float:
    raw = GEOFENCE.default_radius_m if policy.radius_m is None else float(policy.radius_m)
    return max(GEOFENCE.min_radius_m, min(raw, GEOFENCE.max_radius_m))


def effective_radius(policy: GeofencePolicy, accuracy_m: Optional[float] = None) -> float:
    buffer = max(accuracy_m or 0.0, GEOFENCE.min_accuracy_buffer_m)
    return base_radius(policy) + buffer


def within_geofence(
    distance_m: float, policy: GeofencePolicy, accuracy_m: Optional[float] = None
) -> bool:
    return distance_m <= effective_radius(policy, accuracy_m)


def evaluate(
    point: GeoPoint | Tuple[float, float],
    policy: GeofencePolicy,
    accuracy_m: Optional[float] = None,
) -> GeofenceDecision:
    return GeofenceDecision(
        distance_m=distance_meters(policy.center, point),
        base_radius_m=base_radius(policy),
        effective_radius_m=effective_radius(policy, accuracy_m),
        accuracy_m=accuracy_m,
    )


__all__ = [
    "GeoPoint",
    "GeofencePolicy",
    "GeofenceDecision",
    "distance_meters",
    "base_radius",
    "effective_radius",
    "within_geofence",
    "evaluate",
]
