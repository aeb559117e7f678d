from __future__ import annotations

import math
from enum import Enum
from typing import Optional

from qr_attendance.models import GeoPoint

EARTH_RADIUS_METERS = 6_371_000.0


class GeofenceDecision(str, Enum):
    DISABLED = "disabled"
    ALLOWED = "allowed"
    DENIED = "denied"

    @property
    def permits(self) -> bool:
        return self is not GeofenceDecision.DENIED


def haversine_distance(origin: GeoPoint, point: GeoPoint) -> float:
    """Great-circle distance in metres between two coordinates."""
    phi1, phi2 = math.radians(origin.lat), math.radians(point.lat)
    dphi = math.radians(point.lat - origin.lat)
    dlambda = math.radians(point.lng - origin.lng)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    a = min(1.0, max(0.0, a))
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def evaluate(anchor: Optional[GeoPoint], radius_meters: Optional[float], point: GeoPoint) -> GeofenceDecision:
    if anchor is None or radius_meters is None or radius_meters <= 0:
        return GeofenceDecision.DISABLED

    if haversine_distance(anchor, point) <= radius_meters:
        return GeofenceDecision.ALLOWED
    return GeofenceDecision.DENIED
