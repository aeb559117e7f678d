from __future__ import annotations

import pytest

from qr_attendance.models import GeoPoint
from qr_attendance.services import AttendanceService, GeofenceDecision, evaluate, haversine_distance

ORIGIN = GeoPoint(lat=0.0, lng=0.0)


def test_point_on_anchor_is_allowed() -> None:
    assert evaluate(ORIGIN, 50, GeoPoint(lat=0.0, lng=0.0)) is GeofenceDecision.ALLOWED


def test_point_just_beyond_hundred_meters_is_denied() -> None:
    assert evaluate(ORIGIN, 100, GeoPoint(lat=0.001, lng=0.0)) is GeofenceDecision.DENIED


def test_point_outside_radius_is_denied() -> None:
    point = GeoPoint(lat=0.001, lng=0.0)

    assert haversine_distance(ORIGIN, point) == pytest.approx(111.19, abs=0.05)
    assert evaluate(ORIGIN, 50, point) is GeofenceDecision.DENIED
    assert evaluate(ORIGIN, 120, point) is GeofenceDecision.ALLOWED


@pytest.mark.parametrize(
    ("anchor", "radius"),
    [
        (None, 50),
        (ORIGIN, None),
        (ORIGIN, 0),
        (ORIGIN, -10),
    ],
)
def test_missing_anchor_or_radius_disables_check(anchor, radius) -> None:
    decision = evaluate(anchor, radius, GeoPoint(lat=45.0, lng=45.0))

    assert decision is GeofenceDecision.DISABLED
    assert decision.permits


def test_distance_is_symmetric() -> None:
    a = GeoPoint(lat=60.0567, lng=26.3360)
    b = GeoPoint(lat=60.0570, lng=26.3390)

    assert haversine_distance(a, b) == pytest.approx(haversine_distance(b, a))
    assert not GeofenceDecision.DENIED.permits


def test_service_exposes_evaluation() -> None:
    assert AttendanceService.evaluate_geofence(ORIGIN, 50, ORIGIN) is GeofenceDecision.ALLOWED
