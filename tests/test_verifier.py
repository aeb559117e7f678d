from __future__ import annotations

import threading

from qr_attendance.data import AttendanceRecordStore, Database, SessionStore
from qr_attendance.models import AttendanceStatus, GeoPoint, ScanMethod
from qr_attendance.services import AttendanceService, AttendanceVerifier, ErrorKind, MissingLocationPolicy

ANCHOR = GeoPoint(lat=0.0, lng=0.0)


def _geofenced_session(service: AttendanceService, radius: float = 50):
    return service.create_session("CS101", "teacher-1", anchor=ANCHOR, radius_meters=radius).value


def _record_count(database: Database) -> int:
    with database.connect() as connection:
        return connection.execute("SELECT COUNT(*) FROM attendance_records").fetchone()[0]


def test_valid_scan_inside_geofence_marks_present(service, database, clock):
    session = _geofenced_session(service)
    token = service.issue_token(session.id).value.token
    clock.advance(10)

    result = service.verify_attendance(session.id, "s1", token, ANCHOR)

    assert result.ok
    record = result.value
    assert record.student_id == "s1"
    assert record.status is AttendanceStatus.PRESENT
    assert record.scan_method is ScanMethod.QR
    assert record.marked_by == "s1"
    assert record.marked_at == clock.now
    assert _record_count(database) == 1


def test_rotated_token_is_rejected(service, database):
    session = _geofenced_session(service)
    old_token = service.issue_token(session.id).value.token
    new_token = service.issue_token(session.id).value.token

    stale = service.verify_attendance(session.id, "s1", old_token, ANCHOR)

    assert stale.error is ErrorKind.TOKEN_INVALID
    assert "fresh code" in stale.message
    assert _record_count(database) == 0
    assert service.verify_attendance(session.id, "s1", new_token, ANCHOR).ok


def test_scan_outside_geofence_is_rejected_with_distance(service, database):
    session = _geofenced_session(service)
    token = service.issue_token(session.id).value.token

    result = service.verify_attendance(session.id, "s1", token, GeoPoint(lat=0.001, lng=0.0))

    assert result.error is ErrorKind.LOCATION_REJECTED
    assert "111m" in result.message
    assert "50m" in result.message
    assert _record_count(database) == 0


def test_campus_scan_two_hundred_meters_away_is_rejected(service, database):
    classroom = GeoPoint(lat=49.2827, lng=-123.1207)
    session = service.create_session("CS101", "teacher-1", anchor=classroom, radius_meters=50).value
    token = service.issue_token(session.id).value.token

    inside = service.verify_attendance(session.id, "s1", token, classroom)
    outside = service.verify_attendance(session.id, "s2", token, GeoPoint(lat=49.2845, lng=-123.1207))

    assert inside.ok
    assert outside.error is ErrorKind.LOCATION_REJECTED
    assert "200m" in outside.message
    assert "50m" in outside.message
    assert _record_count(database) == 1


def test_token_window_is_half_open(service, clock):
    session = service.create_session("CS101", "teacher-1", token_ttl_seconds=60).value
    token = service.issue_token(session.id).value.token

    clock.advance(59.999)
    assert service.verify_attendance(session.id, "s1", token).ok

    clock.advance(0.001)
    assert service.verify_attendance(session.id, "s2", token).error is ErrorKind.TOKEN_INVALID


def test_token_must_match_exactly(service):
    session = service.create_session("CS101", "teacher-1").value
    token = service.issue_token(session.id).value.token

    assert service.verify_attendance(session.id, "s1", f" {token}").error is ErrorKind.TOKEN_INVALID
    assert service.verify_attendance(session.id, "s1", token.upper() + "x").error is ErrorKind.TOKEN_INVALID


def test_session_without_token_rejects_everything(service):
    session = service.create_session("CS101", "teacher-1").value

    assert service.verify_attendance(session.id, "s1", "anything").error is ErrorKind.TOKEN_INVALID


def test_repeat_scan_returns_existing_record(service, database, clock):
    session = service.create_session("CS101", "teacher-1").value
    token = service.issue_token(session.id).value.token

    first = service.verify_attendance(session.id, "s1", token).value
    clock.advance(30)
    second = service.verify_attendance(session.id, "s1", token).value

    assert second.id == first.id
    assert second.marked_at == first.marked_at
    assert _record_count(database) == 1


def test_input_errors(service):
    session = service.create_session("CS101", "teacher-1").value
    token = service.issue_token(session.id).value.token

    assert service.verify_attendance(session.id, "s1", "   ").error is ErrorKind.INPUT_ERROR
    assert service.verify_attendance(session.id, "", token).error is ErrorKind.INPUT_ERROR
    assert (
        service.verify_attendance(session.id, "s1", token, GeoPoint(lat=91.0, lng=0.0)).error
        is ErrorKind.INPUT_ERROR
    )


def test_unknown_session_is_not_found(service):
    assert service.verify_attendance(404, "s1", "token").error is ErrorKind.NOT_FOUND


def test_missing_location_allowed_by_default(service):
    session = _geofenced_session(service)
    token = service.issue_token(session.id).value.token

    assert service.verify_attendance(session.id, "s1", token, None).ok


def test_missing_location_rejected_when_policy_requires_it(database, clock):
    service = AttendanceService(database, missing_location_policy="reject", clock=clock)
    session = _geofenced_session(service)
    token = service.issue_token(session.id).value.token

    result = service.verify_attendance(session.id, "s1", token, None)

    assert result.error is ErrorKind.LOCATION_REJECTED
    assert _record_count(database) == 0


def test_missing_location_ignored_without_geofence(database, clock):
    service = AttendanceService(database, missing_location_policy=MissingLocationPolicy.REJECT, clock=clock)
    session = service.create_session("CS101", "teacher-1").value
    token = service.issue_token(session.id).value.token

    assert service.verify_attendance(session.id, "s1", token).ok


def test_unknown_policy_falls_back_to_allow():
    assert MissingLocationPolicy.parse("sometimes") is MissingLocationPolicy.ALLOW
    assert MissingLocationPolicy.parse(" REJECT ") is MissingLocationPolicy.REJECT


def test_storage_failure_surfaces_as_result(tmp_path, clock):
    database = Database(tmp_path / "uninitialised.db")
    verifier = AttendanceVerifier(SessionStore(database), AttendanceRecordStore(database), clock=clock)

    result = verifier.verify(1, "s1", "token")

    assert result.error is ErrorKind.STORAGE_ERROR
    assert result.error.retryable


def test_simultaneous_scans_create_one_record(tmp_path, clock):
    database = Database(tmp_path / "attendance.db", busy_timeout=10.0)
    database.initialize()
    service = AttendanceService(database, clock=clock)
    session = service.create_session("CS101", "teacher-1").value
    token = service.issue_token(session.id).value.token

    barrier = threading.Barrier(2)
    results = []

    def scan() -> None:
        barrier.wait()
        results.append(service.verify_attendance(session.id, "s1", token))

    threads = [threading.Thread(target=scan) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=15)

    assert len(results) == 2
    assert all(result.ok for result in results)
    assert results[0].value.id == results[1].value.id
    assert _record_count(database) == 1
