from __future__ import annotations

import pytest

from qr_attendance.models import AttendanceRecord, GeoPoint
from qr_attendance.services import ErrorKind, GeofenceDecision, Result, ScanSessionStateMachine, ScanState
from qr_attendance.services.result import DEFAULT_MESSAGES
from qr_attendance.services.scan_machine import (
    OUTSIDE_REASON,
    CloseRequested,
    Effect,
    LocationStatus,
    PayloadDecoded,
    ResetElapsed,
    ScanSnapshot,
    StartRequested,
    VerifyFailed,
    transition,
)

HERE = GeoPoint(lat=0.0, lng=0.0)


class FakeCamera:
    def __init__(self) -> None:
        self.starts = 0
        self.stops = 0
        self._on_payload = None
        self._on_ready = None
        self._on_error = None

    def start(self, on_payload, *, on_ready=None, on_error=None) -> bool:
        self.starts += 1
        self._on_payload = on_payload
        self._on_ready = on_ready
        self._on_error = on_error
        return True

    def stop(self) -> None:
        self.stops += 1

    def grant(self) -> None:
        self._on_ready()

    def deny(self, message: str = "Camera access was blocked.") -> None:
        self._on_error(message)

    def show(self, payload: str) -> None:
        self._on_payload(payload)


class FakeLocation:
    def __init__(self) -> None:
        self.starts = 0
        self.stops = 0
        self._on_fix = None
        self._on_error = None

    def start(self, on_fix, on_error) -> None:
        self.starts += 1
        self._on_fix = on_fix
        self._on_error = on_error

    def stop(self) -> None:
        self.stops += 1

    def fix(self, point: GeoPoint) -> None:
        self._on_fix(point)

    def fail(self, message: str = "Location permission denied.") -> None:
        self._on_error(message)


class FakeScheduler:
    def __init__(self) -> None:
        self.jobs = []

    def __call__(self, delay, fn):
        job = {"delay": delay, "fn": fn, "cancelled": False}
        self.jobs.append(job)

        def cancel() -> None:
            job["cancelled"] = True

        return cancel

    def fire(self) -> None:
        pending, self.jobs = [job for job in self.jobs if not job["cancelled"]], []
        for job in pending:
            job["fn"]()


class DeferredRunner:
    def __init__(self) -> None:
        self.jobs = []

    def __call__(self, fn) -> None:
        self.jobs.append(fn)

    def run_all(self) -> None:
        jobs, self.jobs = self.jobs, []
        for job in jobs:
            job()


class Verifier:
    def __init__(self, *results: Result) -> None:
        self.calls = []
        self._results = list(results)

    def __call__(self, payload, location):
        self.calls.append((payload, location))
        if len(self._results) > 1:
            return self._results.pop(0)
        return self._results[0]


RECORD = AttendanceRecord(session_id=1, student_id="s1", id=1)


def _record() -> AttendanceRecord:
    return RECORD


def _machine(submit, *, precheck=None, runner=None, scheduler=None, **kwargs):
    camera = FakeCamera()
    location = FakeLocation()
    scheduler = scheduler or FakeScheduler()
    successes = []
    closes = []
    machine = ScanSessionStateMachine(
        camera=camera,
        location_source=location,
        submit=submit,
        precheck=precheck,
        run_in_background=runner or (lambda fn: fn()),
        schedule=scheduler,
        on_success=successes.append,
        on_close=lambda: closes.append(True),
        **kwargs,
    )
    return machine, camera, location, scheduler, successes, closes


def _scanning(machine, camera):
    machine.open()
    machine.start()
    camera.grant()
    assert machine.state is ScanState.SCANNING


# ----------------------------------------------------------------------
# Pure transitions
# ----------------------------------------------------------------------
def test_closed_snapshot_absorbs_every_event():
    closed = ScanSnapshot(state=ScanState.CLOSED)

    for event in (StartRequested(), PayloadDecoded("tok"), CloseRequested()):
        assert transition(closed, event) == (closed, ())


def test_payload_outside_scanning_is_ignored():
    idle = ScanSnapshot()

    assert transition(idle, PayloadDecoded("tok")) == (idle, ())

    scanning = ScanSnapshot(state=ScanState.SCANNING)
    decoded, effects = transition(scanning, PayloadDecoded("  tok  "))
    assert decoded.state is ScanState.DECODED
    assert decoded.payload == "tok"
    assert effects == (Effect.SUBMIT,)


def test_rejected_payload_is_ignored_until_a_different_code_is_seen():
    submitting = ScanSnapshot(state=ScanState.SUBMITTING, payload="old")

    failed, effects = transition(submitting, VerifyFailed(ErrorKind.TOKEN_INVALID, "expired"))
    assert failed.rejected_payload == "old"
    assert effects == (Effect.SCHEDULE_RESET,)

    scanning, _ = transition(failed, ResetElapsed())
    assert transition(scanning, PayloadDecoded(" old ")) == (scanning, ())

    decoded, effects = transition(scanning, PayloadDecoded("new"))
    assert decoded.state is ScanState.DECODED
    assert decoded.rejected_payload is None
    assert effects == (Effect.SUBMIT,)


def test_storage_failure_does_not_reject_the_payload():
    submitting = ScanSnapshot(state=ScanState.SUBMITTING, payload="tok")

    failed, _ = transition(submitting, VerifyFailed(ErrorKind.STORAGE_ERROR, "offline"))

    assert failed.rejected_payload is None


def test_outside_location_blocks_start():
    outside = ScanSnapshot(location_status=LocationStatus.OUTSIDE)

    snapshot, effects = transition(outside, StartRequested())

    assert not outside.can_start
    assert snapshot.state is ScanState.IDLE
    assert snapshot.message == OUTSIDE_REASON
    assert effects == ()


def test_unknown_event_is_a_type_error():
    with pytest.raises(TypeError):
        transition(ScanSnapshot(), object())


# ----------------------------------------------------------------------
# Machine with fake devices
# ----------------------------------------------------------------------
def test_successful_scan_checks_in_and_auto_closes():
    submit = Verifier(Result.success(_record()))
    machine, camera, location, scheduler, successes, closes = _machine(submit)

    _scanning(machine, camera)
    location.fix(HERE)
    camera.show("tok")

    assert machine.state is ScanState.SUCCESS
    assert submit.calls == [("tok", HERE)]
    assert successes == [_record()]
    assert camera.stops == 1
    assert location.stops == 1
    assert [job["delay"] for job in scheduler.jobs] == [2.0]

    scheduler.fire()

    assert machine.closed
    assert closes == [True]


def test_duplicate_payloads_submit_once():
    runner = DeferredRunner()
    submit = Verifier(Result.success(_record()))
    machine, camera, _, _, successes, _ = _machine(submit, runner=runner)

    _scanning(machine, camera)
    camera.show("tok")
    camera.show("tok")
    camera.show("other")

    assert machine.state is ScanState.SUBMITTING
    assert len(runner.jobs) == 1

    runner.run_all()
    camera.show("tok")

    assert machine.state is ScanState.SUCCESS
    assert len(submit.calls) == 1
    assert len(successes) == 1


def test_failure_shows_message_then_resumes_scanning():
    submit = Verifier(Result.failure(ErrorKind.TOKEN_INVALID))
    machine, camera, _, scheduler, successes, _ = _machine(submit, error_reset_delay=1.5)

    _scanning(machine, camera)
    camera.show("stale")

    assert machine.state is ScanState.ERROR
    assert machine.snapshot.error is ErrorKind.TOKEN_INVALID
    assert machine.snapshot.message == DEFAULT_MESSAGES[ErrorKind.TOKEN_INVALID]
    assert [job["delay"] for job in scheduler.jobs] == [1.5]

    scheduler.fire()

    assert machine.state is ScanState.SCANNING
    assert machine.snapshot.payload is None
    camera.show("stale")
    assert machine.state is ScanState.SCANNING
    assert len(submit.calls) == 1

    camera.show("fresh")
    assert len(submit.calls) == 2
    assert submit.calls[-1][0] == "fresh"
    assert successes == []


def test_same_payload_is_resubmitted_after_storage_error():
    submit = Verifier(Result.failure(ErrorKind.STORAGE_ERROR))
    machine, camera, _, scheduler, _, _ = _machine(submit)

    _scanning(machine, camera)
    camera.show("tok")
    scheduler.fire()
    camera.show("tok")

    assert machine.state is ScanState.ERROR
    assert [payload for payload, _ in submit.calls] == ["tok"] * 4


def test_storage_error_is_retried_once():
    submit = Verifier(Result.failure(ErrorKind.STORAGE_ERROR), Result.success(_record()))
    machine, camera, _, _, successes, _ = _machine(submit)

    _scanning(machine, camera)
    camera.show("tok")

    assert machine.state is ScanState.SUCCESS
    assert len(submit.calls) == 2
    assert len(successes) == 1


def test_persistent_storage_error_surfaces_after_one_retry():
    submit = Verifier(Result.failure(ErrorKind.STORAGE_ERROR))
    machine, camera, _, _, _, _ = _machine(submit)

    _scanning(machine, camera)
    camera.show("tok")

    assert machine.state is ScanState.ERROR
    assert machine.snapshot.error is ErrorKind.STORAGE_ERROR
    assert len(submit.calls) == 2


def test_non_storage_errors_are_not_retried():
    submit = Verifier(Result.failure(ErrorKind.LOCATION_REJECTED, "You are 200m from the classroom."))
    machine, camera, _, _, _, _ = _machine(submit)

    _scanning(machine, camera)
    camera.show("tok")

    assert len(submit.calls) == 1
    assert machine.snapshot.message == "You are 200m from the classroom."


def test_close_releases_devices_and_ignores_late_result():
    runner = DeferredRunner()
    submit = Verifier(Result.success(_record()))
    machine, camera, location, scheduler, successes, closes = _machine(submit, runner=runner)

    _scanning(machine, camera)
    camera.show("tok")
    machine.close()
    machine.close()
    runner.run_all()

    assert machine.state is ScanState.CLOSED
    assert camera.stops == 1
    assert location.stops == 1
    assert closes == [True]
    assert successes == []
    assert submit.calls == []
    assert scheduler.jobs == []


def test_result_arriving_after_close_is_discarded():
    holder = {}

    def submit(payload, location):
        holder["machine"].close()
        return Result.success(_record())

    machine, camera, _, _, successes, closes = _machine(submit)
    holder["machine"] = machine

    _scanning(machine, camera)
    camera.show("tok")

    assert machine.state is ScanState.CLOSED
    assert successes == []
    assert closes == [True]


def test_close_cancels_pending_reset():
    submit = Verifier(Result.failure(ErrorKind.TOKEN_INVALID))
    machine, camera, _, scheduler, _, _ = _machine(submit)

    _scanning(machine, camera)
    camera.show("tok")
    machine.close()

    assert all(job["cancelled"] for job in scheduler.jobs)
    scheduler.fire()
    assert machine.state is ScanState.CLOSED


def test_outside_location_releases_camera_and_blocks_start():
    machine, camera, location, _, _, _ = _machine(
        Verifier(Result.success(_record())),
        precheck=lambda point: GeofenceDecision.DENIED,
    )

    _scanning(machine, camera)
    location.fix(GeoPoint(lat=0.01, lng=0.0))

    assert machine.state is ScanState.IDLE
    assert machine.snapshot.location_status is LocationStatus.OUTSIDE
    assert camera.stops == 1
    assert not machine.snapshot.can_start
    assert machine.snapshot.start_blocked_reason == OUTSIDE_REASON

    machine.start()
    assert camera.starts == 1


def test_location_failure_still_allows_scanning_without_location():
    submit = Verifier(Result.success(_record()))
    machine, camera, location, _, _, _ = _machine(submit)

    machine.open()
    location.fail()
    assert machine.snapshot.location_status is LocationStatus.UNAVAILABLE
    assert machine.snapshot.can_start

    machine.start()
    camera.grant()
    camera.show("tok")

    assert submit.calls == [("tok", None)]
    assert machine.state is ScanState.SUCCESS


def test_camera_denial_offers_retry():
    machine, camera, _, _, _, _ = _machine(Verifier(Result.success(_record())))

    machine.open()
    machine.start()
    camera.deny()

    snapshot = machine.snapshot
    assert snapshot.state is ScanState.AWAITING_CAMERA_PERMISSION
    assert snapshot.can_retry_camera
    assert snapshot.error is ErrorKind.PERMISSION_DENIED
    assert camera.stops == 1

    machine.retry_camera()
    assert camera.starts == 2
    assert not machine.snapshot.can_retry_camera

    camera.grant()
    assert machine.state is ScanState.SCANNING


def test_location_and_camera_may_resolve_in_any_order():
    submit = Verifier(Result.success(_record()))
    machine, camera, location, _, _, _ = _machine(submit, precheck=lambda point: GeofenceDecision.ALLOWED)

    machine.open()
    machine.start()
    location.fix(HERE)
    camera.grant()
    camera.show("tok")

    assert location.starts == 1
    assert submit.calls == [("tok", HERE)]
