"""Client-side controller for a single attendance scan.

The controller is split in two halves. :func:`transition` is a pure function
from ``(snapshot, event)`` to ``(snapshot, effects)`` and holds every rule about
what may happen when. :class:`ScanSessionStateMachine` owns the device
capabilities and runs the effects the transition asks for, feeding device and
network callbacks back in as events.

All callbacks are funnelled through ``dispatch`` so a UI toolkit can marshal
them onto its own thread (``widget.after(0, fn)`` for Tk). Once the machine is
closed every later event is ignored.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional, Protocol, Union

from qr_attendance.models import AttendanceRecord, GeoPoint
from qr_attendance.services.geofence import GeofenceDecision
from qr_attendance.services.result import DEFAULT_MESSAGES, ErrorKind, Result

logger = logging.getLogger(__name__)


class ScanState(str, Enum):
    IDLE = "idle"
    AWAITING_CAMERA_PERMISSION = "awaiting_camera_permission"
    SCANNING = "scanning"
    DECODED = "decoded"
    SUBMITTING = "submitting"
    SUCCESS = "success"
    ERROR = "error"
    CLOSED = "closed"


class LocationStatus(str, Enum):
    IDLE = "idle"
    ACQUIRING = "acquiring"
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    OUTSIDE = "outside"


class Effect(str, Enum):
    START_LOCATION = "start_location"
    STOP_LOCATION = "stop_location"
    REQUEST_CAMERA = "request_camera"
    RELEASE_CAMERA = "release_camera"
    SUBMIT = "submit"
    NOTIFY_SUCCESS = "notify_success"
    SCHEDULE_CLOSE = "schedule_close"
    SCHEDULE_RESET = "schedule_reset"
    CANCEL_TIMERS = "cancel_timers"


OUTSIDE_REASON = "You are outside the allowed area for this session. Move closer to start scanning."
LOCATION_UNAVAILABLE_NOTE = "Location unavailable. Your attendance will be submitted without it."


@dataclass(frozen=True)
class ScanSnapshot:
    state: ScanState = ScanState.IDLE
    location_status: LocationStatus = LocationStatus.IDLE
    location: Optional[GeoPoint] = None
    payload: Optional[str] = None
    message: str = ""
    error: Optional[ErrorKind] = None
    camera_denied: bool = False
    record: Optional[AttendanceRecord] = None
    rejected_payload: Optional[str] = None

    @property
    def start_blocked_reason(self) -> Optional[str]:
        if self.state is ScanState.CLOSED:
            return "The scanner has been closed."
        if self.location_status is LocationStatus.OUTSIDE:
            return OUTSIDE_REASON
        return None

    @property
    def can_start(self) -> bool:
        return self.state is ScanState.IDLE and self.start_blocked_reason is None

    @property
    def can_retry_camera(self) -> bool:
        return self.state is ScanState.AWAITING_CAMERA_PERMISSION and self.camera_denied


# ----------------------------------------------------------------------
# Events
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class Opened:
    pass


@dataclass(frozen=True)
class StartRequested:
    pass


@dataclass(frozen=True)
class CameraReady:
    pass


@dataclass(frozen=True)
class CameraDenied:
    message: str = DEFAULT_MESSAGES[ErrorKind.PERMISSION_DENIED]


@dataclass(frozen=True)
class CameraRetryRequested:
    pass


@dataclass(frozen=True)
class LocationResolved:
    point: GeoPoint
    decision: GeofenceDecision = GeofenceDecision.DISABLED


@dataclass(frozen=True)
class LocationFailed:
    message: str = LOCATION_UNAVAILABLE_NOTE


@dataclass(frozen=True)
class PayloadDecoded:
    payload: str


@dataclass(frozen=True)
class SubmissionStarted:
    pass


@dataclass(frozen=True)
class VerifySucceeded:
    record: AttendanceRecord


@dataclass(frozen=True)
class VerifyFailed:
    kind: ErrorKind
    message: str


@dataclass(frozen=True)
class ResetElapsed:
    pass


@dataclass(frozen=True)
class CloseRequested:
    pass


ScanEvent = Union[
    Opened,
    StartRequested,
    CameraReady,
    CameraDenied,
    CameraRetryRequested,
    LocationResolved,
    LocationFailed,
    PayloadDecoded,
    SubmissionStarted,
    VerifySucceeded,
    VerifyFailed,
    ResetElapsed,
    CloseRequested,
]

_CAMERA_HELD = (ScanState.AWAITING_CAMERA_PERMISSION, ScanState.SCANNING)


def transition(snapshot: ScanSnapshot, event: ScanEvent) -> tuple[ScanSnapshot, tuple[Effect, ...]]:
    state = snapshot.state

    if state is ScanState.CLOSED:
        return snapshot, ()

    if isinstance(event, CloseRequested):
        return (
            replace(snapshot, state=ScanState.CLOSED, payload=None),
            (Effect.CANCEL_TIMERS, Effect.RELEASE_CAMERA, Effect.STOP_LOCATION),
        )

    if isinstance(event, Opened):
        if snapshot.location_status is not LocationStatus.IDLE:
            return snapshot, ()
        return replace(snapshot, location_status=LocationStatus.ACQUIRING), (Effect.START_LOCATION,)

    if isinstance(event, StartRequested):
        if state is not ScanState.IDLE:
            return snapshot, ()
        reason = snapshot.start_blocked_reason
        if reason is not None:
            return replace(snapshot, message=reason), ()
        return (
            replace(
                snapshot,
                state=ScanState.AWAITING_CAMERA_PERMISSION,
                camera_denied=False,
                error=None,
                message="Waiting for camera permission…",
            ),
            (Effect.REQUEST_CAMERA,),
        )

    if isinstance(event, CameraRetryRequested):
        if not snapshot.can_retry_camera:
            return snapshot, ()
        return (
            replace(snapshot, camera_denied=False, error=None, message="Waiting for camera permission…"),
            (Effect.REQUEST_CAMERA,),
        )

    if isinstance(event, CameraReady):
        if state is ScanState.AWAITING_CAMERA_PERMISSION and not snapshot.camera_denied:
            return (
                replace(snapshot, state=ScanState.SCANNING, message="Point the camera at the attendance QR code."),
                (),
            )
        if state is ScanState.IDLE:
            # Permission arrived after scanning was cancelled.
            return snapshot, (Effect.RELEASE_CAMERA,)
        return snapshot, ()

    if isinstance(event, CameraDenied):
        if state not in _CAMERA_HELD:
            return snapshot, ()
        return (
            replace(
                snapshot,
                state=ScanState.AWAITING_CAMERA_PERMISSION,
                camera_denied=True,
                error=ErrorKind.PERMISSION_DENIED,
                message=event.message,
            ),
            (Effect.RELEASE_CAMERA,),
        )

    if isinstance(event, LocationResolved):
        if event.decision is GeofenceDecision.DENIED:
            updated = replace(
                snapshot,
                location=event.point,
                location_status=LocationStatus.OUTSIDE,
                message=OUTSIDE_REASON,
            )
            if state in _CAMERA_HELD:
                return replace(updated, state=ScanState.IDLE, camera_denied=False), (Effect.RELEASE_CAMERA,)
            return updated, ()

        message = snapshot.message
        if snapshot.location_status in (LocationStatus.OUTSIDE, LocationStatus.UNAVAILABLE):
            message = ""
        return (
            replace(snapshot, location=event.point, location_status=LocationStatus.AVAILABLE, message=message),
            (),
        )

    if isinstance(event, LocationFailed):
        if snapshot.location_status in (LocationStatus.AVAILABLE, LocationStatus.OUTSIDE):
            # Keep the last good fix.
            return snapshot, ()
        message = snapshot.message if state is not ScanState.IDLE else event.message
        return (
            replace(snapshot, location=None, location_status=LocationStatus.UNAVAILABLE, message=message),
            (),
        )

    if isinstance(event, PayloadDecoded):
        payload = event.payload.strip() if event.payload else ""
        if state is not ScanState.SCANNING or not payload:
            return snapshot, ()
        if payload == snapshot.rejected_payload:
            # The code that just failed is still in front of the camera.
            return snapshot, ()
        return (
            replace(snapshot, state=ScanState.DECODED, payload=payload, error=None, rejected_payload=None),
            (Effect.SUBMIT,),
        )

    if isinstance(event, SubmissionStarted):
        if state is not ScanState.DECODED:
            return snapshot, ()
        return replace(snapshot, state=ScanState.SUBMITTING, message="Verifying attendance…"), ()

    if isinstance(event, VerifySucceeded):
        if state is not ScanState.SUBMITTING:
            return snapshot, ()
        return (
            replace(
                snapshot,
                state=ScanState.SUCCESS,
                record=event.record,
                error=None,
                message="Attendance marked. You are checked in.",
            ),
            (Effect.RELEASE_CAMERA, Effect.STOP_LOCATION, Effect.NOTIFY_SUCCESS, Effect.SCHEDULE_CLOSE),
        )

    if isinstance(event, VerifyFailed):
        if state is not ScanState.SUBMITTING:
            return snapshot, ()
        return (
            replace(
                snapshot,
                state=ScanState.ERROR,
                error=event.kind,
                message=event.message,
                rejected_payload=None if event.kind.retryable else snapshot.payload,
            ),
            (Effect.SCHEDULE_RESET,),
        )

    if isinstance(event, ResetElapsed):
        if state is not ScanState.ERROR:
            return snapshot, ()
        return replace(snapshot, state=ScanState.SCANNING, payload=None), ()

    raise TypeError(f"Unsupported scan event: {event!r}")


# ----------------------------------------------------------------------
# Capabilities
# ----------------------------------------------------------------------
class CameraSource(Protocol):
    def start(
        self,
        on_payload: Callable[[str], None],
        *,
        on_ready: Optional[Callable[[], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
    ) -> bool: ...

    def stop(self) -> None: ...


class LocationSource(Protocol):
    def start(self, on_fix: Callable[[GeoPoint], None], on_error: Callable[[str], None]) -> None: ...

    def stop(self) -> None: ...


SubmitFn = Callable[[str, Optional[GeoPoint]], Result[AttendanceRecord]]
Dispatch = Callable[[Callable[[], None]], None]
Schedule = Callable[[float, Callable[[], None]], Callable[[], None]]


def _run_inline(fn: Callable[[], None]) -> None:
    fn()


def _run_in_thread(fn: Callable[[], None]) -> None:
    threading.Thread(target=fn, daemon=True).start()


class ScanSessionStateMachine:
    def __init__(
        self,
        *,
        camera: CameraSource,
        location_source: LocationSource,
        submit: SubmitFn,
        precheck: Optional[Callable[[GeoPoint], GeofenceDecision]] = None,
        dispatch: Dispatch = _run_inline,
        run_in_background: Dispatch = _run_in_thread,
        schedule: Optional[Schedule] = None,
        on_change: Optional[Callable[[ScanSnapshot], None]] = None,
        on_success: Optional[Callable[[AttendanceRecord], None]] = None,
        on_close: Optional[Callable[[], None]] = None,
        success_close_delay: float = 2.0,
        error_reset_delay: float = 1.5,
        storage_retries: int = 1,
    ) -> None:
        self._camera = camera
        self._location_source = location_source
        self._submit = submit
        self._precheck = precheck
        self._dispatch = dispatch
        self._run_in_background = run_in_background
        self._schedule = schedule or self._thread_timer
        self._on_change = on_change
        self._on_success = on_success
        self._on_close = on_close
        self._success_close_delay = success_close_delay
        self._error_reset_delay = error_reset_delay
        self._storage_retries = max(0, storage_retries)

        self._lock = threading.RLock()
        self._snapshot = ScanSnapshot()
        self._camera_active = False
        self._location_active = False
        self._in_flight = False
        self._submission = 0
        self._timers: list[Callable[[], None]] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def snapshot(self) -> ScanSnapshot:
        return self._snapshot

    @property
    def state(self) -> ScanState:
        return self._snapshot.state

    @property
    def closed(self) -> bool:
        return self._snapshot.state is ScanState.CLOSED

    def open(self) -> None:
        self._handle(Opened())

    def start(self) -> None:
        self._handle(StartRequested())

    def retry_camera(self) -> None:
        self._handle(CameraRetryRequested())

    def close(self) -> None:
        if self.closed:
            return
        self._handle(CloseRequested())
        if self._on_close:
            self._on_close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _handle(self, event: ScanEvent) -> None:
        with self._lock:
            previous = self._snapshot
            self._snapshot, effects = transition(previous, event)
            changed = self._snapshot != previous
            for effect in effects:
                self._run_effect(effect)

        if changed and self._on_change:
            self._on_change(self._snapshot)

    def _run_effect(self, effect: Effect) -> None:
        if effect is Effect.START_LOCATION:
            self._location_active = True
            self._location_source.start(
                lambda point: self._dispatch(lambda: self._handle_fix(point)),
                lambda message: self._dispatch(lambda: self._handle(LocationFailed(message))),
            )
        elif effect is Effect.STOP_LOCATION:
            if self._location_active:
                self._location_active = False
                self._location_source.stop()
        elif effect is Effect.REQUEST_CAMERA:
            self._request_camera()
        elif effect is Effect.RELEASE_CAMERA:
            if self._camera_active:
                self._camera_active = False
                self._camera.stop()
        elif effect is Effect.SUBMIT:
            self._begin_submission()
        elif effect is Effect.NOTIFY_SUCCESS:
            record = self._snapshot.record
            if self._on_success and record is not None:
                self._on_success(record)
        elif effect is Effect.SCHEDULE_CLOSE:
            self._timers.append(self._schedule(self._success_close_delay, self.close))
        elif effect is Effect.SCHEDULE_RESET:
            self._timers.append(self._schedule(self._error_reset_delay, lambda: self._handle(ResetElapsed())))
        elif effect is Effect.CANCEL_TIMERS:
            timers, self._timers = self._timers, []
            for cancel in timers:
                cancel()

    def _handle_fix(self, point: GeoPoint) -> None:
        decision = self._precheck(point) if self._precheck else GeofenceDecision.DISABLED
        self._handle(LocationResolved(point, decision))

    def _request_camera(self) -> None:
        self._camera_active = True
        started = self._camera.start(
            lambda payload: self._dispatch(lambda: self._handle(PayloadDecoded(payload))),
            on_ready=lambda: self._dispatch(lambda: self._handle(CameraReady())),
            on_error=lambda message: self._dispatch(lambda: self._handle(CameraDenied(message))),
        )
        if started is False:
            self._camera_active = False

    def _begin_submission(self) -> None:
        if self._in_flight:
            logger.debug("Verification already in flight; ignoring decoded payload")
            return

        self._in_flight = True
        self._submission += 1
        ticket = self._submission
        payload = self._snapshot.payload or ""
        location = self._snapshot.location
        self._handle(SubmissionStarted())

        def _work() -> None:
            result = self._submit_with_retry(payload, location)
            self._dispatch(lambda: self._finish_submission(ticket, result))

        self._run_in_background(_work)

    def _submit_with_retry(self, payload: str, location: Optional[GeoPoint]) -> Result[AttendanceRecord]:
        attempts = 1 + self._storage_retries
        result: Result[AttendanceRecord] = Result.failure(ErrorKind.STORAGE_ERROR)
        for attempt in range(attempts):
            if self.closed:
                break
            try:
                result = self._submit(payload, location)
            except Exception as exc:  # pragma: no cover - guard unexpected transport faults
                logger.exception("Attendance submission raised")
                result = Result.failure(ErrorKind.STORAGE_ERROR, f"Could not reach the attendance service: {exc}")
            if result.ok or result.error is not ErrorKind.STORAGE_ERROR:
                break
            if attempt + 1 < attempts:
                logger.info("Retrying attendance submission after storage error")
        return result

    def _finish_submission(self, ticket: int, result: Result[AttendanceRecord]) -> None:
        with self._lock:
            if ticket != self._submission:
                return
            self._in_flight = False
            if self.closed:
                logger.debug("Discarding verification result that arrived after close")
                return

        if result.ok and result.value is not None:
            self._handle(VerifySucceeded(result.value))
        else:
            kind = result.error or ErrorKind.STORAGE_ERROR
            self._handle(VerifyFailed(kind, result.message or DEFAULT_MESSAGES[kind]))

    def _thread_timer(self, delay: float, fn: Callable[[], None]) -> Callable[[], None]:
        timer = threading.Timer(delay, lambda: self._dispatch(fn))
        timer.daemon = True
        timer.start()
        return timer.cancel
