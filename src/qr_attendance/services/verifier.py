from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from qr_attendance.data import AttendanceRecordStore, SessionStore, StorageError
from qr_attendance.models import AttendanceRecord, AttendanceStatus, GeoPoint, ScanMethod, Session, utcnow
from qr_attendance.services.geofence import GeofenceDecision, evaluate, haversine_distance
from qr_attendance.services.result import ErrorKind, Result

logger = logging.getLogger(__name__)


class MissingLocationPolicy(str, Enum):
    """What to do when a geofenced session receives a scan without a location."""

    ALLOW = "allow"
    REJECT = "reject"

    @classmethod
    def parse(cls, value: "str | MissingLocationPolicy | None") -> "MissingLocationPolicy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "allow").strip().lower())
        except ValueError:
            logger.warning("Unknown missing-location policy %r, falling back to allow", value)
            return cls.ALLOW


def token_is_live(session: Session, token: str, now: datetime) -> bool:
    if not session.current_token or token != session.current_token:
        return False
    expires_at = session.token_expires_at
    if expires_at is None or session.token_generated_at is None:
        return False
    return session.token_generated_at <= now < expires_at


class AttendanceVerifier:
    def __init__(
        self,
        sessions: SessionStore,
        records: AttendanceRecordStore,
        *,
        missing_location_policy: MissingLocationPolicy | str = MissingLocationPolicy.ALLOW,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._sessions = sessions
        self._records = records
        self._missing_location_policy = MissingLocationPolicy.parse(missing_location_policy)
        self._clock = clock

    @property
    def missing_location_policy(self) -> MissingLocationPolicy:
        return self._missing_location_policy

    def verify(
        self,
        session_id: int,
        student_id: str,
        token: str,
        location: Optional[GeoPoint] = None,
    ) -> Result[AttendanceRecord]:
        student = (student_id or "").strip()
        submitted = token or ""
        if not student:
            return Result.failure(ErrorKind.INPUT_ERROR, "Student ID is required.")
        if not submitted.strip():
            return Result.failure(ErrorKind.INPUT_ERROR, "The scanned QR code was empty.")
        if location is not None and not location.is_valid():
            return Result.failure(ErrorKind.INPUT_ERROR, "The reported location is not a valid coordinate.")

        try:
            session = self._sessions.get(session_id)
        except StorageError as exc:
            logger.error("Could not load session %s: %s", session_id, exc)
            return Result.failure(ErrorKind.STORAGE_ERROR)

        if session is None:
            return Result.failure(ErrorKind.NOT_FOUND)

        now = self._clock()
        if not token_is_live(session, submitted, now):
            logger.info("Rejected stale or unknown token for session %s (student %s)", session_id, student)
            return Result.failure(ErrorKind.TOKEN_INVALID)

        rejection = self._check_location(session, location)
        if rejection is not None:
            logger.info("Rejected location for session %s (student %s): %s", session_id, student, rejection.message)
            return rejection

        candidate = AttendanceRecord(
            session_id=session_id,
            student_id=student,
            status=AttendanceStatus.PRESENT,
            scan_method=ScanMethod.QR,
            marked_by=student,
            marked_at=now,
        )
        try:
            record, created = self._records.upsert_if_absent(candidate)
        except StorageError as exc:
            logger.error("Could not store attendance for session %s (student %s): %s", session_id, student, exc)
            return Result.failure(ErrorKind.STORAGE_ERROR)

        if created:
            logger.info("Marked %s present for session %s", student, session_id)
        return Result.success(record)

    def _check_location(self, session: Session, location: Optional[GeoPoint]) -> Result[AttendanceRecord] | None:
        if not session.geofence_enabled:
            return None

        if location is None:
            if self._missing_location_policy is MissingLocationPolicy.REJECT:
                return Result.failure(
                    ErrorKind.LOCATION_REJECTED,
                    "This session requires your location. Allow location access and scan again.",
                )
            return None

        decision = evaluate(session.anchor, session.radius_meters, location)
        if decision is GeofenceDecision.DENIED:
            distance = haversine_distance(session.anchor, location)
            return Result.failure(
                ErrorKind.LOCATION_REJECTED,
                f"You are {distance:.0f}m from the classroom. Must be within {session.radius_meters:.0f}m.",
            )
        return None
