from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from qr_attendance.data import AttendanceRecordStore, Database, RosterStore, SessionStore, StorageError
from qr_attendance.models import AttendanceRecord, AttendanceStatus, GeoPoint, IssuedToken, Session, utcnow
from qr_attendance.services.geofence import GeofenceDecision, evaluate
from qr_attendance.services.result import ErrorKind, Result
from qr_attendance.services.sweeper import AbsenteeSweeper
from qr_attendance.services.token_issuer import DEFAULT_TTL_SECONDS, TokenIssuer
from qr_attendance.services.verifier import AttendanceVerifier, MissingLocationPolicy

logger = logging.getLogger(__name__)


class AttendanceService:
    """Public attendance operations used by the desktop client and the admin CLI."""

    def __init__(
        self,
        database: Database,
        *,
        default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
        missing_location_policy: MissingLocationPolicy | str = MissingLocationPolicy.ALLOW,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._database = database
        self._default_ttl_seconds = default_ttl_seconds
        self._sessions = SessionStore(database)
        self._records = AttendanceRecordStore(database)
        self._roster = RosterStore(database)
        self._issuer = TokenIssuer(self._sessions, default_ttl_seconds=default_ttl_seconds, clock=clock)
        self._verifier = AttendanceVerifier(
            self._sessions,
            self._records,
            missing_location_policy=missing_location_policy,
            clock=clock,
        )
        self._sweeper = AbsenteeSweeper(self._sessions, self._records, self._roster, clock=clock)

    @classmethod
    def from_settings(cls) -> "AttendanceService":
        from qr_attendance.config.settings import settings

        database = Database(settings.database_path, busy_timeout=settings.db_busy_timeout_seconds)
        return cls(
            database,
            default_ttl_seconds=settings.token_ttl_seconds,
            missing_location_policy=settings.missing_location_policy,
        )

    def initialize(self) -> None:
        self._database.initialize()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------
    def create_session(
        self,
        class_id: str,
        owner_id: str,
        *,
        title: str | None = None,
        anchor: GeoPoint | None = None,
        radius_meters: float | None = None,
        token_ttl_seconds: int | None = None,
    ) -> Result[Session]:
        if not class_id or not class_id.strip() or not owner_id or not owner_id.strip():
            return Result.failure(ErrorKind.INPUT_ERROR, "Class and teacher are required to create a session.")
        if anchor is not None and not anchor.is_valid():
            return Result.failure(ErrorKind.INPUT_ERROR, "The classroom location is not a valid coordinate.")
        if radius_meters is not None and radius_meters < 0:
            return Result.failure(ErrorKind.INPUT_ERROR, "The geofence radius cannot be negative.")
        ttl = token_ttl_seconds if token_ttl_seconds is not None else self._default_ttl_seconds
        if ttl <= 0:
            return Result.failure(ErrorKind.INPUT_ERROR, "Token lifetime must be a positive number of seconds.")

        session = Session(
            class_id=class_id.strip(),
            owner_id=owner_id.strip(),
            title=title,
            anchor=anchor,
            radius_meters=radius_meters,
            token_ttl_seconds=ttl,
        )
        try:
            created = self._sessions.create(session)
        except StorageError:
            return Result.failure(ErrorKind.STORAGE_ERROR)

        logger.info("Created session %s for class %s", created.id, created.class_id)
        return Result.success(created)

    def get_session(self, session_id: int) -> Result[Session]:
        try:
            session = self._sessions.get(session_id)
        except StorageError:
            return Result.failure(ErrorKind.STORAGE_ERROR)
        if session is None:
            return Result.failure(ErrorKind.NOT_FOUND)
        return Result.success(session)

    def sessions_for_owner(self, owner_id: str) -> Result[list[Session]]:
        try:
            return Result.success(self._sessions.list_for_owner(owner_id.strip()))
        except StorageError:
            return Result.failure(ErrorKind.STORAGE_ERROR)

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------
    def issue_token(
        self,
        session_id: int,
        *,
        requested_by: str | None = None,
        ttl_seconds: int | None = None,
    ) -> Result[IssuedToken]:
        if requested_by is not None:
            denied = self._require_owner(session_id, requested_by)
            if denied is not None:
                return denied
        return self._issuer.issue(session_id, ttl_seconds)

    def verify_attendance(
        self,
        session_id: int,
        student_id: str,
        token: str,
        location: Optional[GeoPoint] = None,
    ) -> Result[AttendanceRecord]:
        return self._verifier.verify(session_id, student_id, token, location)

    def sweep_absent(self, session_id: int, requested_by: str) -> Result[int]:
        return self._sweeper.sweep(session_id, requested_by)

    @staticmethod
    def evaluate_geofence(
        anchor: Optional[GeoPoint],
        radius_meters: Optional[float],
        point: GeoPoint,
    ) -> GeofenceDecision:
        return evaluate(anchor, radius_meters, point)

    # ------------------------------------------------------------------
    # Teacher corrections and reporting
    # ------------------------------------------------------------------
    def mark_attendance(
        self,
        session_id: int,
        student_id: str,
        status: AttendanceStatus | str,
        requested_by: str,
        *,
        notes: str | None = None,
    ) -> Result[AttendanceRecord]:
        """Set a student's status by hand, creating the record if it is missing."""
        if not student_id or not student_id.strip():
            return Result.failure(ErrorKind.INPUT_ERROR, "Student ID is required.")
        try:
            status_value = AttendanceStatus(status)
        except ValueError:
            return Result.failure(ErrorKind.INPUT_ERROR, f"Unknown attendance status: {status!r}.")

        denied = self._require_owner(session_id, requested_by)
        if denied is not None:
            return denied

        try:
            record = self._records.set_status(
                session_id,
                student_id,
                status_value,
                marked_by=requested_by.strip(),
                notes=notes,
            )
        except StorageError:
            return Result.failure(ErrorKind.STORAGE_ERROR)

        logger.info("Teacher %s marked %s as %s in session %s", requested_by, student_id, status_value.value, session_id)
        return Result.success(record)

    def session_records(self, session_id: int) -> Result[list[AttendanceRecord]]:
        try:
            return Result.success(self._records.list_for_session(session_id))
        except StorageError:
            return Result.failure(ErrorKind.STORAGE_ERROR)

    def student_records(self, student_id: str) -> Result[list[AttendanceRecord]]:
        try:
            return Result.success(self._records.list_for_student(student_id))
        except StorageError:
            return Result.failure(ErrorKind.STORAGE_ERROR)

    def student_summary(self, student_id: str) -> Result[dict[AttendanceStatus, int]]:
        """Count a student's records per status across every session, zero for unseen statuses."""
        if not student_id or not student_id.strip():
            return Result.failure(ErrorKind.INPUT_ERROR, "Student ID is required.")
        try:
            return Result.success(self._records.count_by_status(student_id))
        except StorageError:
            return Result.failure(ErrorKind.STORAGE_ERROR)

    # ------------------------------------------------------------------
    # Roster
    # ------------------------------------------------------------------
    def enroll_students(self, class_id: str, student_ids: Iterable[str]) -> Result[int]:
        if not class_id or not class_id.strip():
            return Result.failure(ErrorKind.INPUT_ERROR, "Class ID is required.")
        try:
            return Result.success(self._roster.enroll(class_id, student_ids))
        except StorageError:
            return Result.failure(ErrorKind.STORAGE_ERROR)

    def withdraw_student(self, class_id: str, student_id: str) -> Result[bool]:
        try:
            updated = self._roster.set_active(class_id, student_id, False)
        except StorageError:
            return Result.failure(ErrorKind.STORAGE_ERROR)
        if not updated:
            return Result.failure(ErrorKind.NOT_FOUND, f"{student_id} is not enrolled in {class_id}.")
        return Result.success(True)

    def active_roster(self, class_id: str) -> Result[list[str]]:
        try:
            return Result.success(self._roster.list_active(class_id))
        except StorageError:
            return Result.failure(ErrorKind.STORAGE_ERROR)

    def _require_owner(self, session_id: int, requested_by: str) -> Result | None:
        try:
            session = self._sessions.get(session_id)
        except StorageError:
            return Result.failure(ErrorKind.STORAGE_ERROR)
        if session is None:
            return Result.failure(ErrorKind.NOT_FOUND)
        if not requested_by or requested_by.strip() != session.owner_id:
            logger.warning("User %r is not the teacher of session %s", requested_by, session_id)
            return Result.failure(ErrorKind.UNAUTHORIZED)
        return None
