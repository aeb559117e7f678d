from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from qr_attendance.data import AttendanceRecordStore, RosterStore, SessionStore, StorageError
from qr_attendance.models import AttendanceRecord, AttendanceStatus, ScanMethod, utcnow
from qr_attendance.services.result import ErrorKind, Result

logger = logging.getLogger(__name__)

AUTO_MARK_NOTE = "auto-marked"


class AbsenteeSweeper:
    """Marks every active roster student without a record as absent."""

    def __init__(
        self,
        sessions: SessionStore,
        records: AttendanceRecordStore,
        roster: RosterStore,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._sessions = sessions
        self._records = records
        self._roster = roster
        self._clock = clock

    def sweep(self, session_id: int, requested_by: str) -> Result[int]:
        try:
            session = self._sessions.get(session_id)
            if session is None:
                return Result.failure(ErrorKind.NOT_FOUND)
            if not requested_by or requested_by.strip() != session.owner_id:
                logger.warning("User %r tried to sweep session %s without owning it", requested_by, session_id)
                return Result.failure(ErrorKind.UNAUTHORIZED)

            roster = self._roster.list_active(session.class_id)
            recorded = {record.student_id for record in self._records.list_for_session(session_id)}

            inserted = 0
            now = self._clock()
            for student_id in roster:
                if student_id in recorded:
                    continue
                _, created = self._records.upsert_if_absent(
                    AttendanceRecord(
                        session_id=session_id,
                        student_id=student_id,
                        status=AttendanceStatus.ABSENT,
                        scan_method=ScanMethod.AUTO,
                        marked_by=session.owner_id,
                        notes=AUTO_MARK_NOTE,
                        marked_at=now,
                    )
                )
                if created:
                    inserted += 1
        except StorageError as exc:
            logger.error("Absence sweep failed for session %s: %s", session_id, exc)
            return Result.failure(ErrorKind.STORAGE_ERROR)

        logger.info("Swept session %s: %s of %s roster students marked absent", session_id, inserted, len(roster))
        return Result.success(inserted)
