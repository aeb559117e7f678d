from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Iterable

from qr_attendance.data.database import Database, StorageError
from qr_attendance.models import (
    AttendanceRecord,
    AttendanceStatus,
    GeoPoint,
    RosterEntry,
    ScanMethod,
    Session,
    utcnow,
)

_RECORD_COLUMNS = "id, session_id, student_id, status, scan_method, marked_by, notes, marked_at"
_SESSION_COLUMNS = (
    "id, class_id, owner_id, title, anchor_lat, anchor_lng, radius_meters, "
    "current_token, token_generated_at, token_ttl_seconds, created_at"
)


def _to_text(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _from_text(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _session_from_row(row: sqlite3.Row) -> Session:
    anchor = None
    if row["anchor_lat"] is not None and row["anchor_lng"] is not None:
        anchor = GeoPoint(lat=float(row["anchor_lat"]), lng=float(row["anchor_lng"]))

    return Session(
        id=int(row["id"]),
        class_id=row["class_id"],
        owner_id=row["owner_id"],
        title=row["title"],
        anchor=anchor,
        radius_meters=float(row["radius_meters"]) if row["radius_meters"] is not None else None,
        current_token=row["current_token"],
        token_generated_at=_from_text(row["token_generated_at"]),
        token_ttl_seconds=int(row["token_ttl_seconds"]),
        created_at=_from_text(row["created_at"]) or utcnow(),
    )


def _record_from_row(row: sqlite3.Row) -> AttendanceRecord:
    return AttendanceRecord(
        id=int(row["id"]),
        session_id=int(row["session_id"]),
        student_id=row["student_id"],
        status=AttendanceStatus(row["status"]),
        scan_method=ScanMethod(row["scan_method"]),
        marked_by=row["marked_by"],
        notes=row["notes"],
        marked_at=_from_text(row["marked_at"]) or utcnow(),
    )


class SessionStore:
    def __init__(self, database: Database) -> None:
        self._database = database

    def create(self, session: Session) -> Session:
        anchor = session.anchor
        with self._database.connect() as connection:
            cursor = connection.execute(
                """
                INSERT INTO attendance_sessions (
                    class_id, owner_id, title, anchor_lat, anchor_lng, radius_meters,
                    token_ttl_seconds, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session.class_id.strip(),
                    session.owner_id.strip(),
                    session.title.strip() if session.title else None,
                    anchor.lat if anchor else None,
                    anchor.lng if anchor else None,
                    session.radius_meters,
                    int(session.token_ttl_seconds),
                    _to_text(session.created_at),
                ),
            )
            session.id = int(cursor.lastrowid)
        return session

    def get(self, session_id: int) -> Session | None:
        with self._database.connect() as connection:
            row = connection.execute(
                f"SELECT {_SESSION_COLUMNS} FROM attendance_sessions WHERE id = ?",
                (session_id,),
            ).fetchone()

        return _session_from_row(row) if row else None

    def set_token(self, session_id: int, token: str, generated_at: datetime, ttl_seconds: int) -> None:
        with self._database.connect() as connection:
            cursor = connection.execute(
                """
                UPDATE attendance_sessions
                   SET current_token = ?,
                       token_generated_at = ?,
                       token_ttl_seconds = ?
                 WHERE id = ?
                """,
                (token, _to_text(generated_at), int(ttl_seconds), session_id),
            )
            if cursor.rowcount == 0:
                raise StorageError(f"Session {session_id} disappeared while rotating its token.")

    def list_for_owner(self, owner_id: str) -> list[Session]:
        with self._database.connect() as connection:
            rows = connection.execute(
                f"""
                SELECT {_SESSION_COLUMNS}
                  FROM attendance_sessions
                 WHERE owner_id = ?
              ORDER BY datetime(created_at) DESC, id DESC
                """,
                (owner_id,),
            ).fetchall()

        return [_session_from_row(row) for row in rows]


class AttendanceRecordStore:
    def __init__(self, database: Database) -> None:
        self._database = database

    def upsert_if_absent(self, record: AttendanceRecord) -> tuple[AttendanceRecord, bool]:
        """Insert ``record`` unless one exists for its (session, student) pair.

        Returns the stored record and whether this call created it.
        """
        with self._database.connect(immediate=True) as connection:
            cursor = connection.execute(
                """
                INSERT INTO attendance_records (
                    session_id, student_id, status, scan_method, marked_by, notes, marked_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (session_id, student_id) DO NOTHING
                """,
                (
                    record.session_id,
                    record.student_id.strip(),
                    AttendanceStatus(record.status).value,
                    ScanMethod(record.scan_method).value,
                    record.marked_by,
                    record.notes,
                    _to_text(record.marked_at),
                ),
            )
            created = cursor.rowcount == 1
            row = connection.execute(
                f"SELECT {_RECORD_COLUMNS} FROM attendance_records WHERE session_id = ? AND student_id = ?",
                (record.session_id, record.student_id.strip()),
            ).fetchone()

        if row is None:
            raise StorageError("Attendance record vanished after insert.")
        return _record_from_row(row), created

    def set_status(
        self,
        session_id: int,
        student_id: str,
        status: AttendanceStatus,
        *,
        marked_by: str,
        notes: str | None = None,
        marked_at: datetime | None = None,
    ) -> AttendanceRecord:
        moment = marked_at or utcnow()
        with self._database.connect(immediate=True) as connection:
            connection.execute(
                """
                INSERT INTO attendance_records (
                    session_id, student_id, status, scan_method, marked_by, notes, marked_at
                ) VALUES (?, ?, ?, 'manual', ?, ?, ?)
                ON CONFLICT (session_id, student_id) DO UPDATE
                   SET status = excluded.status,
                       scan_method = excluded.scan_method,
                       marked_by = excluded.marked_by,
                       notes = COALESCE(excluded.notes, attendance_records.notes),
                       marked_at = excluded.marked_at
                """,
                (
                    session_id,
                    student_id.strip(),
                    AttendanceStatus(status).value,
                    marked_by,
                    notes,
                    _to_text(moment),
                ),
            )
            row = connection.execute(
                f"SELECT {_RECORD_COLUMNS} FROM attendance_records WHERE session_id = ? AND student_id = ?",
                (session_id, student_id.strip()),
            ).fetchone()

        return _record_from_row(row)

    def list_for_session(self, session_id: int) -> list[AttendanceRecord]:
        with self._database.connect() as connection:
            rows = connection.execute(
                f"""
                SELECT {_RECORD_COLUMNS}
                  FROM attendance_records
                 WHERE session_id = ?
              ORDER BY student_id ASC
                """,
                (session_id,),
            ).fetchall()

        return [_record_from_row(row) for row in rows]

    def list_for_student(self, student_id: str) -> list[AttendanceRecord]:
        with self._database.connect() as connection:
            rows = connection.execute(
                f"""
                SELECT {_RECORD_COLUMNS}
                  FROM attendance_records
                 WHERE student_id = ?
              ORDER BY datetime(marked_at) DESC, id DESC
                """,
                (student_id.strip(),),
            ).fetchall()

        return [_record_from_row(row) for row in rows]

    def count_by_status(self, student_id: str) -> dict[AttendanceStatus, int]:
        counts = {status: 0 for status in AttendanceStatus}
        with self._database.connect() as connection:
            rows = connection.execute(
                """
                SELECT status, COUNT(*) AS total
                  FROM attendance_records
                 WHERE student_id = ?
              GROUP BY status
                """,
                (student_id.strip(),),
            ).fetchall()

        for row in rows:
            counts[AttendanceStatus(row["status"])] = row["total"]
        return counts


class RosterStore:
    def __init__(self, database: Database) -> None:
        self._database = database

    def enroll(self, class_id: str, student_ids: Iterable[str]) -> int:
        cleaned = [student_id.strip() for student_id in student_ids if student_id and student_id.strip()]
        if not cleaned:
            return 0

        added = 0
        with self._database.connect() as connection:
            for student_id in cleaned:
                cursor = connection.execute(
                    """
                    INSERT INTO class_roster (class_id, student_id, active)
                    VALUES (?, ?, 1)
                    ON CONFLICT (class_id, student_id) DO UPDATE SET active = 1
                    """,
                    (class_id.strip(), student_id),
                )
                added += cursor.rowcount
        return added

    def set_active(self, class_id: str, student_id: str, active: bool) -> bool:
        with self._database.connect() as connection:
            cursor = connection.execute(
                "UPDATE class_roster SET active = ? WHERE class_id = ? AND student_id = ?",
                (1 if active else 0, class_id.strip(), student_id.strip()),
            )
            return cursor.rowcount > 0

    def list_active(self, class_id: str) -> list[str]:
        with self._database.connect() as connection:
            rows = connection.execute(
                """
                SELECT student_id
                  FROM class_roster
                 WHERE class_id = ?
                   AND active = 1
              ORDER BY student_id ASC
                """,
                (class_id.strip(),),
            ).fetchall()

        return [row["student_id"] for row in rows]

    def entries(self, class_id: str) -> list[RosterEntry]:
        with self._database.connect() as connection:
            rows = connection.execute(
                "SELECT class_id, student_id, active FROM class_roster WHERE class_id = ? ORDER BY student_id",
                (class_id.strip(),),
            ).fetchall()

        return [
            RosterEntry(class_id=row["class_id"], student_id=row["student_id"], active=bool(row["active"]))
            for row in rows
        ]
