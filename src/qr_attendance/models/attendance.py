from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AttendanceStatus(str, Enum):
    PRESENT = "present"
    LATE = "late"
    ABSENT = "absent"
    EXCUSED = "excused"


class ScanMethod(str, Enum):
    QR = "qr"
    MANUAL = "manual"
    AUTO = "auto"


@dataclass(frozen=True, slots=True)
class GeoPoint:
    lat: float
    lng: float

    def is_valid(self) -> bool:
        return -90.0 <= self.lat <= 90.0 and -180.0 <= self.lng <= 180.0


@dataclass(slots=True)
class Session:
    class_id: str
    owner_id: str
    id: Optional[int] = None
    title: Optional[str] = None
    anchor: Optional[GeoPoint] = None
    radius_meters: Optional[float] = None
    current_token: Optional[str] = None
    token_generated_at: Optional[datetime] = None
    token_ttl_seconds: int = 300
    created_at: datetime = field(default_factory=utcnow)

    @property
    def geofence_enabled(self) -> bool:
        return self.anchor is not None and (self.radius_meters or 0) > 0

    @property
    def token_expires_at(self) -> datetime | None:
        if self.token_generated_at is None:
            return None
        return self.token_generated_at + timedelta(seconds=self.token_ttl_seconds)

    def display_label(self) -> str:
        label = self.title or f"Session {self.id}"
        return f"{label} · {self.class_id}"


@dataclass(slots=True)
class AttendanceRecord:
    session_id: int
    student_id: str
    status: AttendanceStatus = AttendanceStatus.PRESENT
    scan_method: ScanMethod = ScanMethod.QR
    marked_by: Optional[str] = None
    notes: Optional[str] = None
    marked_at: datetime = field(default_factory=utcnow)
    id: Optional[int] = None


@dataclass(frozen=True, slots=True)
class RosterEntry:
    class_id: str
    student_id: str
    active: bool = True


@dataclass(frozen=True, slots=True)
class IssuedToken:
    token: str
    expires_at: datetime
