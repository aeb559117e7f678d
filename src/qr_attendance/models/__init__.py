from .attendance import (
    AttendanceRecord,
    AttendanceStatus,
    GeoPoint,
    IssuedToken,
    RosterEntry,
    ScanMethod,
    Session,
    utcnow,
)

__all__ = [
    "AttendanceRecord",
    "AttendanceStatus",
    "GeoPoint",
    "IssuedToken",
    "RosterEntry",
    "ScanMethod",
    "Session",
    "utcnow",
]
