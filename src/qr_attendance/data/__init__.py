from .database import Database, StorageError
from .stores import AttendanceRecordStore, RosterStore, SessionStore

__all__ = [
    "AttendanceRecordStore",
    "Database",
    "RosterStore",
    "SessionStore",
    "StorageError",
]
