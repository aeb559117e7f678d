from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from qr_attendance.data import Database
from qr_attendance.services import AttendanceService


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 10, 2, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def database(tmp_path: Path) -> Database:
    database = Database(tmp_path / "attendance.db")
    database.initialize()
    return database


@pytest.fixture
def service(database: Database, clock: FakeClock) -> AttendanceService:
    return AttendanceService(database, clock=clock)
