from datetime import datetime, timedelta, timezone

from qr_attendance.utils import format_countdown, format_relative_time, seconds_remaining

def test_format_relative_time_minutes():
    now = datetime(2025, 10, 2, 12, 0, 0)
    timestamp = now - timedelta(minutes=30)
    assert format_relative_time(timestamp, now=now) == "30 minutes ago"


def test_format_relative_time_just_now():
    now = datetime(2025, 10, 2, 12, 0, 0)
    timestamp = now - timedelta(seconds=10)
    assert format_relative_time(timestamp, now=now) == "just now"


def test_format_relative_time_mixes_naive_and_aware():
    now = datetime(2025, 10, 2, 12, 0, 0, tzinfo=timezone.utc)
    assert format_relative_time("2025-10-02 10:00:00", now=now) == "2 hours ago"


def test_seconds_remaining_rounds_up_and_floors_at_zero():
    now = datetime(2025, 10, 2, 12, 0, 0, tzinfo=timezone.utc)
    assert seconds_remaining(now + timedelta(seconds=299, milliseconds=200), now=now) == 300
    assert seconds_remaining(now - timedelta(seconds=5), now=now) == 0


def test_format_countdown():
    assert format_countdown(300) == "5:00"
    assert format_countdown(61) == "1:01"
    assert format_countdown(9) == "0:09"
    assert format_countdown(-3) == "0:00"
