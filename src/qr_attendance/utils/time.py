from __future__ import annotations

import math
from datetime import datetime, timezone


def _coerce_datetime(value: datetime | str) -> datetime:
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str):
        candidate = value.strip().replace(" ", "T", 1)
        try:
            moment = datetime.fromisoformat(candidate)
        except ValueError as exc:
            raise ValueError(f"Unsupported datetime value: {value!r}") from exc
    else:
        raise ValueError(f"Unsupported datetime value: {value!r}")

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def seconds_remaining(expires_at: datetime | str, *, now: datetime | None = None) -> int:
    """Whole seconds left before ``expires_at``; display only, never used for validation."""
    reference = _coerce_datetime(now or datetime.now(timezone.utc))
    delta = (_coerce_datetime(expires_at) - reference).total_seconds()
    return max(0, math.ceil(delta))


def format_countdown(seconds: int) -> str:
    seconds = max(0, int(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"


def format_relative_time(value: datetime | str, *, now: datetime | None = None) -> str:
    reference = _coerce_datetime(now or datetime.now(timezone.utc))
    moment = _coerce_datetime(value)

    delta = reference - moment
    total_seconds = int(delta.total_seconds())

    if total_seconds < 60:
        return "just now"

    minutes = total_seconds // 60
    if minutes == 1:
        return "1 minute ago"
    if minutes < 60:
        return f"{minutes} minutes ago"

    hours = minutes // 60
    if hours == 1:
        return "1 hour ago"
    if hours < 24:
        return f"{hours} hours ago"

    days = hours // 24
    if days == 1:
        return "Yesterday"
    if days < 7:
        return f"{days} days ago"

    weeks = days // 7
    if weeks == 1:
        return "1 week ago"
    if weeks < 5:
        return f"{weeks} weeks ago"

    months = days // 30
    if months == 1:
        return "1 month ago"
    if months < 12:
        return f"{months} months ago"

    years = days // 365
    if years == 1:
        return "1 year ago"
    return f"{years} years ago"
