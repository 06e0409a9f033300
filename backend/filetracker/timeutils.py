"""Pure date and status helpers shared by the lifecycle, reconciliation and exports."""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

# purpose: keep every clock comparison in one place so callers can inject ``now``
# status: active

_STATUS_COLORS = {
    "pending": "gray",
    "active": "warning",
    "returned": "success",
    "overdue": "danger",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime | None) -> datetime | None:
    """Treat naive datetimes (as returned by SQLite) as UTC."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def compute_due_date(approved_at: datetime, window_hours: int) -> datetime:
    return ensure_aware(approved_at) + timedelta(hours=window_hours)


def is_overdue(due_date: datetime | None, now: datetime | None = None) -> bool:
    """Return True when ``now`` is strictly past ``due_date``.

    A missing due date is never overdue.
    """

    if due_date is None:
        return False
    now = ensure_aware(now) if now is not None else utcnow()
    return now > ensure_aware(due_date)


def time_remaining(due_date: datetime, now: datetime | None = None) -> timedelta:
    """Signed time left until ``due_date``; negative once overdue."""

    now = ensure_aware(now) if now is not None else utcnow()
    return ensure_aware(due_date) - now


def hours_remaining(due_date: datetime, now: datetime | None = None) -> int:
    return math.floor(time_remaining(due_date, now).total_seconds() / 3600)


def _split(delta_seconds: float) -> tuple[int, int, int]:
    total = int(delta_seconds)
    return total // 3600, (total % 3600) // 60, total % 60


def format_time_remaining(due_date: datetime | None, now: datetime | None = None) -> str:
    if due_date is None:
        return "No deadline"
    seconds = time_remaining(due_date, now).total_seconds()
    suffix = "remaining"
    if seconds <= 0:
        seconds = abs(seconds)
        suffix = "overdue"
    hours, minutes, secs = _split(seconds)
    if hours > 0:
        return f"{hours}h {minutes}m {secs}s {suffix}"
    if minutes > 0:
        return f"{minutes}m {secs}s {suffix}"
    return f"{secs}s {suffix}"


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'' if count == 1 else 's'} ago"


def format_distance_to_now(value: datetime | None, now: datetime | None = None) -> str:
    if value is None:
        return "Unknown"
    now = ensure_aware(now) if now is not None else utcnow()
    minutes = math.floor((now - ensure_aware(value)).total_seconds() / 60)
    hours = math.floor(minutes / 60)
    days = math.floor(hours / 24)
    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return _plural(minutes, "minute")
    if hours < 24:
        return _plural(hours, "hour")
    return _plural(days, "day")


def format_date(value: datetime | None) -> str:
    """Render as ``Oct 19, 2026, 09:05 AM``; ``Unknown`` when missing."""

    if value is None:
        return "Unknown"
    value = ensure_aware(value)
    return value.strftime("%b %d, %Y, %I:%M %p")


def status_color(status: str | None) -> str:
    return _STATUS_COLORS.get(status or "", "gray")


def overdue_severity(due_date: datetime, now: datetime | None = None) -> str:
    """Bucket an overdue request: critical (>7 days), moderate (3-7), recent."""

    days = math.floor(-time_remaining(due_date, now).total_seconds() / 86400)
    if days > 7:
        return "critical"
    if days >= 3:
        return "moderate"
    return "recent"
