from datetime import datetime, timedelta, timezone

from filetracker import timeutils
from .conftest import NOW


def test_is_overdue_none_is_never_overdue():
    assert timeutils.is_overdue(None, NOW) is False


def test_is_overdue_is_strict_and_pure():
    due = NOW + timedelta(hours=1)
    assert timeutils.is_overdue(due, NOW) is False
    assert timeutils.is_overdue(due, due) is False
    assert timeutils.is_overdue(due, due + timedelta(seconds=1)) is True
    # same inputs, same answer
    assert timeutils.is_overdue(due, NOW) == timeutils.is_overdue(due, NOW)


def test_naive_datetimes_are_treated_as_utc():
    naive_due = (NOW - timedelta(minutes=5)).replace(tzinfo=None)
    assert timeutils.is_overdue(naive_due, NOW) is True
    assert timeutils.ensure_aware(naive_due).tzinfo == timezone.utc


def test_compute_due_date_adds_window():
    assert timeutils.compute_due_date(NOW, 24) == NOW + timedelta(hours=24)


def test_hours_remaining_floors():
    assert timeutils.hours_remaining(NOW + timedelta(hours=2, minutes=59), NOW) == 2
    assert timeutils.hours_remaining(NOW + timedelta(minutes=59), NOW) == 0
    assert timeutils.hours_remaining(NOW - timedelta(minutes=1), NOW) == -1


def test_format_time_remaining():
    assert timeutils.format_time_remaining(None, NOW) == "No deadline"
    due = NOW + timedelta(hours=3, minutes=4, seconds=5)
    assert timeutils.format_time_remaining(due, NOW) == "3h 4m 5s remaining"
    assert timeutils.format_time_remaining(NOW - timedelta(minutes=2), NOW) == "2m 0s overdue"
    assert timeutils.format_time_remaining(NOW + timedelta(seconds=9), NOW) == "9s remaining"


def test_format_distance_to_now():
    assert timeutils.format_distance_to_now(NOW, NOW) == "Just now"
    assert timeutils.format_distance_to_now(NOW - timedelta(minutes=1), NOW) == "1 minute ago"
    assert timeutils.format_distance_to_now(NOW - timedelta(hours=5), NOW) == "5 hours ago"
    assert timeutils.format_distance_to_now(NOW - timedelta(days=2), NOW) == "2 days ago"
    assert timeutils.format_distance_to_now(None, NOW) == "Unknown"


def test_format_date():
    value = datetime(2026, 3, 7, 14, 5, tzinfo=timezone.utc)
    assert timeutils.format_date(value) == "Mar 07, 2026, 02:05 PM"
    assert timeutils.format_date(None) == "Unknown"


def test_status_color():
    assert timeutils.status_color("pending") == "gray"
    assert timeutils.status_color("active") == "warning"
    assert timeutils.status_color("returned") == "success"
    assert timeutils.status_color("overdue") == "danger"
    assert timeutils.status_color("rejected") == "gray"
    assert timeutils.status_color(None) == "gray"


def test_overdue_severity_buckets():
    assert timeutils.overdue_severity(NOW - timedelta(days=8), NOW) == "critical"
    assert timeutils.overdue_severity(NOW - timedelta(days=5), NOW) == "moderate"
    assert timeutils.overdue_severity(NOW - timedelta(days=3), NOW) == "moderate"
    assert timeutils.overdue_severity(NOW - timedelta(hours=30), NOW) == "recent"
