from datetime import timedelta

import pytest

from filetracker import models, notify
from filetracker.services import requests as lifecycle
from filetracker.services.reconciliation import (
    OverdueMonitor,
    PendingRequestWatcher,
    partition,
    pending_message,
    push_pending_count_to_admins,
    reconcile_due_dates,
)
from filetracker.store import hub
from .conftest import NOW, admin_ctx, login, seed_study_ids


def _alerts(db, user_id, kind):
    return (
        db.query(models.Notification)
        .filter(models.Notification.user_id == user_id, models.Notification.type == kind)
        .all()
    )


@pytest.fixture
def checkout(db):
    """An approved request for P-001 due at NOW + 24h."""
    seed_study_ids(db, "P-001", "P-002")
    admin = admin_ctx(db)
    alice = login(db, "alice@example.com", name="Alice")
    request_id = lifecycle.submit_request(db, alice, ["P-001"], "Review", now=NOW)
    lifecycle.decide(db, admin, request_id, approve=True, now=NOW)
    return admin, alice, db.get(models.FileRequest, request_id)


def test_partition_boundaries(checkout):
    _, _, request = checkout
    due = NOW + timedelta(hours=24)

    assert partition([request], due - timedelta(hours=3)) == ([], [])
    assert partition([request], due - timedelta(hours=2, minutes=30)) == ([], [request])
    assert partition([request], due - timedelta(minutes=59)) == ([], [request])
    # at the due date itself the request is neither overdue nor due soon
    assert partition([request], due) == ([], [])
    assert partition([request], due + timedelta(seconds=1)) == ([request], [])
    assert partition([request], due + timedelta(hours=1)) == ([request], [])


def test_partition_ignores_requests_without_active_status(checkout, db):
    admin, _, request = checkout
    lifecycle.mark_returned(db, admin, request.id, now=NOW)
    assert partition([request], NOW + timedelta(days=3)) == ([], [])


def test_overdue_alert_fires_exactly_once(checkout, db):
    admin, alice, request = checkout
    monitor = OverdueMonitor()
    later = NOW + timedelta(hours=25)

    assert monitor.evaluate(db, [request], later) == [(request.id, "overdue")]
    assert monitor.evaluate(db, [request], later + timedelta(minutes=1)) == []

    mine = _alerts(db, alice.user_id, "file_overdue")
    assert len(mine) == 1
    assert "Please return them immediately" in mine[0].message
    assert len(_alerts(db, admin.user_id, "file_overdue")) == 1


def test_due_soon_goes_to_requester_only(checkout, db):
    admin, alice, request = checkout
    monitor = OverdueMonitor()
    dispatched = monitor.evaluate(db, [request], NOW + timedelta(hours=22))
    assert dispatched == [(request.id, "due_soon")]

    alerts = _alerts(db, alice.user_id, "file_due_soon")
    assert len(alerts) == 1
    assert "due in 2 hours" in alerts[0].message
    assert _alerts(db, admin.user_id, "file_due_soon") == []


def test_due_soon_covers_the_final_hour(checkout, db):
    _, alice, request = checkout
    dispatched = OverdueMonitor().evaluate(db, [request], NOW + timedelta(hours=23, minutes=30))
    assert dispatched == [(request.id, "due_soon")]
    alerts = _alerts(db, alice.user_id, "file_due_soon")
    assert "due in less than an hour" in alerts[0].message


def test_persisted_overdue_request_is_alerted_once(checkout, db):
    admin, alice, request = checkout
    later = NOW + timedelta(hours=25)
    lifecycle.mark_overdue(db, admin, request.id, now=later)

    assert reconcile_due_dates(db, later) == {"overdue": 1, "due_soon": 0}
    assert reconcile_due_dates(db, later + timedelta(minutes=1)) == {"overdue": 0, "due_soon": 0}

    assert len(_alerts(db, alice.user_id, "file_overdue")) == 1
    assert len(_alerts(db, admin.user_id, "file_overdue")) == 1
    db.expire_all()
    assert db.get(models.FileRequest, request.id).status == "overdue"


def test_due_soon_then_overdue_are_separate_alerts(checkout, db):
    _, alice, request = checkout
    monitor = OverdueMonitor()
    monitor.evaluate(db, [request], NOW + timedelta(hours=22, minutes=30))
    monitor.evaluate(db, [request], NOW + timedelta(hours=24, minutes=1))
    assert len(_alerts(db, alice.user_id, "file_due_soon")) == 1
    assert len(_alerts(db, alice.user_id, "file_overdue")) == 1


def test_watermarks_stop_a_fresh_monitor_from_repeating(checkout, db):
    _, alice, request = checkout
    later = NOW + timedelta(hours=30)
    assert reconcile_due_dates(db, later) == {"overdue": 1, "due_soon": 0}

    db.expire_all()
    stored = db.get(models.FileRequest, request.id)
    assert stored.overdue_notified_at is not None
    assert stored.status == "active"

    assert reconcile_due_dates(db, later + timedelta(minutes=5)) == {"overdue": 0, "due_soon": 0}
    assert len(_alerts(db, alice.user_id, "file_overdue")) == 1


def test_attached_monitor_evaluates_on_live_delivery(db):
    seed_study_ids(db, "P-010")
    admin = admin_ctx(db)
    alice = login(db, "alice@example.com")
    request_id = lifecycle.submit_request(db, alice, ["P-010"], "Review", now=NOW)

    monitor = OverdueMonitor(hub, clock=lambda: NOW + timedelta(hours=26)).attach()
    try:
        assert monitor.attached
        # approval writes the collection, which re-delivers the active set
        lifecycle.decide(db, admin, request_id, approve=True, now=NOW)
    finally:
        monitor.close()

    assert (request_id, "overdue") in monitor.sent
    assert not monitor.attached
    assert len(_alerts(db, alice.user_id, "file_overdue")) == 1


def test_closed_monitor_stops_listening(db):
    seed_study_ids(db, "P-011")
    admin = admin_ctx(db)
    alice = login(db, "alice@example.com")
    monitor = OverdueMonitor(hub, clock=lambda: NOW + timedelta(hours=26)).attach()
    monitor.close()

    request_id = lifecycle.submit_request(db, alice, ["P-011"], "Review", now=NOW)
    lifecycle.decide(db, admin, request_id, approve=True, now=NOW)
    assert monitor.sent == set()


def test_pending_watcher_counts_new_arrivals(db):
    seed_study_ids(db, "P-020", "P-021", "P-022")
    alice = login(db, "alice@example.com")
    counts = []
    watcher = PendingRequestWatcher(counts.append, hub).attach()
    try:
        lifecycle.submit_request(db, alice, ["P-020"], "One")
        lifecycle.submit_request(db, alice, ["P-021"], "Two")
    finally:
        watcher.close()
    lifecycle.submit_request(db, alice, ["P-022"], "Three")
    assert counts == [1, 1]


def test_pending_count_is_pushed_to_admins(db):
    admin = admin_ctx(db)
    login(db, "alice@example.com")
    push_pending_count_to_admins(db, 3)
    assert notify.PUSH_OUTBOX == [
        (
            admin.user_id,
            {"type": "pending_requests", "data": {"count": 3, "message": "3 new file requests pending approval"}},
        )
    ]
    assert pending_message(1) == "1 new file request pending approval"
