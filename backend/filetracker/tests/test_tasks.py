from datetime import timedelta

from filetracker import models, timeutils
from filetracker.tasks import celery_app, cleanup_notifications_job, reconcile_due_dates_job
from .conftest import login


def test_beat_schedule_runs_reconciliation_every_minute():
    schedule = celery_app.conf.beat_schedule
    assert schedule["reconcile-due-dates"]["task"] == "filetracker.tasks.reconcile_due_dates_job"
    assert "notification-cleanup" in schedule
    assert celery_app.conf.task_always_eager is True


def test_reconcile_job_alerts_overdue_checkouts(db):
    alice = login(db, "alice@example.com")
    now = timeutils.utcnow()
    request = models.FileRequest(
        user_id=alice.user_id,
        user_email=alice.email,
        participant_ids=["P-001"],
        reason="Review",
        status="active",
        approved_at=now - timedelta(hours=26),
        due_date=now - timedelta(hours=2),
    )
    db.add(request)
    db.commit()

    assert reconcile_due_dates_job.delay().get() == {"overdue": 1, "due_soon": 0}
    assert reconcile_due_dates_job.delay().get() == {"overdue": 0, "due_soon": 0}


def test_cleanup_job_soft_deletes_stale_notifications(db):
    alice = login(db, "alice@example.com")
    db.add(
        models.Notification(
            user_id=alice.user_id,
            type="request_submitted",
            title="Request Submitted",
            message="old",
            created_at=timeutils.utcnow() - timedelta(days=45),
        )
    )
    db.commit()
    assert cleanup_notifications_job.delay().get() == 1
