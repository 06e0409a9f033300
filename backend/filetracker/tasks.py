import logging

from celery import Celery
from celery.schedules import crontab

from . import config
from .database import SessionLocal
from .services.notifications import cleanup_old_notifications
from .services.reconciliation import reconcile_due_dates

logger = logging.getLogger(__name__)

CELERY_BROKER_URL = config.celery_broker_url()
celery_app = Celery("filetracker", broker=CELERY_BROKER_URL)
celery_app.conf.task_always_eager = (
    CELERY_BROKER_URL == "memory://" or config.testing()
)

celery_app.conf.beat_schedule = {
    "reconcile-due-dates": {
        "task": "filetracker.tasks.reconcile_due_dates_job",
        "schedule": crontab(minute="*"),
    },
    "notification-cleanup": {
        "task": "filetracker.tasks.cleanup_notifications_job",
        "schedule": crontab(hour=3, minute=0),
    },
}


@celery_app.task
def reconcile_due_dates_job() -> dict:
    """Send overdue and due-soon alerts that have not gone out yet."""

    db = SessionLocal()
    try:
        return reconcile_due_dates(db)
    finally:
        db.close()


@celery_app.task
def cleanup_notifications_job() -> int:
    db = SessionLocal()
    try:
        return cleanup_old_notifications(db)
    finally:
        db.close()
