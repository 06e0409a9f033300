from datetime import timedelta

import pytest

from filetracker import models, notify
from filetracker.exceptions import NotFoundError, StoreError, ValidationError
from filetracker.services import notifications
from filetracker.store import DocumentStore
from .conftest import NOW, login


@pytest.fixture
def alice(db):
    return login(db, "alice@example.com", name="Alice")


def _create(db, user_id, **kwargs):
    values = {
        "user_id": user_id,
        "type": notifications.REQUEST_APPROVED,
        "title": "Request Approved",
        "message": "Approved",
    }
    values.update(kwargs)
    return notifications.create_notification(db, **values)


def test_create_notification_stores_and_delivers(db, alice):
    notification = _create(db, alice.user_id, metadata={"due_date": NOW})
    assert notification.read is False
    assert notification.deleted is False
    assert notification.meta == {"due_date": NOW.isoformat()}
    assert notify.PUSH_OUTBOX[0][0] == alice.user_id
    assert notify.PUSH_OUTBOX[0][1]["data"]["title"] == "Request Approved"
    assert notify.EMAIL_OUTBOX == [("alice@example.com", "Request Approved", "Approved")]


def test_unknown_type_is_refused(db, alice):
    assert _create(db, alice.user_id, type="party_invite") is None
    assert db.query(models.Notification).count() == 0


def test_create_notification_is_not_idempotent(db, alice):
    _create(db, alice.user_id)
    _create(db, alice.user_id)
    assert db.query(models.Notification).filter_by(user_id=alice.user_id).count() == 2


def test_store_failure_returns_none(db, alice, monkeypatch):
    def failing_insert(self, collection, values):
        raise StoreError("create notifications")

    monkeypatch.setattr(DocumentStore, "insert", failing_insert)
    assert _create(db, alice.user_id) is None
    assert notify.PUSH_OUTBOX == []


def test_disabled_channels_are_skipped(db, alice):
    notifications.set_preference(db, alice, "push", False)
    notifications.set_preference(db, alice, "email", False)
    assert _create(db, alice.user_id) is not None
    assert notify.PUSH_OUTBOX == []
    assert notify.EMAIL_OUTBOX == []


def test_preferences_default_on_and_update_in_place(db, alice):
    assert notifications.get_preferences(db, alice) == [
        {"channel": "push", "enabled": True},
        {"channel": "email", "enabled": True},
    ]
    notifications.set_preference(db, alice, "email", False)
    notifications.set_preference(db, alice, "email", False)
    assert db.query(models.NotificationPreference).count() == 1
    with pytest.raises(ValidationError):
        notifications.set_preference(db, alice, "sms", True)


def test_mark_read_and_stats(db, alice):
    first = _create(db, alice.user_id)
    _create(db, alice.user_id, type=notifications.FILE_DUE_SOON, title="Files Due Soon", message="Soon")

    notifications.mark_read(db, alice, first.id)
    stats = notifications.notification_stats(db, alice)
    assert stats["total"] == 2
    assert stats["unread"] == 1
    assert stats["by_type"]["request_approved"] == 1
    assert stats["by_type"]["file_due_soon"] == 1

    assert notifications.mark_all_read(db, alice) == 1
    assert notifications.list_notifications(db, alice, unread_only=True) == []


def test_soft_delete_hides_notification(db, alice):
    notification = _create(db, alice.user_id)
    notifications.delete_notification(db, alice, notification.id)
    assert notifications.list_notifications(db, alice) == []
    stored = db.get(models.Notification, notification.id)
    assert stored.deleted is True
    assert stored.deleted_at is not None


def test_other_users_notifications_are_not_found(db, alice):
    bob = login(db, "bob@example.com")
    notification = _create(db, alice.user_id)
    with pytest.raises(NotFoundError):
        notifications.mark_read(db, bob, notification.id)


def test_cleanup_soft_deletes_old_notifications(db, alice):
    old = _create(db, alice.user_id)
    recent = _create(db, alice.user_id)
    old.created_at = NOW - timedelta(days=31)
    recent.created_at = NOW - timedelta(days=2)
    db.commit()

    assert notifications.cleanup_old_notifications(db, now=NOW) == 1
    assert notifications.cleanup_old_notifications(db, now=NOW) == 0
    db.expire_all()
    assert db.get(models.Notification, old.id).deleted is True
    assert db.get(models.Notification, recent.id).deleted is False


def test_cleanup_can_target_one_user(db, alice):
    bob = login(db, "bob@example.com")
    for user_id in (alice.user_id, bob.user_id):
        stale = _create(db, user_id)
        stale.created_at = NOW - timedelta(days=40)
    db.commit()
    assert notifications.cleanup_old_notifications(db, user_id=bob.user_id, now=NOW) == 1
    assert len(notifications.list_notifications(db, alice)) == 1


def test_admin_overdue_alert_skips_the_requester(db, alice):
    admin = login(db, "admin@example.com")
    request = models.FileRequest(
        user_id=admin.user_id,
        user_email=admin.email,
        participant_ids=["P-001"],
        reason="Own checkout",
        status="active",
        due_date=NOW - timedelta(hours=1),
    )
    db.add(request)
    db.commit()
    sent = notifications.notify_admin_file_overdue(db, request, [admin.user_id], NOW)
    assert sent == []
