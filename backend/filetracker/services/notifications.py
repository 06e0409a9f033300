"""Notification dispatch for request lifecycle events.

``create_notification`` is fire-and-forget: it appends one record, then
pushes and emails the recipient according to their channel preferences.
Any failure is logged and swallowed so it never blocks the business
operation that triggered it. It is not idempotent; callers deduplicate.
"""

from __future__ import annotations

import json
import logging
import smtplib
from datetime import datetime, timedelta
from typing import Any, Iterable
from uuid import UUID

import redis
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import config, models, notify, timeutils
from ..exceptions import NotFoundError, StoreError, ValidationError
from ..pubsub import json_default
from ..rbac import AuthContext
from ..store import DocumentStore

logger = logging.getLogger(__name__)

REQUEST_SUBMITTED = "request_submitted"
REQUEST_APPROVED = "request_approved"
REQUEST_REJECTED = "request_rejected"
FILE_OVERDUE = "file_overdue"
FILE_DUE_SOON = "file_due_soon"
FILE_RETURNED = "file_returned"

NOTIFICATION_TYPES = (
    REQUEST_SUBMITTED,
    REQUEST_APPROVED,
    REQUEST_REJECTED,
    FILE_OVERDUE,
    FILE_DUE_SOON,
    FILE_RETURNED,
)

CHANNELS = ("push", "email")


def _jsonable(metadata: dict[str, Any] | None) -> dict[str, Any]:
    return json.loads(json.dumps(metadata or {}, default=json_default))


def _ids_label(request: models.FileRequest) -> str:
    return ", ".join(request.participant_ids or []) or "Unknown"


def channel_enabled(db: Session, user_id: str, channel: str) -> bool:
    pref = (
        db.query(models.NotificationPreference)
        .filter_by(user_id=user_id, channel=channel)
        .first()
    )
    return pref is None or bool(pref.enabled)


def _recipient_email(db: Session, user_id: str) -> str | None:
    user = db.get(models.User, user_id)
    return user.email if user else None


def create_notification(
    db: Session,
    *,
    user_id: str,
    type: str,
    title: str,
    message: str,
    related_request_id: UUID | None = None,
    metadata: dict[str, Any] | None = None,
    send_push: bool = True,
    email: str | None = None,
) -> models.Notification | None:
    """Append a notification and deliver it on the enabled channels.

    Returns the stored record, or ``None`` when anything went wrong.
    """

    if type not in NOTIFICATION_TYPES:
        logger.error("Refusing notification with unknown type %r for %s", type, user_id)
        return None
    if not user_id:
        logger.error("Refusing %s notification without a recipient", type)
        return None

    store = DocumentStore(db)
    try:
        notification_id = store.insert(
            "notifications",
            {
                "user_id": user_id,
                "type": type,
                "title": title,
                "message": message,
                "related_request_id": related_request_id,
                "meta": _jsonable(metadata),
                "read": False,
                "deleted": False,
            },
        )
        notification = store.get("notifications", notification_id)
    except (StoreError, NotFoundError):
        logger.error("Error creating %s notification for %s", type, user_id, exc_info=True)
        return None

    try:
        if send_push and channel_enabled(db, user_id, "push"):
            notify.send_push(
                user_id,
                {
                    "type": "notification_created",
                    "data": {
                        "id": str(notification.id),
                        "type": type,
                        "title": title,
                        "message": message,
                        "related_request_id": str(related_request_id) if related_request_id else None,
                    },
                },
            )
        address = email or _recipient_email(db, user_id)
        if address and channel_enabled(db, user_id, "email"):
            notify.send_email(address, title, message)
    except (redis.RedisError, smtplib.SMTPException, OSError, SQLAlchemyError):
        logger.error("Error delivering %s notification to %s", type, user_id, exc_info=True)
    return notification


def get_admin_user_ids(db: Session) -> list[str]:
    try:
        return [user.id for user in DocumentStore(db).find("users", {"role": "admin"})]
    except StoreError:
        logger.error("Error fetching admin users", exc_info=True)
        return []


def notify_request_submitted(db: Session, request: models.FileRequest):
    return create_notification(
        db,
        user_id=request.user_id,
        email=request.user_email,
        type=REQUEST_SUBMITTED,
        title="Request Submitted",
        message=(
            f"Your file request for {_ids_label(request)} has been submitted "
            "and is awaiting approval."
        ),
        related_request_id=request.id,
        metadata={"participant_ids": request.participant_ids, "reason": request.reason},
    )


def notify_admin_new_request(db: Session, request: models.FileRequest, admin_ids: Iterable[str]):
    return [
        create_notification(
            db,
            user_id=admin_id,
            type=REQUEST_SUBMITTED,
            title="New File Request",
            message=f"{request.user_name or request.user_email} requested access to {_ids_label(request)}",
            related_request_id=request.id,
            metadata={
                "requester_name": request.user_name,
                "requester_email": request.user_email,
                "participant_ids": request.participant_ids,
                "reason": request.reason,
            },
        )
        for admin_id in admin_ids
    ]


def notify_request_approved(db: Session, request: models.FileRequest):
    return create_notification(
        db,
        user_id=request.user_id,
        email=request.user_email,
        type=REQUEST_APPROVED,
        title="Request Approved",
        message=(
            f"Your request for {_ids_label(request)} has been approved. "
            f"Files must be returned by {timeutils.format_date(request.due_date)}."
        ),
        related_request_id=request.id,
        metadata={
            "participant_ids": request.participant_ids,
            "due_date": timeutils.ensure_aware(request.due_date),
            "approved_by": request.approved_by,
        },
    )


def notify_request_rejected(db: Session, request: models.FileRequest, rejection_reason: str = ""):
    message = f"Your request for {_ids_label(request)} has been rejected."
    if rejection_reason:
        message = f"{message} {rejection_reason}"
    return create_notification(
        db,
        user_id=request.user_id,
        email=request.user_email,
        type=REQUEST_REJECTED,
        title="Request Rejected",
        message=message,
        related_request_id=request.id,
        metadata={
            "participant_ids": request.participant_ids,
            "rejection_reason": rejection_reason,
            "rejected_by": request.rejected_by,
        },
    )


def notify_file_overdue(db: Session, request: models.FileRequest, now: datetime | None = None):
    now = now or timeutils.utcnow()
    return create_notification(
        db,
        user_id=request.user_id,
        email=request.user_email,
        type=FILE_OVERDUE,
        title="Files Overdue",
        message=f"Your files for {_ids_label(request)} are overdue. Please return them immediately.",
        related_request_id=request.id,
        metadata={
            "participant_ids": request.participant_ids,
            "due_date": timeutils.ensure_aware(request.due_date),
            "overdue_seconds": int(-timeutils.time_remaining(request.due_date, now).total_seconds()),
        },
    )


def notify_admin_file_overdue(
    db: Session,
    request: models.FileRequest,
    admin_ids: Iterable[str],
    now: datetime | None = None,
):
    return [
        create_notification(
            db,
            user_id=admin_id,
            type=FILE_OVERDUE,
            title="File Overdue",
            message=(
                f"File overdue: {_ids_label(request)} ({request.user_name or request.user_email}), "
                f"{timeutils.format_time_remaining(request.due_date, now)}"
            ),
            related_request_id=request.id,
            metadata={
                "participant_ids": request.participant_ids,
                "requester_id": request.user_id,
                "due_date": timeutils.ensure_aware(request.due_date),
            },
        )
        for admin_id in admin_ids
        if admin_id != request.user_id
    ]


def notify_file_due_soon(db: Session, request: models.FileRequest, hours_remaining: int):
    if hours_remaining < 1:
        when = "in less than an hour"
    else:
        when = f"in {hours_remaining} hour{'s' if hours_remaining != 1 else ''}"
    return create_notification(
        db,
        user_id=request.user_id,
        email=request.user_email,
        type=FILE_DUE_SOON,
        title="Files Due Soon",
        message=f"Your files for {_ids_label(request)} are due {when}.",
        related_request_id=request.id,
        metadata={
            "participant_ids": request.participant_ids,
            "due_date": timeutils.ensure_aware(request.due_date),
            "hours_remaining": hours_remaining,
        },
    )


def notify_file_returned(db: Session, request: models.FileRequest):
    return create_notification(
        db,
        user_id=request.user_id,
        email=request.user_email,
        type=FILE_RETURNED,
        title="Files Returned",
        message=f"Files for {_ids_label(request)} have been successfully returned.",
        related_request_id=request.id,
        metadata={
            "participant_ids": request.participant_ids,
            "returned_at": timeutils.ensure_aware(request.returned_at),
        },
    )


def cleanup_old_notifications(
    db: Session,
    user_id: str | None = None,
    days_old: int | None = None,
    now: datetime | None = None,
) -> int:
    """Soft-delete notifications older than the retention window."""

    days_old = config.notification_retention_days() if days_old is None else days_old
    cutoff = (now or timeutils.utcnow()) - timedelta(days=days_old)
    query = db.query(models.Notification).filter(
        models.Notification.deleted.is_(False),
        models.Notification.created_at < cutoff,
    )
    if user_id:
        query = query.filter(models.Notification.user_id == user_id)
    stamp = now or timeutils.utcnow()
    try:
        stale = query.all()
        for notification in stale:
            notification.deleted = True
            notification.deleted_at = stamp
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.error("Error cleaning up old notifications", exc_info=True)
        return 0
    if stale:
        logger.info("Soft-deleted %d notifications older than %d days", len(stale), days_old)
    return len(stale)


def list_notifications(db: Session, ctx: AuthContext, *, unread_only: bool = False) -> list[models.Notification]:
    filters: dict[str, Any] = {"user_id": ctx.user_id, "deleted": False}
    if unread_only:
        filters["read"] = False
    return DocumentStore(db).find("notifications", filters, order="-created_at")


def _own_notification(db: Session, ctx: AuthContext, notification_id: UUID) -> models.Notification:
    notification = DocumentStore(db).get("notifications", notification_id)
    if notification.user_id != ctx.user_id or notification.deleted:
        raise NotFoundError("Notification", notification_id)
    return notification


def mark_read(db: Session, ctx: AuthContext, notification_id: UUID) -> models.Notification:
    _own_notification(db, ctx, notification_id)
    return DocumentStore(db).update("notifications", notification_id, {"read": True})


def mark_all_read(db: Session, ctx: AuthContext) -> int:
    store = DocumentStore(db)
    unread = store.find("notifications", {"user_id": ctx.user_id, "read": False, "deleted": False})
    for notification in unread:
        store.update("notifications", notification.id, {"read": True})
    return len(unread)


def delete_notification(db: Session, ctx: AuthContext, notification_id: UUID) -> models.Notification:
    _own_notification(db, ctx, notification_id)
    return DocumentStore(db).update(
        "notifications",
        notification_id,
        {"deleted": True, "deleted_at": timeutils.utcnow()},
    )


def notification_stats(db: Session, ctx: AuthContext) -> dict[str, Any]:
    notifications = list_notifications(db, ctx)
    by_type = {kind: 0 for kind in NOTIFICATION_TYPES}
    for notification in notifications:
        by_type[notification.type] = by_type.get(notification.type, 0) + 1
    return {
        "total": len(notifications),
        "unread": len([n for n in notifications if not n.read]),
        "by_type": by_type,
    }


def get_preferences(db: Session, ctx: AuthContext) -> list[dict[str, Any]]:
    return [
        {"channel": channel, "enabled": channel_enabled(db, ctx.user_id, channel)}
        for channel in CHANNELS
    ]


def set_preference(db: Session, ctx: AuthContext, channel: str, enabled: bool) -> models.NotificationPreference:
    if channel not in CHANNELS:
        raise ValidationError(f"Unknown notification channel {channel!r}")
    store = DocumentStore(db)
    existing = store.find("notificationPreferences", {"user_id": ctx.user_id, "channel": channel})
    if existing:
        return store.update("notificationPreferences", existing[0].id, {"enabled": enabled})
    pref_id = store.insert(
        "notificationPreferences",
        {"user_id": ctx.user_id, "channel": channel, "enabled": enabled},
    )
    return store.get("notificationPreferences", pref_id)
