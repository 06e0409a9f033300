"""Request lifecycle controller.

State machine over ``FileRequest.status``::

    pending --approve--> active --return--> returned
    pending --reject---> rejected
    active  --(now > due_date)--> overdue (derived; persisted only by mark_overdue)
    overdue --return--> returned

``returned`` and ``rejected`` are terminal. Every transition commits the
status change first and only then dispatches notifications, so a failed
notification never rolls a decision back.

Participant-id availability is checked and claimed under a single-writer
lock, so submitters in one process are serialized. The check itself is a
read of the open request set with no store constraint behind it; workers
in separate processes racing for the same id can both succeed.
"""

from __future__ import annotations

import logging
from datetime import datetime
from threading import Lock
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from .. import audit, config, models, timeutils
from ..exceptions import InvalidStateError, TrackerError, ValidationError
from ..rbac import (
    AuthContext,
    ensure_can_mark_returned,
    ensure_can_view_request,
    normalize_email,
    require_admin,
)
from ..store import DocumentStore
from . import notifications

logger = logging.getLogger(__name__)

COLLECTION = "fileRequests"

# statuses that keep a participant id checked out; a persisted "overdue"
# request still physically holds its files
HOLDING_STATUSES = models.OPEN_STATUSES + ("overdue",)

BULK_REJECTION_NOTE = "Please contact an administrator for more details."

# serializes the availability check and the insert that claims the ids
_submission_lock = Lock()


def normalize_participant_ids(participant_ids: Iterable[str]) -> list[str]:
    """Trim, upper-case and de-duplicate, keeping the caller's order."""

    if isinstance(participant_ids, str):
        raise ValidationError("Participant IDs must be given as a list")
    seen: list[str] = []
    for raw in participant_ids or []:
        value = (raw or "").strip().upper()
        if value and value not in seen:
            seen.append(value)
    return seen


def effective_status(request: models.FileRequest, now: datetime | None = None) -> str:
    if request.status == "active" and timeutils.is_overdue(request.due_date, now):
        return "overdue"
    return request.status


def held_participant_ids(db: Session) -> dict[str, UUID]:
    """Map each participant id referenced by an open request to that request."""

    held: dict[str, UUID] = {}
    for request in DocumentStore(db).find(COLLECTION, {"status": HOLDING_STATUSES}):
        for participant_id in request.participant_ids or []:
            held.setdefault(participant_id, request.id)
    return held


def list_availability(db: Session) -> list[dict[str, Any]]:
    """Active catalogue entries with their current availability."""

    held = held_participant_ids(db)
    catalogue = DocumentStore(db).find("studyIds", {"is_active": True}, order="participant_id")
    return [
        {
            "participant_id": entry.participant_id,
            "description": entry.description or "",
            "category": entry.category or "",
            "available": entry.participant_id not in held,
            "held_by_request_id": held.get(entry.participant_id),
        }
        for entry in catalogue
    ]


def _validate_selection(db: Session, participant_ids: list[str]) -> None:
    catalogue = {
        entry.participant_id: entry
        for entry in DocumentStore(db).find("studyIds", {"participant_id": participant_ids})
    }
    unknown = [pid for pid in participant_ids if pid not in catalogue]
    if unknown:
        raise ValidationError(
            f"Unknown participant ID: {', '.join(unknown)}", details={"participant_ids": unknown}
        )
    inactive = [pid for pid in participant_ids if not catalogue[pid].is_active]
    if inactive:
        raise ValidationError(
            f"{', '.join(inactive)} is not available for checkout",
            details={"participant_ids": inactive},
        )
    held = held_participant_ids(db)
    unavailable = [pid for pid in participant_ids if pid in held]
    if unavailable:
        raise ValidationError(
            f"{', '.join(unavailable)} is currently unavailable",
            details={"participant_ids": unavailable},
        )


def _resolve_requester(db: Session, ctx: AuthContext, on_behalf_of: Any | None) -> dict[str, Any]:
    if on_behalf_of is None:
        return {
            "user_id": ctx.user_id,
            "user_email": ctx.email,
            "user_name": ctx.display_name,
            "requester_registered": True,
        }
    require_admin(ctx)
    proxy = {
        "requested_by_admin": True,
        "admin_id": ctx.user_id,
        "admin_email": ctx.email,
        "admin_name": ctx.display_name,
    }
    user_id = getattr(on_behalf_of, "user_id", None)
    if user_id:
        user = DocumentStore(db).get_or_none("users", user_id)
        if user is None:
            raise ValidationError("Selected user is not registered")
        return {
            **proxy,
            "user_id": user.id,
            "user_email": user.email,
            "user_name": user.display_name,
            "requester_registered": True,
        }
    email = normalize_email(on_behalf_of.email or "")
    name = (on_behalf_of.display_name or "").strip()
    if not email or not name:
        raise ValidationError("Please provide the requester's email and name")
    return {
        **proxy,
        "user_id": f"manual:{email}",
        "user_email": email,
        "user_name": name,
        "requester_registered": False,
    }


def submit_request(
    db: Session,
    ctx: AuthContext,
    participant_ids: Iterable[str],
    reason: str,
    on_behalf_of: Any | None = None,
    now: datetime | None = None,
) -> UUID:
    """Create a pending request; returns its id."""

    ids = normalize_participant_ids(participant_ids)
    if not ids:
        raise ValidationError("Please select at least one participant ID")
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Please provide a reason for your request")
    requester = _resolve_requester(db, ctx, on_behalf_of)

    now = now or timeutils.utcnow()
    store = DocumentStore(db)
    with _submission_lock:
        _validate_selection(db, ids)
        request_id = store.insert(
            COLLECTION,
            {
                **requester,
                "participant_ids": ids,
                "reason": reason,
                "status": "pending",
                "created_at": now,
                "updated_at": now,
            },
        )
    request = store.get(COLLECTION, request_id)
    logger.info("Request %s submitted for %s by %s", request_id, ", ".join(ids), ctx.email)

    notifications.notify_request_submitted(db, request)
    # an admin filing for themselves does not page the other admins
    if not (ctx.is_admin and on_behalf_of is None):
        admin_ids = [uid for uid in notifications.get_admin_user_ids(db) if uid != request.user_id]
        if admin_ids:
            notifications.notify_admin_new_request(db, request, admin_ids)
    audit.log_action(db, ctx.user_id, "submit_request", "file_request", request_id, {"participant_ids": ids})
    return request_id


def get_request(db: Session, ctx: AuthContext, request_id: UUID) -> models.FileRequest:
    request = DocumentStore(db).get(COLLECTION, request_id)
    ensure_can_view_request(ctx, request)
    return request


def list_requests(
    db: Session,
    ctx: AuthContext,
    *,
    status: str | None = None,
    user_id: str | None = None,
    now: datetime | None = None,
) -> list[models.FileRequest]:
    """Admins see every request (optionally one user's); others only their own.

    ``status`` matches the effective status, so ``overdue`` includes active
    requests past their due date.
    """

    filters: dict[str, Any] = {}
    if not ctx.is_admin:
        filters["user_id"] = ctx.user_id
    elif user_id:
        filters["user_id"] = user_id
    requests = DocumentStore(db).find(COLLECTION, filters, order="-created_at")
    if status:
        requests = [r for r in requests if effective_status(r, now) == status]
    return requests


def _require_status(request: models.FileRequest, allowed: Iterable[str], action: str) -> None:
    allowed = tuple(allowed)
    if request.status not in allowed:
        raise InvalidStateError(
            f"Cannot {action} a request that is {request.status}",
            current_status=request.status,
        )


def approve_request(
    db: Session, ctx: AuthContext, request_id: UUID, now: datetime | None = None
) -> models.FileRequest:
    require_admin(ctx)
    store = DocumentStore(db)
    request = store.get(COLLECTION, request_id)
    _require_status(request, ("pending",), "approve")

    now = now or timeutils.utcnow()
    request = store.update(
        COLLECTION,
        request_id,
        {
            "status": "active",
            "approved_at": now,
            "approved_by": ctx.email,
            "due_date": timeutils.compute_due_date(now, config.checkout_window_hours()),
            "updated_at": now,
        },
    )
    logger.info("Request %s approved by %s, due %s", request_id, ctx.email, request.due_date)
    notifications.notify_request_approved(db, request)
    audit.log_action(db, ctx.user_id, "approve_request", "file_request", request_id)
    return request


def reject_request(
    db: Session,
    ctx: AuthContext,
    request_id: UUID,
    note: str | None = None,
    now: datetime | None = None,
) -> models.FileRequest:
    require_admin(ctx)
    store = DocumentStore(db)
    request = store.get(COLLECTION, request_id)
    _require_status(request, ("pending",), "reject")

    now = now or timeutils.utcnow()
    note = (note or "").strip()
    request = store.update(
        COLLECTION,
        request_id,
        {
            "status": "rejected",
            "rejected_at": now,
            "rejected_by": ctx.email,
            "rejection_reason": note or None,
            "updated_at": now,
        },
    )
    logger.info("Request %s rejected by %s", request_id, ctx.email)
    notifications.notify_request_rejected(db, request, note)
    audit.log_action(db, ctx.user_id, "reject_request", "file_request", request_id, {"note": note})
    return request


def decide(
    db: Session,
    ctx: AuthContext,
    request_id: UUID,
    approve: bool,
    note: str | None = None,
    now: datetime | None = None,
) -> models.FileRequest:
    if approve:
        return approve_request(db, ctx, request_id, now=now)
    return reject_request(db, ctx, request_id, note=note, now=now)


def mark_returned(
    db: Session, ctx: AuthContext, request_id: UUID, now: datetime | None = None
) -> models.FileRequest:
    store = DocumentStore(db)
    request = store.get(COLLECTION, request_id)
    ensure_can_mark_returned(ctx, request)
    _require_status(request, models.CHECKED_OUT_STATUSES, "return")

    now = now or timeutils.utcnow()
    request = store.update(
        COLLECTION,
        request_id,
        {
            "status": "returned",
            "returned_at": now,
            "returned_by": ctx.email,
            "updated_at": now,
        },
    )
    logger.info("Request %s marked returned by %s", request_id, ctx.email)
    notifications.notify_file_returned(db, request)
    audit.log_action(db, ctx.user_id, "mark_returned", "file_request", request_id)
    return request


def mark_overdue(
    db: Session, ctx: AuthContext, request_id: UUID, now: datetime | None = None
) -> models.FileRequest:
    """Persist the derived overdue state for an active request past its due date."""

    require_admin(ctx)
    store = DocumentStore(db)
    request = store.get(COLLECTION, request_id)
    _require_status(request, ("active",), "mark overdue")
    now = now or timeutils.utcnow()
    if not timeutils.is_overdue(request.due_date, now):
        raise InvalidStateError("Request is not past its due date", current_status=request.status)
    request = store.update(COLLECTION, request_id, {"status": "overdue", "updated_at": now})
    logger.info("Request %s persisted as overdue by %s", request_id, ctx.email)
    audit.log_action(db, ctx.user_id, "mark_overdue", "file_request", request_id)
    return request


def delete_request(db: Session, ctx: AuthContext, request_id: UUID) -> None:
    """Hard delete in any state; irreversible."""

    require_admin(ctx)
    store = DocumentStore(db)
    request = store.get(COLLECTION, request_id)
    snapshot = {"status": request.status, "participant_ids": list(request.participant_ids or [])}
    store.delete(COLLECTION, request_id)
    logger.warning("Request %s deleted by %s", request_id, ctx.email)
    audit.log_action(db, ctx.user_id, "delete_request", "file_request", request_id, snapshot)


def bulk_action(
    db: Session,
    ctx: AuthContext,
    action: str,
    request_ids: Iterable[UUID],
    note: str | None = None,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Apply one action to many requests; each item succeeds or fails on its own."""

    require_admin(ctx)
    handlers = {
        "approve": lambda rid: approve_request(db, ctx, rid, now=now),
        "reject": lambda rid: reject_request(db, ctx, rid, note=note or BULK_REJECTION_NOTE, now=now),
        "return": lambda rid: mark_returned(db, ctx, rid, now=now),
    }
    if action not in handlers:
        raise ValidationError(f"Unknown bulk action {action!r}")
    results = []
    for request_id in request_ids:
        try:
            handlers[action](request_id)
        except TrackerError as exc:
            logger.warning("Bulk %s failed for %s: %s", action, request_id, exc.message)
            results.append({"request_id": request_id, "ok": False, "error": exc.message})
        else:
            results.append({"request_id": request_id, "ok": True, "error": None})
    return results


def request_stats(db: Session, ctx: AuthContext, now: datetime | None = None) -> dict[str, int]:
    """Counts by effective status; derived overdue requests count as overdue, not active."""

    stats = {"total": 0, "pending": 0, "active": 0, "overdue": 0, "returned": 0, "rejected": 0}
    for request in list_requests(db, ctx, now=now):
        stats["total"] += 1
        key = effective_status(request, now)
        stats[key] = stats.get(key, 0) + 1
    return stats


def overdue_summary(db: Session, ctx: AuthContext, now: datetime | None = None) -> dict[str, Any]:
    now = now or timeutils.utcnow()
    overdue = [
        request
        for request in list_requests(db, ctx, now=now)
        if request.status in models.CHECKED_OUT_STATUSES and timeutils.is_overdue(request.due_date, now)
    ]
    overdue.sort(key=lambda r: timeutils.ensure_aware(r.due_date))
    summary: dict[str, Any] = {"total": len(overdue), "critical": 0, "moderate": 0, "recent": 0, "requests": []}
    for request in overdue:
        severity = timeutils.overdue_severity(request.due_date, now)
        summary[severity] += 1
        summary["requests"].append(
            {
                "request": request,
                "severity": severity,
                "time_overdue": timeutils.format_time_remaining(request.due_date, now),
            }
        )
    return summary
