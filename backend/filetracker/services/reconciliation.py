"""Overdue and due-soon reconciliation of checked-out requests.

``OverdueMonitor`` evaluates the checked-out request set against the clock and
dispatches each (request, kind) alert once per monitor. Watermark columns on
the request keep the periodic worker from re-notifying after a restart. The
monitor never rewrites ``status``; a request an admin persisted as overdue
is alerted like one whose due date has passed.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import config, models, notify, timeutils
from ..store import DocumentStore, SubscriptionHub, hub as default_hub
from . import notifications

# purpose: raise overdue and due-soon alerts for checked-out requests
# status: active

logger = logging.getLogger(__name__)

OVERDUE = "overdue"
DUE_SOON = "due_soon"

_WATERMARKS = {
    OVERDUE: "overdue_notified_at",
    DUE_SOON: "due_soon_notified_at",
}


def partition(
    requests: Iterable[models.FileRequest],
    now: datetime | None = None,
    due_soon_hours: int | None = None,
) -> tuple[list[models.FileRequest], list[models.FileRequest]]:
    """Split checked-out requests into (overdue, due soon).

    Overdue means persisted as overdue or strictly past the due date; due
    soon means due within the next ``due_soon_hours`` hours.
    """

    now = now or timeutils.utcnow()
    window = config.due_soon_window_hours() if due_soon_hours is None else due_soon_hours
    overdue, due_soon = [], []
    for request in requests:
        if request.status not in models.CHECKED_OUT_STATUSES:
            continue
        if request.status == "overdue" or timeutils.is_overdue(request.due_date, now):
            overdue.append(request)
            continue
        if request.due_date is None:
            continue
        remaining = timeutils.time_remaining(request.due_date, now).total_seconds()
        if 0 < remaining <= window * 3600:
            due_soon.append(request)
    return overdue, due_soon


class OverdueMonitor:
    """Deduplicating alert dispatcher over the checked-out request set.

    ``attach`` opens a live query on checked-out requests and re-evaluates on
    every delivery; ``close`` releases it. ``evaluate`` can also be driven
    directly, as the periodic worker does.
    """

    def __init__(
        self,
        subscriptions: SubscriptionHub | None = None,
        clock: Callable[[], datetime] = timeutils.utcnow,
    ):
        self.subscriptions = subscriptions or default_hub
        self.clock = clock
        self.sent: set[tuple[UUID, str]] = set()
        self._unsubscribe: Callable[[], None] | None = None

    def evaluate(
        self,
        db: Session,
        requests: Iterable[models.FileRequest],
        now: datetime | None = None,
    ) -> list[tuple[UUID, str]]:
        """Dispatch alerts for requests newly in the overdue or due-soon set."""

        now = now or self.clock()
        overdue, due_soon = partition(requests, now)
        dispatched: list[tuple[UUID, str]] = []
        admin_ids: list[str] | None = None

        for kind, batch in ((OVERDUE, overdue), (DUE_SOON, due_soon)):
            for request in batch:
                key = (request.id, kind)
                if key in self.sent:
                    continue
                self.sent.add(key)
                if getattr(request, _WATERMARKS[kind]) is not None:
                    continue

                if kind == OVERDUE:
                    notifications.notify_file_overdue(db, request, now)
                    if admin_ids is None:
                        admin_ids = notifications.get_admin_user_ids(db)
                    notifications.notify_admin_file_overdue(db, request, admin_ids, now)
                else:
                    hours = timeutils.hours_remaining(request.due_date, now)
                    notifications.notify_file_due_soon(db, request, hours)
                self._stamp(db, request.id, kind, now)
                dispatched.append(key)
                logger.info("Sent %s alert for request %s", kind, request.id)
        return dispatched

    def _stamp(self, db: Session, request_id: UUID, kind: str, now: datetime) -> None:
        # written directly so the watermark does not re-trigger live queries
        try:
            row = db.get(models.FileRequest, request_id)
            if row is None:
                return
            setattr(row, _WATERMARKS[kind], now)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.error("Failed to record %s watermark for %s", kind, request_id, exc_info=True)

    def attach(self) -> "OverdueMonitor":
        if self._unsubscribe is not None:
            return self
        query = self.subscriptions.subscribe(
            "fileRequests", {"status": list(models.CHECKED_OUT_STATUSES)}
        )
        self._unsubscribe = query.listen(self._on_snapshot)
        return self

    def _on_snapshot(self, requests: list[models.FileRequest]) -> None:
        db = self.subscriptions.session_factory()
        try:
            self.evaluate(db, requests)
        finally:
            db.close()

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    @property
    def attached(self) -> bool:
        return self._unsubscribe is not None


def reconcile_due_dates(db: Session, now: datetime | None = None) -> dict[str, int]:
    """Periodic entry point: one evaluation pass over every checked-out request."""

    now = now or timeutils.utcnow()
    active = DocumentStore(db).find("fileRequests", {"status": list(models.CHECKED_OUT_STATUSES)})
    dispatched = OverdueMonitor().evaluate(db, active, now)
    counts = {
        OVERDUE: len([k for _, k in dispatched if k == OVERDUE]),
        DUE_SOON: len([k for _, k in dispatched if k == DUE_SOON]),
    }
    if dispatched:
        logger.info(
            "Reconciled %d checked-out requests: %d overdue, %d due soon",
            len(active),
            counts[OVERDUE],
            counts[DUE_SOON],
        )
    return counts


def pending_message(count: int) -> str:
    return f"{count} new file request{'s' if count > 1 else ''} pending approval"


class PendingRequestWatcher:
    """Report how many pending requests arrived since the previous delivery.

    The first delivery only records a baseline.
    """

    def __init__(
        self,
        on_new: Callable[[int], None],
        subscriptions: SubscriptionHub | None = None,
    ):
        self.on_new = on_new
        self.subscriptions = subscriptions or default_hub
        self._seen: set[UUID] | None = None
        self._unsubscribe: Callable[[], None] | None = None

    def attach(self) -> "PendingRequestWatcher":
        if self._unsubscribe is None:
            query = self.subscriptions.subscribe("fileRequests", {"status": "pending"})
            self._unsubscribe = query.listen(self._on_snapshot)
        return self

    def _on_snapshot(self, requests: list[models.FileRequest]) -> None:
        current = {request.id for request in requests}
        if self._seen is not None:
            new = len(current - self._seen)
            if new:
                self.on_new(new)
        self._seen = current

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None


def push_pending_count_to_admins(db: Session, count: int) -> None:
    """Realtime nudge for admins; not persisted as a notification."""

    event = {"type": "pending_requests", "data": {"count": count, "message": pending_message(count)}}
    for admin_id in notifications.get_admin_user_ids(db):
        notify.send_push(admin_id, event)
