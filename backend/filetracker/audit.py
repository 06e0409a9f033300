import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from . import models

logger = logging.getLogger(__name__)


def log_action(
    db: Session,
    user_id: str | None,
    action: str,
    target_type: str | None = None,
    target_id: Any = None,
    details: dict | None = None,
):
    """Record a decision; failures are logged and never undo the decision itself."""
    log = models.AuditLog(
        user_id=user_id,
        action=action,
        target_type=target_type,
        target_id=str(target_id) if target_id else None,
        details=details or {},
        created_at=datetime.now(timezone.utc),
    )
    try:
        db.add(log)
        db.commit()
        db.refresh(log)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to record audit entry %s for %s", action, target_id)
        return None
    return log


def generate_report(
    db: Session,
    start: datetime,
    end: datetime,
    user_id: str | None = None,
):
    query = db.query(models.AuditLog).filter(
        models.AuditLog.created_at >= start,
        models.AuditLog.created_at <= end,
    )
    if user_id:
        query = query.filter(models.AuditLog.user_id == user_id)
    rows = (
        query.with_entities(models.AuditLog.action, func.count(models.AuditLog.id))
        .group_by(models.AuditLog.action)
        .all()
    )
    return [{"action": r[0], "count": r[1]} for r in rows]
