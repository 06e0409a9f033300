from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import get_current_user
from .. import schemas
from ..rbac import AuthContext
from ..services import notifications as inbox

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("", response_model=list[schemas.NotificationOut])
async def list_notifications(
    unread_only: bool = Query(False, description="Only unread notifications"),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    return inbox.list_notifications(db, ctx, unread_only=unread_only)


@router.get("/stats", response_model=schemas.NotificationStats)
async def notification_stats(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    return inbox.notification_stats(db, ctx)


@router.get("/preferences", response_model=list[schemas.NotificationPreferenceOut])
async def get_preferences(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    return inbox.get_preferences(db, ctx)


@router.put("/preferences/{channel}", response_model=schemas.NotificationPreferenceOut)
async def set_preference(
    channel: str,
    data: schemas.NotificationPreferenceUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    return inbox.set_preference(db, ctx, channel, data.enabled)


@router.post("/read-all")
async def mark_all_read(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    return {"updated": inbox.mark_all_read(db, ctx)}


@router.post("/{notification_id}/read", response_model=schemas.NotificationOut)
async def mark_read(
    notification_id: UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    return inbox.mark_read(db, ctx, notification_id)


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    inbox.delete_notification(db, ctx, notification_id)
    return {"status": "deleted"}
