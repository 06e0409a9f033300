from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import get_current_user
from .. import audit, schemas
from ..rbac import AuthContext, require_admin
from ..services import provisioning
from ..services.notifications import cleanup_old_notifications

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/users", response_model=list[schemas.UserOut])
async def list_users(
    role: Optional[str] = None,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    require_admin(ctx)
    return provisioning.list_users(db, role=role)


@router.get("/users/pre-added", response_model=list[schemas.PreAddedUserOut])
async def list_pre_added_users(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    require_admin(ctx)
    return provisioning.list_pre_added_users(db)


@router.post("/users/pre-added", response_model=schemas.PreAddedUserOut, status_code=201)
async def add_pre_added_user(
    data: schemas.PreAddedUserCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    return provisioning.add_pre_added_user(
        db, ctx, email=data.email, display_name=data.display_name, role=data.role
    )


@router.delete("/users/pre-added/{email}")
async def remove_pre_added_user(
    email: str,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    provisioning.remove_pre_added_user(db, ctx, email)
    return {"status": "deleted"}


@router.get("/users/admin-emails", response_model=list[schemas.AdminEmailOut])
async def list_admin_emails(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    require_admin(ctx)
    return provisioning.list_admin_emails(db)


@router.post("/users/admin-emails", response_model=schemas.AdminEmailOut, status_code=201)
async def add_admin_email(
    data: schemas.AdminEmailCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    return provisioning.add_admin_email(db, ctx, email=data.email)


@router.get("/audit/report", response_model=list[schemas.AuditReportEntry])
async def audit_report(
    start: datetime,
    end: datetime,
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    require_admin(ctx)
    return audit.generate_report(db, start, end, user_id)


@router.post("/notifications/cleanup")
async def cleanup_notifications(
    days_old: Optional[int] = None,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    require_admin(ctx)
    return {"deleted": cleanup_old_notifications(db, days_old=days_old)}
