from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from slowapi import Limiter
from slowapi.util import get_remote_address

from ..database import get_db
from .. import config, models, schemas
from ..auth import current_identity, get_current_user
from ..logging_config import set_user_id
from ..rbac import AuthContext, Identity
from ..services.provisioning import sync_user_on_login

limiter = Limiter(key_func=get_remote_address)


def rate_limit(limit: str):
    if config.testing():
        def wrapper(func):
            return func
        return wrapper
    return limiter.limit(limit)


router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/login", response_model=schemas.UserOut)
@rate_limit("10/minute")
async def login(
    request: Request,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    """Reconcile the caller against provisioning and refresh their role."""
    user = sync_user_on_login(db, identity)
    set_user_id(user.id)
    return user


@router.get("/me", response_model=schemas.UserOut)
async def me(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    return db.get(models.User, ctx.user_id)
