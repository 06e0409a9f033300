"""Identity-token verification and the per-request ``AuthContext`` dependency.

Tokens are issued by the external identity provider and carry ``sub``
(uid), ``email``, ``name`` and ``picture``. This service only verifies them.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from . import config, models
from .database import get_db
from .logging_config import set_user_id
from .rbac import AuthContext, Identity
from .services.provisioning import sync_user_on_login

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def create_identity_token(identity: Identity, expires_delta: Optional[timedelta] = None) -> str:
    """Sign a token in the identity provider's format; used by tooling and tests."""
    payload = {
        "sub": identity.uid,
        "email": identity.email,
        "name": identity.display_name,
        "picture": identity.photo_url,
        "exp": datetime.now(timezone.utc) + (expires_delta or timedelta(hours=1)),
    }
    return jwt.encode(
        payload,
        config.identity_token_secret(),
        algorithm=config.identity_token_algorithm(),
    )


def decode_identity_token(token: str) -> Identity:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(
            token,
            config.identity_token_secret(),
            algorithms=[config.identity_token_algorithm()],
        )
    except JWTError:
        raise credentials_exception
    uid = payload.get("sub")
    email = payload.get("email")
    if not uid or not email:
        raise credentials_exception
    return Identity(
        uid=uid,
        email=email,
        display_name=payload.get("name"),
        photo_url=payload.get("picture"),
    )


async def current_identity(token: str = Depends(oauth2_scheme)) -> Identity:
    return decode_identity_token(token)


async def get_current_user(
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
) -> AuthContext:
    """Resolve the caller; a token seen for the first time is reconciled as a login."""
    user = db.get(models.User, identity.uid)
    if user is None:
        user = sync_user_on_login(db, identity)
    set_user_id(user.id)
    return AuthContext.from_user(user)


async def get_current_admin(ctx: AuthContext = Depends(get_current_user)) -> AuthContext:
    if not ctx.is_admin:
        raise HTTPException(status_code=403, detail="Admin privileges required")
    return ctx
