from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from . import config
from .exceptions import PermissionDeniedError

# purpose: centralize identity, role and permission helpers for request workflows
# status: active

ROLES = ("user", "admin")


@dataclass(frozen=True)
class Identity:
    """Caller as asserted by the identity provider."""

    uid: str
    email: str
    display_name: str | None = None
    photo_url: str | None = None


@dataclass(frozen=True)
class AuthContext:
    """Explicit per-call context handed to every service operation."""

    user_id: str
    email: str
    display_name: str | None
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @classmethod
    def from_user(cls, user: Any) -> "AuthContext":
        return cls(
            user_id=user.id,
            email=user.email,
            display_name=user.display_name,
            role=user.role or "user",
        )


def normalize_email(email: str) -> str:
    return email.strip().lower()


def resolve_role(
    identity: Identity,
    allow_list: Iterable[str],
    pre_added_record: Any | None,
    admin_record_exists: bool,
) -> str:
    """Merge the three admin sources; the most privileged result wins."""

    allowed = {normalize_email(email) for email in allow_list}
    if identity.email and normalize_email(identity.email) in allowed:
        return "admin"
    if pre_added_record is not None and getattr(pre_added_record, "role", None) == "admin":
        return "admin"
    if admin_record_exists:
        return "admin"
    return "user"


def require_admin(ctx: AuthContext) -> None:
    if not ctx.is_admin:
        raise PermissionDeniedError("Admin privileges required")


def ensure_can_mark_returned(ctx: AuthContext, request: Any) -> None:
    """Admins may always return files; requesters only when RETURN_POLICY=requester."""

    if ctx.is_admin:
        return
    if config.return_policy() == "requester" and request.user_id == ctx.user_id:
        return
    raise PermissionDeniedError("Not authorized to mark this request returned")


def ensure_can_view_request(ctx: AuthContext, request: Any) -> None:
    if ctx.is_admin or request.user_id == ctx.user_id:
        return
    raise PermissionDeniedError("Not authorized to view this request")
