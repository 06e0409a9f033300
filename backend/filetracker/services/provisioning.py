"""Pre-added users, admin allow-list and login-time role reconciliation."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from sqlalchemy.orm import Session

from .. import audit, config, models, timeutils
from ..exceptions import NotFoundError, ValidationError
from ..rbac import AuthContext, Identity, normalize_email, require_admin, resolve_role
from ..store import DocumentStore

logger = logging.getLogger(__name__)


def sync_user_on_login(
    db: Session,
    identity: Identity,
    *,
    allow_list: Iterable[str] | None = None,
    now: datetime | None = None,
) -> models.User:
    """Reconcile an identity against the provisioning tables and upsert its projection."""

    now = now or timeutils.utcnow()
    store = DocumentStore(db)
    email = normalize_email(identity.email)
    allow_list = config.admin_emails() if allow_list is None else allow_list

    pre_added = store.get_or_none("preAddedUsers", email)
    if pre_added is not None and pre_added.status != "active":
        store.update(
            "preAddedUsers",
            email,
            {"status": "active", "first_login_at": now},
        )

    admin_record_exists = (
        store.get_or_none("admins", identity.uid) is not None
        or store.get_or_none("adminEmails", email) is not None
    )
    role = resolve_role(identity, allow_list, pre_added, admin_record_exists)

    user = store.upsert(
        "users",
        identity.uid,
        {
            "email": email,
            "display_name": identity.display_name,
            "photo_url": identity.photo_url,
            "role": role,
            "was_pre_added": pre_added is not None,
            "last_login": now,
        },
    )
    logger.info("Login reconciled for %s with role %s", email, role)
    return user


def list_pre_added_users(db: Session) -> list[models.PreAddedUser]:
    return DocumentStore(db).find("preAddedUsers", order="-added_at")


def add_pre_added_user(
    db: Session,
    ctx: AuthContext,
    *,
    email: str,
    display_name: str | None = None,
    role: str = "user",
) -> models.PreAddedUser:
    """Idempotent upsert by email; admins are also written to the allow-list table."""

    require_admin(ctx)
    if role not in ("admin", "user"):
        raise ValidationError(f"Unknown role {role!r}")
    email = normalize_email(email)
    if not email:
        raise ValidationError("Email is required")
    store = DocumentStore(db)
    existing = store.get_or_none("preAddedUsers", email)
    values = {"display_name": display_name, "role": role, "added_by": ctx.user_id}
    if existing is None:
        values.update({"status": "pending", "added_at": timeutils.utcnow()})
    record = store.upsert("preAddedUsers", email, values)
    if role == "admin":
        add_admin_email(db, ctx, email=email)
    audit.log_action(db, ctx.user_id, "pre_add_user", "pre_added_user", email, {"role": role})
    return record


def remove_pre_added_user(db: Session, ctx: AuthContext, email: str) -> None:
    require_admin(ctx)
    email = normalize_email(email)
    store = DocumentStore(db)
    store.delete("preAddedUsers", email)
    try:
        store.delete("adminEmails", email)
    except NotFoundError:
        pass
    audit.log_action(db, ctx.user_id, "remove_pre_added_user", "pre_added_user", email)


def list_admin_emails(db: Session) -> list[models.AdminEmail]:
    return DocumentStore(db).find("adminEmails", order="email")


def add_admin_email(db: Session, ctx: AuthContext, *, email: str) -> models.AdminEmail:
    require_admin(ctx)
    email = normalize_email(email)
    if not email:
        raise ValidationError("Please enter an email address")
    store = DocumentStore(db)
    values = {"added_by": ctx.user_id}
    if store.get_or_none("adminEmails", email) is None:
        values["added_at"] = timeutils.utcnow()
    return store.upsert("adminEmails", email, values)


def list_users(db: Session, *, role: str | None = None) -> list[models.User]:
    filters = {"role": role} if role else None
    return DocumentStore(db).find("users", filters, order="email")
