import uuid
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy import (
    Column,
    String,
    Boolean,
    DateTime,
    JSON,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID

from .database import Base
from . import timeutils


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


REQUEST_STATUSES = ("pending", "active", "rejected", "returned", "overdue")
OPEN_STATUSES = ("pending", "active")
CHECKED_OUT_STATUSES = ("active", "overdue")
TERMINAL_STATUSES = ("rejected", "returned")


class User(Base):
    """Projection of an identity-provider account, refreshed on every login."""

    __tablename__ = "users"
    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, index=True)
    display_name = Column(String)
    photo_url = Column(String)
    role = Column(String, default="user", nullable=False)
    was_pre_added = Column(Boolean, default=False, nullable=False)
    last_login = Column(DateTime(timezone=True), default=_utcnow)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class PreAddedUser(Base):
    __tablename__ = "pre_added_users"
    email = Column(String, primary_key=True)
    display_name = Column(String)
    role = Column(String, default="user", nullable=False)
    status = Column(String, default="pending", nullable=False)  # pending, active
    added_by = Column(String)
    added_at = Column(DateTime(timezone=True), default=_utcnow)
    first_login_at = Column(DateTime(timezone=True))


class AdminEmail(Base):
    __tablename__ = "admin_emails"
    email = Column(String, primary_key=True)
    added_by = Column(String)
    added_at = Column(DateTime(timezone=True), default=_utcnow)


class Admin(Base):
    __tablename__ = "admins"
    user_id = Column(String, primary_key=True)
    granted_by = Column(String)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class StudyId(Base):
    __tablename__ = "study_ids"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    participant_id = Column(String, unique=True, nullable=False)
    description = Column(Text, default="")
    category = Column(String, default="")
    notes = Column(Text, default="")
    # free-text label shown in the catalogue; availability is gated by is_active
    status = Column(String, default="active")
    is_active = Column(Boolean, default=True, nullable=False)
    created_by = Column(String)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class FileRequest(Base):
    __tablename__ = "file_requests"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String, nullable=False, index=True)
    user_email = Column(String)
    user_name = Column(String)
    participant_ids = Column(JSON, nullable=False, default=list)
    reason = Column(Text, nullable=False)
    status = Column(String, nullable=False, default="pending", index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    approved_at = Column(DateTime(timezone=True))
    approved_by = Column(String)
    rejected_at = Column(DateTime(timezone=True))
    rejected_by = Column(String)
    rejection_reason = Column(Text)
    due_date = Column(DateTime(timezone=True))
    returned_at = Column(DateTime(timezone=True))
    returned_by = Column(String)

    # set when an administrator files the request for someone else
    requested_by_admin = Column(Boolean, default=False, nullable=False)
    admin_id = Column(String)
    admin_email = Column(String)
    admin_name = Column(String)
    requester_registered = Column(Boolean, default=True, nullable=False)

    overdue_notified_at = Column(DateTime(timezone=True))
    due_soon_notified_at = Column(DateTime(timezone=True))

    @property
    def is_overdue(self) -> bool:
        if self.status == "overdue":
            return True
        return self.status == "active" and timeutils.is_overdue(self.due_date)

    @property
    def effective_status(self) -> str:
        return "overdue" if self.is_overdue else self.status

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES


class Notification(Base):
    __tablename__ = "notifications"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String, index=True, nullable=False)
    type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    related_request_id = Column(UUID(as_uuid=True))
    meta = Column(JSON, default=dict)
    read = Column(Boolean, default=False, nullable=False)
    deleted = Column(Boolean, default=False, nullable=False)
    deleted_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class NotificationPreference(Base):
    __tablename__ = "notification_preferences"
    __table_args__ = (
        sa.UniqueConstraint("user_id", "channel"),
    )
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String, nullable=False)
    channel = Column(String, nullable=False)  # push, email
    enabled = Column(Boolean, default=True)


class AuditLog(Base):
    __tablename__ = "audit_logs"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String)
    action = Column(String, nullable=False)
    target_type = Column(String)
    target_id = Column(String)
    details = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
