from datetime import datetime
from typing import Optional, Any, Dict, Literal, List
from pydantic import BaseModel, EmailStr, ConfigDict, Field, model_validator
from uuid import UUID


class UserOut(BaseModel):
    id: str
    email: EmailStr
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    role: Literal["admin", "user"] = "user"
    was_pre_added: bool = False
    last_login: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class RequesterIn(BaseModel):
    """Person an administrator files a request for.

    Either a registered ``user_id`` or a manually entered email and name.
    """

    user_id: Optional[str] = None
    email: Optional[EmailStr] = None
    display_name: Optional[str] = None

    @model_validator(mode="after")
    def _require_identity(self):
        if not self.user_id and not (self.email and self.display_name):
            raise ValueError("Provide user_id or both email and display_name")
        return self


class FileRequestCreate(BaseModel):
    participant_ids: List[str] = Field(default_factory=list)
    reason: str = ""
    on_behalf_of: Optional[RequesterIn] = None


class FileRequestOut(BaseModel):
    id: UUID
    user_id: str
    user_email: Optional[str] = None
    user_name: Optional[str] = None
    participant_ids: List[str]
    reason: str
    status: str
    effective_status: str
    is_overdue: bool
    created_at: datetime
    updated_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    due_date: Optional[datetime] = None
    returned_at: Optional[datetime] = None
    returned_by: Optional[str] = None
    requested_by_admin: bool = False
    admin_id: Optional[str] = None
    admin_email: Optional[str] = None
    admin_name: Optional[str] = None
    requester_registered: bool = True
    model_config = ConfigDict(from_attributes=True)


class FileRequestCreated(BaseModel):
    id: UUID


class DecisionIn(BaseModel):
    approve: bool
    note: Optional[str] = None


class BulkActionIn(BaseModel):
    action: Literal["approve", "reject", "return"]
    request_ids: List[UUID]
    note: Optional[str] = None


class BulkActionItem(BaseModel):
    request_id: UUID
    ok: bool
    error: Optional[str] = None


class BulkActionOut(BaseModel):
    action: str
    succeeded: int
    failed: int
    results: List[BulkActionItem]


class RequestStats(BaseModel):
    total: int = 0
    pending: int = 0
    active: int = 0
    overdue: int = 0
    returned: int = 0
    rejected: int = 0


class OverdueRequestOut(FileRequestOut):
    severity: Literal["critical", "moderate", "recent"]
    time_overdue: str


class OverdueSummary(BaseModel):
    total: int
    critical: int
    moderate: int
    recent: int
    requests: List[OverdueRequestOut]


class AvailabilityOut(BaseModel):
    participant_id: str
    description: str = ""
    category: str = ""
    available: bool
    held_by_request_id: Optional[UUID] = None


class StudyIdCreate(BaseModel):
    participant_id: str
    description: str = ""
    category: str = ""
    notes: str = ""
    status: str = "active"


class StudyIdUpdate(BaseModel):
    participant_id: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[str] = None
    is_active: Optional[bool] = None


class StudyIdBulkCreate(BaseModel):
    participant_ids: List[str]
    description: str = ""


class StudyIdOut(BaseModel):
    id: UUID
    participant_id: str
    description: Optional[str] = ""
    category: Optional[str] = ""
    notes: Optional[str] = ""
    status: Optional[str] = "active"
    is_active: bool
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class StudyIdImportResult(BaseModel):
    added: List[StudyIdOut]
    skipped: List[str]


class NotificationOut(BaseModel):
    id: UUID
    user_id: str
    type: str
    title: str
    message: str
    related_request_id: Optional[UUID] = None
    meta: Dict[str, Any] = Field(default_factory=dict)
    read: bool
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class NotificationStats(BaseModel):
    total: int
    unread: int
    by_type: Dict[str, int]


class NotificationPreferenceUpdate(BaseModel):
    enabled: bool


class NotificationPreferenceOut(BaseModel):
    channel: str
    enabled: bool
    model_config = ConfigDict(from_attributes=True)


class PreAddedUserCreate(BaseModel):
    email: EmailStr
    display_name: Optional[str] = None
    role: Literal["admin", "user"] = "user"


class PreAddedUserOut(BaseModel):
    email: str
    display_name: Optional[str] = None
    role: str
    status: str
    added_by: Optional[str] = None
    added_at: Optional[datetime] = None
    first_login_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class AdminEmailCreate(BaseModel):
    email: EmailStr


class AdminEmailOut(BaseModel):
    email: str
    added_by: Optional[str] = None
    added_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class AuditReportEntry(BaseModel):
    action: str
    count: int
