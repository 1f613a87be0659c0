"""
Notification banner and activity log models.
"""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from enum import Enum

from health_requests.models.user import Role


class NotificationKind(str, Enum):
    """Severity of a banner."""
    INFO = "info"
    WARNING = "warning"
    SUCCESS = "success"
    ERROR = "error"


class NotificationCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1)
    kind: NotificationKind = NotificationKind.INFO
    target_role: Optional[Role] = None  # None broadcasts to every role


class NotificationUpdate(BaseModel):
    title: Optional[str] = None
    message: Optional[str] = None
    kind: Optional[NotificationKind] = None
    target_role: Optional[Role] = None
    is_active: Optional[bool] = None


class NotificationResponse(BaseModel):
    id: int
    title: str
    message: str
    kind: NotificationKind
    target_role: Optional[Role] = None
    is_active: bool
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ActivityLogResponse(BaseModel):
    id: int
    user_id: Optional[int] = None
    user_name: str
    user_role: str
    request_id: Optional[int] = None
    patient_name: str
    action: str
    description: str
    request_kind: Optional[str] = None
    request_name: Optional[str] = None
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
