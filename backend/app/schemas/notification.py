from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional

from app.models.notification import NotificationType, Priority
from app.models.user import UserRole


class NotificationResponse(BaseModel):
    id: str
    user_id: str
    type: NotificationType
    title: str
    message: str
    data: dict = {}
    is_read: bool
    read_at: Optional[datetime] = None
    priority: Priority
    expires_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class MarkReadRequest(BaseModel):
    notification_ids: Optional[list[str]] = None


class NotificationSend(BaseModel):
    user_id: str
    type: NotificationType
    title: str = Field(..., min_length=1, max_length=100)
    message: str = Field(..., min_length=1, max_length=500)
    data: Optional[dict] = None
    priority: Priority = Priority.MEDIUM
    expires_at: Optional[datetime] = None


class NotificationBroadcast(BaseModel):
    type: NotificationType
    title: str = Field(..., min_length=1, max_length=100)
    message: str = Field(..., min_length=1, max_length=500)
    data: Optional[dict] = None
    priority: Priority = Priority.MEDIUM
    user_roles: list[UserRole] = []
