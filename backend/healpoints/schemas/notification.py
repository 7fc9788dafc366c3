# healpoints/schemas/notification.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    message: str
    type: str
    target_id: Optional[int] = None
    is_read: bool
    created_at: Optional[datetime] = None


class MarkReadRequest(BaseModel):
    """Omit `notification_id` to mark the whole inbox as read."""
    notification_id: Optional[int] = None


class NotificationListResponse(BaseModel):
    success: bool = True
    notifications: List[NotificationOut] = Field(default_factory=list)
    unread_count: int = 0


class MarkReadResponse(BaseModel):
    success: bool = True
    message: str
    updated: int
