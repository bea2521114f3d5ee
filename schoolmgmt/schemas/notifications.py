from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime


class NotificationInDB(BaseModel):
    id: int
    user_id: int
    type: str
    title: str
    message: str
    data: Optional[Dict[str, Any]] = None
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class NotificationContent(BaseModel):
    type: str = Field(..., min_length=1, max_length=50)
    title: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1)
    data: Optional[Dict[str, Any]] = None


class NotificationCreate(NotificationContent):
    user_id: int


class NotificationBroadcast(NotificationContent):
    user_ids: List[int] = Field(..., min_length=1)


class BroadcastResult(BaseModel):
    sent: int


class UnreadCount(BaseModel):
    unread: int
