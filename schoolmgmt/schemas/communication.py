from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


# Message schemas
class MessageBase(BaseModel):
    subject: Optional[str] = Field(None, max_length=255)
    body: str = Field(..., min_length=1)


class MessageCreate(MessageBase):
    recipient_id: int
    parent_message_id: Optional[int] = None


class MessageInDB(MessageBase):
    id: int
    sender_id: int
    recipient_id: int
    parent_message_id: Optional[int] = None
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class Contact(BaseModel):
    id: int
    full_name: str
    email: str
    role_name: Optional[str] = None

    class Config:
        from_attributes = True
