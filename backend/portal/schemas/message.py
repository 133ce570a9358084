from pydantic import BaseModel, Field
from typing import Optional
from uuid import UUID
from datetime import datetime

from portal.models.enums import MessageType


class MessageCreate(BaseModel):
    recipient_id: UUID
    content: str = Field(min_length=1)
    subject: Optional[str] = None
    message_type: Optional[MessageType] = None


class ClientBroadcastCreate(BaseModel):
    content: str = Field(min_length=1)
    subject: Optional[str] = None


class MessageResponse(BaseModel):
    id: UUID
    sender_id: UUID
    recipient_id: UUID
    subject: Optional[str] = None
    content: str
    message_type: MessageType
    read_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class MessageStatsResponse(BaseModel):
    total: int
    unread: int
    sent: int
    received: int
