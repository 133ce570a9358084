from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from uuid import UUID
from datetime import datetime

from portal.models.enums import ClientStatus


class ClientCreate(BaseModel):
    company_name: str = Field(min_length=1)
    contact_email: EmailStr
    manager_full_name: Optional[str] = None
    manager_password: Optional[str] = Field(default=None, min_length=8)


class ClientUpdate(BaseModel):
    company_name: Optional[str] = None
    contact_email: Optional[EmailStr] = None
    status: Optional[ClientStatus] = None
    client_admin_id: Optional[UUID] = None


class ClientResponse(BaseModel):
    id: UUID
    company_name: str
    contact_email: str
    status: ClientStatus
    client_admin_id: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ClientSummaryResponse(ClientResponse):
    user_count: int = 0
    file_count: int = 0


class ClientDeletionResponse(BaseModel):
    client_id: UUID
    deleted_user_ids: list[UUID]
    warnings: list[str]


class SystemStatsResponse(BaseModel):
    clients: int
    active_clients: int
    users_by_role: dict[str, int]
    files: int
    storage_bytes: int
    messages: int
    unread_messages: int
    news: int


class ClientStatsResponse(BaseModel):
    team_members: int
    assigned_files: int
    uploaded_files: int
    unread_messages: int
