from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from uuid import UUID
from datetime import datetime

from portal.models.enums import UserRole


class ProfileResponse(BaseModel):
    id: UUID
    email: str
    full_name: str
    role: UserRole
    client_id: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PeerResponse(BaseModel):
    id: UUID
    full_name: str
    email: str
    role: UserRole

    class Config:
        from_attributes = True


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    full_name: str = Field(min_length=1)
    role: UserRole
    client_id: Optional[UUID] = None


class UserUpdate(BaseModel):
    full_name: Optional[str] = None
    role: Optional[UserRole] = None
    client_id: Optional[UUID] = None


class TeamMemberCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    full_name: str = Field(min_length=1)


class NameUpdate(BaseModel):
    full_name: str = Field(min_length=1)
