from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from uuid import UUID


class SignupRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    full_name: str = Field(min_length=1)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class TokenPairResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class IdentityResponse(BaseModel):
    id: UUID
    email: str
    role: str
    client_id: Optional[UUID] = None
    full_name: Optional[str] = None
    source: str
    permissions: list[str]


class LoginResponse(TokenPairResponse):
    user: IdentityResponse
