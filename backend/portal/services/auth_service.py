from typing import Optional
from datetime import datetime, timezone
import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from portal.core.errors import AuthenticationRequired, ValidationError
from portal.core.security import get_password_hash, verify_password
from portal.models.enums import UserRole
from portal.models.user import AuthUser, Profile

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def validate_role_client(role: UserRole, client_id: Optional[uuid.UUID]) -> None:
    if role == UserRole.ADMIN and client_id is not None:
        raise ValidationError("client_id", "Administrators cannot belong to a client", client_id)
    if role in (UserRole.CLIENT, UserRole.USER) and client_id is None:
        raise ValidationError("client_id", f"A {role.value} account must belong to a client")


async def email_taken(db: AsyncSession, email: str) -> bool:
    result = await db.execute(select(AuthUser.id).where(func.lower(AuthUser.email) == normalize_email(email)))
    return result.scalar_one_or_none() is not None


async def create_account(
    db: AsyncSession,
    email: str,
    password: str,
    full_name: str,
    role: Optional[UserRole] = None,
    client_id: Optional[uuid.UUID] = None,
    commit: bool = True,
) -> tuple[AuthUser, Optional[Profile]]:
    """Create the platform identity and, when a role is given, its profile."""
    if not full_name or not full_name.strip():
        raise ValidationError("full_name", "Full name is required", full_name)
    if len(password) < 8:
        raise ValidationError("password", "Password must be at least 8 characters")
    if await email_taken(db, email):
        raise ValidationError("email", "This email is already registered", email)

    auth_user = AuthUser(
        id=uuid.uuid4(),
        email=normalize_email(email),
        password_hash=get_password_hash(password),
        full_name=full_name.strip(),
    )
    db.add(auth_user)

    profile = None
    if role is not None:
        validate_role_client(role, client_id)
        # The profile row references auth_users, so the identity must exist first.
        await db.flush()
        profile = Profile(
            id=auth_user.id,
            email=auth_user.email,
            full_name=auth_user.full_name,
            role=role,
            client_id=client_id,
        )
        db.add(profile)

    if commit:
        await db.commit()
        await db.refresh(auth_user)
        if profile is not None:
            await db.refresh(profile)
    return auth_user, profile


async def authenticate(db: AsyncSession, email: str, password: str) -> AuthUser:
    result = await db.execute(select(AuthUser).where(AuthUser.email == normalize_email(email)))
    auth_user = result.scalar_one_or_none()
    if not auth_user or not verify_password(password, auth_user.password_hash):
        logger.info("Failed login for %s", normalize_email(email))
        raise AuthenticationRequired("Incorrect email or password")

    auth_user.last_login_at = datetime.now(timezone.utc)
    await db.commit()
    await db.refresh(auth_user)
    return auth_user
