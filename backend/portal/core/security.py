from datetime import datetime, timedelta, timezone
from typing import Optional, Any
from jose import jwt, JWTError, ExpiredSignatureError
from passlib.context import CryptContext
from portal.core.config import settings
import enum
import secrets
import hashlib
import uuid

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class TokenStatus(str, enum.Enum):
    VALID = "valid"
    EXPIRED = "expired"
    INVALID = "invalid"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_token(
    subject: str,
    token_type: str = "access",
    expires_delta: Optional[timedelta] = None,
    extra_claims: Optional[dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> str:
    issued = now or datetime.now(timezone.utc)
    if expires_delta:
        expire = issued + expires_delta
    else:
        expire = issued + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode = {
        "sub": subject,
        "type": token_type,
        "exp": expire,
        "iat": issued,
        "iss": settings.TOKEN_ISSUER,
        "aud": settings.TOKEN_AUDIENCE,
    }
    if extra_claims:
        to_encode.update(extra_claims)

    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_token_pair(
    subject: str,
    claims: dict[str, Any],
    now: Optional[datetime] = None,
) -> tuple[str, str]:
    """Issue an access token carrying the identity claims and a refresh token
    identified by a unique jti."""
    access_token = create_token(subject, token_type="access", extra_claims=claims, now=now)
    refresh_token = create_token(
        subject,
        token_type="refresh",
        expires_delta=timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
        extra_claims={"jti": uuid.uuid4().hex},
        now=now,
    )
    return access_token, refresh_token


def read_token(token: str, expected_type: str) -> tuple[TokenStatus, Optional[dict[str, Any]]]:
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            audience=settings.TOKEN_AUDIENCE,
            issuer=settings.TOKEN_ISSUER,
        )
    except ExpiredSignatureError:
        return TokenStatus.EXPIRED, None
    except JWTError:
        return TokenStatus.INVALID, None

    if payload.get("type") != expected_type or not payload.get("sub"):
        return TokenStatus.INVALID, None
    return TokenStatus.VALID, payload


def generate_session_token() -> str:
    return secrets.token_urlsafe(32)


def hash_session_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_storage_name(original_name: str, now: Optional[datetime] = None) -> str:
    extension = original_name.rsplit(".", 1)[-1].lower() if "." in original_name else ""
    timestamp = int((now or datetime.now(timezone.utc)).timestamp() * 1000)
    name = f"{timestamp}_{secrets.token_hex(16)}"
    return f"{name}.{extension}" if extension else name
