"""Identity resolution across the two credential sources.

A request can carry a separately issued access/refresh token pair and a
platform session cookie at the same time. Each source is an
``IdentityProvider``; ``IdentityResolver`` walks them in priority order, so
the "which source wins" policy lives in the provider list and nowhere else.

Credentials are read from and written back to a ``TokenStore``: a small
key/value map whose keys are namespaced under ``auth.`` (token pair) and
``session.`` (platform session). Signing out clears both namespaces.
"""
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional, Sequence

from jose import jwt, JWTError
from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from portal.core.config import settings
from portal.core.errors import PortalError, error_log, with_retry
from portal.core.security import (
    TokenStatus,
    create_token_pair,
    generate_session_token,
    hash_session_token,
    read_token,
)
from portal.models.enums import UserRole
from portal.models.user import AuthSession, AuthUser, Profile, RevokedToken

logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "auth.access_token"
REFRESH_TOKEN_KEY = "auth.refresh_token"
SESSION_TOKEN_KEY = "session.token"
AUTH_KEY_PREFIXES = ("auth.", "session.")


@dataclass(frozen=True)
class Identity:
    id: uuid.UUID
    email: str
    role: UserRole
    client_id: Optional[uuid.UUID] = None
    full_name: Optional[str] = None
    source: str = ""

    @classmethod
    def from_profile(cls, profile: Profile, source: str) -> "Identity":
        return cls(
            id=profile.id,
            email=profile.email,
            role=UserRole(profile.role),
            client_id=profile.client_id,
            full_name=profile.full_name,
            source=source,
        )

    @classmethod
    def from_claims(cls, claims: dict[str, Any], source: str) -> "Identity":
        client_id = claims.get("client_id")
        return cls(
            id=uuid.UUID(claims["sub"]),
            email=claims["email"],
            role=UserRole(claims["role"]),
            client_id=uuid.UUID(client_id) if client_id else None,
            full_name=claims.get("full_name"),
            source=source,
        )

    def claims(self) -> dict[str, Any]:
        return {
            "email": self.email,
            "role": self.role.value,
            "client_id": str(self.client_id) if self.client_id else None,
            "full_name": self.full_name,
        }


class TokenStore:
    """Credential key/value store with change tracking."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = {k: v for k, v in (initial or {}).items() if v}
        self.changed: set[str] = set()

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        self.changed.add(key)

    def delete(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self.changed.add(key)

    def clear_prefix(self, prefix: str) -> None:
        for key in [k for k in self._data if k.startswith(prefix)]:
            self.delete(key)

    def __contains__(self, key: str) -> bool:
        return key in self._data


class ProfileLoader:
    """Loads profile rows with bounded retry on transient failures."""

    def __init__(
        self,
        db: AsyncSession,
        retries: int = settings.PROFILE_FETCH_RETRIES,
        delay: float = settings.PROFILE_FETCH_DELAY_SECONDS,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.db = db
        self.retries = retries
        self.delay = delay
        self.sleep = sleep

    async def _fetch(self, user_id: uuid.UUID) -> Optional[Profile]:
        result = await self.db.execute(select(Profile).where(Profile.id == user_id))
        return result.scalar_one_or_none()

    async def load(self, user_id: uuid.UUID) -> Optional[Profile]:
        kwargs = {"sleep": self.sleep} if self.sleep else {}
        return await with_retry(lambda: self._fetch(user_id), self.retries, self.delay, **kwargs)

    async def load_or_provision(self, auth_user: AuthUser) -> Optional[Profile]:
        profile = await self.load(auth_user.id)
        if profile is not None:
            return profile

        logger.info("No profile for auth user %s, provisioning a minimal one", auth_user.id)
        self.db.add(Profile(
            id=auth_user.id,
            email=auth_user.email,
            full_name=auth_user.full_name or auth_user.email.split("@")[0] or "User",
            role=UserRole.USER,
        ))
        await self.db.commit()
        return await self.load(auth_user.id)


class IdentityProvider(ABC):
    name = "provider"

    @abstractmethod
    async def resolve(self, store: TokenStore) -> Optional[Identity]:
        """Return the identity this source vouches for, or None."""

    @abstractmethod
    async def invalidate(self, store: TokenStore) -> None:
        """Revoke this source's credentials and drop them from the store."""


class TokenPairProvider(IdentityProvider):
    """The separately issued access/refresh JWT pair."""

    name = "token"

    def __init__(self, db: AsyncSession, profiles: ProfileLoader, clock: Callable[[], datetime] = None):
        self.db = db
        self.profiles = profiles
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def resolve(self, store: TokenStore) -> Optional[Identity]:
        access_token = store.get(ACCESS_TOKEN_KEY)
        refresh_token = store.get(REFRESH_TOKEN_KEY)
        if not access_token and not refresh_token:
            return None

        if access_token:
            status, claims = read_token(access_token, "access")
            if status == TokenStatus.VALID:
                return Identity.from_claims(claims, self.name)
            if status == TokenStatus.INVALID:
                logger.info("Discarding malformed access token")
                self._discard(store)
                return None

        identity = await self.refresh(store)
        if identity is None:
            self._discard(store)
        return identity

    async def refresh(self, store: TokenStore) -> Optional[Identity]:
        refresh_token = store.get(REFRESH_TOKEN_KEY)
        if not refresh_token:
            return None

        status, claims = read_token(refresh_token, "refresh")
        if status != TokenStatus.VALID or not claims.get("jti"):
            return None
        # Claim the jti before issuing, so concurrent refreshes rotate once.
        if await self._is_revoked(claims["jti"]) or not await self._revoke(claims):
            logger.warning("Refresh token %s was already used", claims["jti"])
            return None

        profile = await self.profiles.load(uuid.UUID(claims["sub"]))
        if profile is None:
            return None

        identity = Identity.from_profile(profile, self.name)
        self.issue(store, identity)
        return identity

    def issue(self, store: TokenStore, identity: Identity) -> tuple[str, str]:
        access_token, refresh_token = create_token_pair(str(identity.id), identity.claims(), now=self.clock())
        store.set(ACCESS_TOKEN_KEY, access_token)
        store.set(REFRESH_TOKEN_KEY, refresh_token)
        return access_token, refresh_token

    async def invalidate(self, store: TokenStore) -> None:
        refresh_token = store.get(REFRESH_TOKEN_KEY)
        if refresh_token:
            try:
                claims = jwt.get_unverified_claims(refresh_token)
            except JWTError:
                claims = {}
            if claims.get("jti") and not await self._is_revoked(claims["jti"]):
                await self._revoke(claims)
        self._discard(store)

    async def _is_revoked(self, jti: str) -> bool:
        result = await self.db.execute(select(RevokedToken.jti).where(RevokedToken.jti == jti))
        return result.scalar_one_or_none() is not None

    async def _revoke(self, claims: dict[str, Any]) -> bool:
        """Record the jti as revoked; False if another request got there first."""
        exp = claims.get("exp")
        expires_at = (
            datetime.fromtimestamp(exp, tz=timezone.utc) if exp
            else self.clock() + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
        )
        user_id = claims.get("sub")
        self.db.add(RevokedToken(
            jti=claims["jti"],
            user_id=uuid.UUID(user_id) if user_id else None,
            expires_at=expires_at,
        ))
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            return False
        return True

    @staticmethod
    def _discard(store: TokenStore) -> None:
        store.delete(ACCESS_TOKEN_KEY)
        store.delete(REFRESH_TOKEN_KEY)


class PlatformSessionProvider(IdentityProvider):
    """Server-side sessions referenced by an opaque cookie token."""

    name = "session"

    def __init__(self, db: AsyncSession, profiles: ProfileLoader, clock: Callable[[], datetime] = None):
        self.db = db
        self.profiles = profiles
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def resolve(self, store: TokenStore) -> Optional[Identity]:
        token = store.get(SESSION_TOKEN_KEY)
        if not token:
            return None

        result = await self.db.execute(
            select(AuthUser)
            .join(AuthSession, AuthSession.user_id == AuthUser.id)
            .where(AuthSession.token_hash == hash_session_token(token))
            .where(AuthSession.expires_at > self.clock())
        )
        auth_user = result.scalar_one_or_none()
        if auth_user is None:
            store.delete(SESSION_TOKEN_KEY)
            return None

        profile = await self.profiles.load_or_provision(auth_user)
        if profile is None:
            return None
        return Identity.from_profile(profile, self.name)

    async def create_session(self, store: TokenStore, auth_user: AuthUser) -> str:
        token = generate_session_token()
        self.db.add(AuthSession(
            user_id=auth_user.id,
            token_hash=hash_session_token(token),
            expires_at=self.clock() + timedelta(hours=settings.SESSION_EXPIRE_HOURS),
        ))
        await self.db.commit()
        store.set(SESSION_TOKEN_KEY, token)
        return token

    async def invalidate(self, store: TokenStore) -> None:
        token = store.get(SESSION_TOKEN_KEY)
        if token:
            await self.db.execute(delete(AuthSession).where(AuthSession.token_hash == hash_session_token(token)))
            await self.db.commit()
        store.delete(SESSION_TOKEN_KEY)


@dataclass
class IdentityResolver:
    providers: Sequence[IdentityProvider] = field(default_factory=list)

    async def initialize(self, store: TokenStore) -> Optional[Identity]:
        for provider in self.providers:
            try:
                identity = await provider.resolve(store)
            except PortalError as exc:
                # Fail closed: never fall back to a possibly stale identity.
                error_log.record(exc, context=f"identity.{provider.name}")
                return None
            if identity is not None:
                return identity
        return None

    async def revalidate(self, store: TokenStore) -> Optional[Identity]:
        identity = await self.initialize(store)
        if identity is None:
            logger.info("Revalidation found no valid credentials; re-login required")
        return identity

    async def sign_out(self, store: TokenStore) -> None:
        for provider in self.providers:
            try:
                await provider.invalidate(store)
            except Exception as exc:
                error_log.record(exc, context=f"sign_out.{provider.name}")
        for prefix in AUTH_KEY_PREFIXES:
            store.clear_prefix(prefix)


def build_resolver(db: AsyncSession, profiles: Optional[ProfileLoader] = None) -> IdentityResolver:
    profiles = profiles or ProfileLoader(db)
    return IdentityResolver([
        TokenPairProvider(db, profiles),
        PlatformSessionProvider(db, profiles),
    ])
