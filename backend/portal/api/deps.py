from typing import Optional, Annotated, Callable
from fastapi import Depends, HTTPException, Request, Response, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from portal.core import policy
from portal.core.config import settings
from portal.core.database import get_db
from portal.core.identity import (
    ACCESS_TOKEN_KEY,
    REFRESH_TOKEN_KEY,
    SESSION_TOKEN_KEY,
    Identity,
    IdentityResolver,
    TokenStore,
    build_resolver,
)
from portal.models.enums import UserRole

security = HTTPBearer(auto_error=False)

REFRESH_TOKEN_HEADER = "X-Refresh-Token"
ACCESS_TOKEN_RESPONSE_HEADER = "X-Access-Token"
REFRESH_TOKEN_RESPONSE_HEADER = "X-Refresh-Token"


async def get_token_store(
    request: Request,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)] = None,
) -> TokenStore:
    return TokenStore({
        ACCESS_TOKEN_KEY: credentials.credentials if credentials else None,
        REFRESH_TOKEN_KEY: request.headers.get(REFRESH_TOKEN_HEADER),
        SESSION_TOKEN_KEY: request.cookies.get(settings.SESSION_COOKIE_NAME),
    })


async def get_resolver(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> IdentityResolver:
    return build_resolver(db)


def write_credentials(store: TokenStore, response: Response) -> None:
    """Send credentials that changed during resolution back to the browser."""
    if ACCESS_TOKEN_KEY in store.changed and store.get(ACCESS_TOKEN_KEY):
        response.headers[ACCESS_TOKEN_RESPONSE_HEADER] = store.get(ACCESS_TOKEN_KEY)
    if REFRESH_TOKEN_KEY in store.changed and store.get(REFRESH_TOKEN_KEY):
        response.headers[REFRESH_TOKEN_RESPONSE_HEADER] = store.get(REFRESH_TOKEN_KEY)
    if SESSION_TOKEN_KEY in store.changed:
        token = store.get(SESSION_TOKEN_KEY)
        if token:
            response.set_cookie(
                settings.SESSION_COOKIE_NAME,
                token,
                max_age=settings.SESSION_EXPIRE_HOURS * 3600,
                httponly=True,
                secure=settings.SESSION_COOKIE_SECURE,
                samesite="lax",
            )
        else:
            response.delete_cookie(settings.SESSION_COOKIE_NAME)


async def get_current_identity(
    response: Response,
    store: Annotated[TokenStore, Depends(get_token_store)],
    resolver: Annotated[IdentityResolver, Depends(get_resolver)],
) -> Identity:
    identity = await resolver.initialize(store)
    write_credentials(store, response)
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


CurrentIdentity = Annotated[Identity, Depends(get_current_identity)]


async def get_current_admin(
    identity: CurrentIdentity,
) -> Identity:
    if identity.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return identity


async def get_current_client_manager(
    identity: CurrentIdentity,
) -> Identity:
    if identity.role != UserRole.CLIENT or identity.client_id is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Client access required",
        )
    return identity


def require_permission(permission: str) -> Callable:
    async def dependency(identity: CurrentIdentity) -> Identity:
        if not policy.has_permission(identity.role, permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permission: {permission}",
            )
        return identity

    return dependency
