from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Annotated
import logging

from portal.core.config import settings
from portal.core.database import get_db
from portal.core.identity import (
    Identity,
    IdentityResolver,
    PlatformSessionProvider,
    ProfileLoader,
    TokenPairProvider,
    TokenStore,
    REFRESH_TOKEN_KEY,
    ACCESS_TOKEN_KEY,
)
from portal.core.policy import permissions_for
from portal.api.deps import get_resolver, get_token_store, write_credentials
from portal.schemas.auth import (
    IdentityResponse,
    LoginRequest,
    LoginResponse,
    RefreshRequest,
    SignupRequest,
    TokenPairResponse,
)
from portal.services.auth_service import authenticate, create_account

logger = logging.getLogger(__name__)

router = APIRouter()


def identity_response(identity: Identity) -> IdentityResponse:
    return IdentityResponse(
        id=identity.id,
        email=identity.email,
        role=identity.role.value,
        client_id=identity.client_id,
        full_name=identity.full_name,
        source=identity.source,
        permissions=permissions_for(identity.role),
    )


async def start_session(db: AsyncSession, store: TokenStore, response: Response, auth_user) -> LoginResponse:
    """Open a platform session and issue a token pair for the same identity."""
    profiles = ProfileLoader(db)
    sessions = PlatformSessionProvider(db, profiles)
    tokens = TokenPairProvider(db, profiles)

    await sessions.create_session(store, auth_user)
    profile = await profiles.load_or_provision(auth_user)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Profile unavailable")

    identity = Identity.from_profile(profile, sessions.name)
    tokens.issue(store, identity)
    write_credentials(store, response)
    return LoginResponse(
        access_token=store.get(ACCESS_TOKEN_KEY),
        refresh_token=store.get(REFRESH_TOKEN_KEY),
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=identity_response(identity),
    )


@router.post("/signup", response_model=LoginResponse, status_code=status.HTTP_201_CREATED)
async def signup(
    request: SignupRequest,
    response: Response,
    db: Annotated[AsyncSession, Depends(get_db)],
    store: Annotated[TokenStore, Depends(get_token_store)],
):
    # The profile is provisioned on first resolution, with the least-privileged role.
    auth_user, _ = await create_account(db, request.email, request.password, request.full_name)
    logger.info("New signup %s", auth_user.id)
    return await start_session(db, store, response, auth_user)


@router.post("/login", response_model=LoginResponse)
async def login(
    request: LoginRequest,
    response: Response,
    db: Annotated[AsyncSession, Depends(get_db)],
    store: Annotated[TokenStore, Depends(get_token_store)],
):
    auth_user = await authenticate(db, request.email, request.password)
    return await start_session(db, store, response, auth_user)


@router.post("/refresh", response_model=TokenPairResponse)
async def refresh(
    request: RefreshRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    tokens = TokenPairProvider(db, ProfileLoader(db))
    store = TokenStore({REFRESH_TOKEN_KEY: request.refresh_token})
    identity = await tokens.refresh(store)
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired refresh token",
        )
    return TokenPairResponse(
        access_token=store.get(ACCESS_TOKEN_KEY),
        refresh_token=store.get(REFRESH_TOKEN_KEY),
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


@router.get("/me", response_model=IdentityResponse)
async def me(
    response: Response,
    store: Annotated[TokenStore, Depends(get_token_store)],
    resolver: Annotated[IdentityResolver, Depends(get_resolver)],
):
    identity = await resolver.revalidate(store)
    write_credentials(store, response)
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return identity_response(identity)


@router.post("/logout")
async def logout(
    response: Response,
    store: Annotated[TokenStore, Depends(get_token_store)],
    resolver: Annotated[IdentityResolver, Depends(get_resolver)],
):
    await resolver.sign_out(store)
    write_credentials(store, response)
    response.delete_cookie(settings.SESSION_COOKIE_NAME)
    return {"message": "Signed out"}
