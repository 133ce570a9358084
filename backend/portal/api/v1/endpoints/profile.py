from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Annotated

from portal.core.database import get_db
from portal.api.deps import CurrentIdentity
from portal.schemas.profile import NameUpdate, ProfileResponse
from portal.services.admin_service import admin_service

router = APIRouter()


@router.get("", response_model=ProfileResponse)
async def get_own_profile(
    identity: CurrentIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    return await admin_service.get_profile(db, identity.id)


@router.patch("", response_model=ProfileResponse)
async def update_own_profile(
    request: NameUpdate,
    identity: CurrentIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    return await admin_service.update_own_name(db, identity, request.full_name)
