from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Annotated
from uuid import UUID

from portal.core.database import get_db
from portal.core.identity import Identity
from portal.api.deps import get_current_client_manager
from portal.schemas.client import ClientDeletionResponse, ClientStatsResponse
from portal.schemas.profile import NameUpdate, ProfileResponse, TeamMemberCreate
from portal.services.admin_service import admin_service

router = APIRouter()

ManagerIdentity = Annotated[Identity, Depends(get_current_client_manager)]


@router.get("", response_model=list[ProfileResponse])
async def list_team(
    manager: ManagerIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    return await admin_service.list_team(db, manager)


@router.post("", response_model=ProfileResponse, status_code=status.HTTP_201_CREATED)
async def add_team_member(
    request: TeamMemberCreate,
    manager: ManagerIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    return await admin_service.add_team_member(db, manager, request.email, request.full_name, request.password)


@router.get("/stats", response_model=ClientStatsResponse)
async def client_stats(
    manager: ManagerIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    stats = await admin_service.client_stats(db, manager)
    return ClientStatsResponse(**stats.__dict__)


@router.delete("/client", response_model=ClientDeletionResponse)
async def delete_own_client(
    manager: ManagerIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    report = await admin_service.delete_client(db, manager, manager.client_id, delete_users=True)
    return ClientDeletionResponse(
        client_id=report.client_id,
        deleted_user_ids=report.deleted_user_ids,
        warnings=report.warnings,
    )


@router.patch("/{member_id}", response_model=ProfileResponse)
async def update_team_member(
    member_id: UUID,
    request: NameUpdate,
    manager: ManagerIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    return await admin_service.update_team_member(db, manager, member_id, request.full_name)


@router.delete("/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_team_member(
    member_id: UUID,
    manager: ManagerIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    await admin_service.remove_team_member(db, manager, member_id)
