from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Annotated, Optional
from uuid import UUID

from portal.core.database import get_db
from portal.core.errors import error_log
from portal.core.identity import Identity
from portal.api.deps import get_current_admin
from portal.models.enums import UserRole
from portal.schemas.client import (
    ClientCreate,
    ClientDeletionResponse,
    ClientResponse,
    ClientSummaryResponse,
    ClientUpdate,
    SystemStatsResponse,
)
from portal.schemas.profile import ProfileResponse, UserCreate, UserUpdate
from portal.services.admin_service import admin_service

router = APIRouter()

AdminIdentity = Annotated[Identity, Depends(get_current_admin)]


# ============== CLIENTS ==============

@router.get("/clients", response_model=list[ClientSummaryResponse])
async def list_clients(
    admin: AdminIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    summaries = await admin_service.list_clients(db, admin)
    return [
        ClientSummaryResponse(
            **ClientResponse.model_validate(s.client).model_dump(),
            user_count=s.user_count,
            file_count=s.file_count,
        )
        for s in summaries
    ]


@router.post("/clients", response_model=ClientResponse, status_code=status.HTTP_201_CREATED)
async def create_client(
    request: ClientCreate,
    admin: AdminIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    return await admin_service.create_client(
        db,
        admin,
        company_name=request.company_name,
        contact_email=request.contact_email,
        manager_full_name=request.manager_full_name,
        manager_password=request.manager_password,
    )


@router.patch("/clients/{client_id}", response_model=ClientResponse)
async def update_client(
    client_id: UUID,
    request: ClientUpdate,
    admin: AdminIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    changes = request.model_dump(exclude_unset=True)
    return await admin_service.update_client(db, admin, client_id, **changes)


@router.delete("/clients/{client_id}", response_model=ClientDeletionResponse)
async def delete_client(
    client_id: UUID,
    admin: AdminIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
    delete_users: bool = True,
):
    report = await admin_service.delete_client(db, admin, client_id, delete_users=delete_users)
    return ClientDeletionResponse(
        client_id=report.client_id,
        deleted_user_ids=report.deleted_user_ids,
        warnings=report.warnings,
    )


# ============== USERS ==============

@router.get("/users", response_model=list[ProfileResponse])
async def list_users(
    admin: AdminIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
    role: Optional[UserRole] = None,
    client_id: Optional[UUID] = None,
    search: Optional[str] = None,
):
    return await admin_service.list_users(db, admin, role=role, client_id=client_id, search=search)


@router.post("/users", response_model=ProfileResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    request: UserCreate,
    admin: AdminIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    return await admin_service.create_user(
        db,
        admin,
        email=request.email,
        password=request.password,
        full_name=request.full_name,
        role=request.role,
        client_id=request.client_id,
    )


@router.patch("/users/{user_id}", response_model=ProfileResponse)
async def update_user(
    user_id: UUID,
    request: UserUpdate,
    admin: AdminIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    changes = request.model_dump(exclude_unset=True)
    return await admin_service.update_user(db, admin, user_id, **changes)


@router.delete("/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: UUID,
    admin: AdminIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    await admin_service.delete_user(db, admin, user_id)


# ============== SYSTEM ==============

@router.get("/stats", response_model=SystemStatsResponse)
async def system_stats(
    admin: AdminIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    stats = await admin_service.system_stats(db, admin)
    return SystemStatsResponse(**stats.__dict__)


@router.get("/errors")
async def recent_errors(
    admin: AdminIdentity,
):
    return [entry.to_dict() for entry in reversed(error_log.entries())]


@router.delete("/errors", status_code=status.HTTP_204_NO_CONTENT)
async def clear_errors(
    admin: AdminIdentity,
):
    error_log.clear()
