from fastapi import APIRouter, Depends, File as FileParam, Form, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Annotated, Optional
from uuid import UUID

from portal.core.config import settings
from portal.core.database import get_db
from portal.api.deps import CurrentIdentity, require_permission
from portal.core import policy
from portal.core.identity import Identity
from portal.realtime.gateway import ADMINS_ROOM, FILES_CHANGED, notify_rooms, rooms_for_targets
from portal.schemas.assignment import TargetOut
from portal.schemas.file import (
    AccessCountResponse,
    BulkAssignRequest,
    BulkAssignResponse,
    BulkAssignmentFailureResponse,
    FileAssignRequest,
    FileAssignmentResponse,
    FileResponse,
    FileStatsResponse,
    SignedUrlResponse,
)
from portal.services.file_service import file_service
from portal.services.file_validation import read_upload

router = APIRouter()


@router.get("", response_model=list[FileResponse])
async def list_files(
    identity: CurrentIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    return await file_service.list_files(db, identity)


@router.post("/upload", response_model=FileResponse, status_code=status.HTTP_201_CREATED)
async def upload_file(
    identity: Annotated[Identity, Depends(require_permission(policy.UPLOAD_FILES))],
    db: Annotated[AsyncSession, Depends(get_db)],
    file: Annotated[UploadFile, FileParam()],
    description: Annotated[Optional[str], Form()] = None,
):
    data = await read_upload(file)
    uploaded = await file_service.upload(
        db,
        identity,
        filename=file.filename or "",
        content_type=file.content_type,
        data=data,
        description=description,
    )
    notify_rooms(FILES_CHANGED, [ADMINS_ROOM])
    return uploaded


@router.get("/stats", response_model=FileStatsResponse)
async def file_stats(
    identity: CurrentIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    stats = await file_service.stats(db, identity)
    return FileStatsResponse(**stats.__dict__)


@router.get("/access-counts", response_model=list[AccessCountResponse])
async def access_counts(
    identity: CurrentIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    counts = await file_service.access_counts(db, identity)
    return [AccessCountResponse(file_id=file_id, count=count) for file_id, count in counts.items()]


@router.post("/bulk-assign", response_model=BulkAssignResponse)
async def bulk_assign(
    request: BulkAssignRequest,
    identity: Annotated[Identity, Depends(require_permission(policy.ASSIGN_FILES))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    targets = [target.to_target() for target in request.targets]
    report = await file_service.bulk_assign(db, identity, request.file_ids, targets)
    if report.created:
        notify_rooms(FILES_CHANGED, rooms_for_targets(a.target for a in report.created))
    return BulkAssignResponse(
        created=[FileAssignmentResponse.from_row(a) for a in report.created],
        failed=[
            BulkAssignmentFailureResponse(file_id=f.file_id, target=TargetOut.from_target(f.target), error=f.error)
            for f in report.failed
        ],
    )


@router.delete("/assignments/{assignment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_assignment(
    assignment_id: UUID,
    identity: CurrentIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    await file_service.remove_assignment(db, identity, assignment_id)


@router.get("/{file_id}", response_model=FileResponse)
async def get_file(
    file_id: UUID,
    identity: CurrentIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    return await file_service.record_view(db, identity, file_id)


@router.delete("/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_file(
    file_id: UUID,
    identity: CurrentIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    await file_service.delete_file(db, identity, file_id)
    notify_rooms(FILES_CHANGED, [ADMINS_ROOM])


@router.get("/{file_id}/download-url", response_model=SignedUrlResponse)
async def download_url(
    file_id: UUID,
    identity: CurrentIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    url = await file_service.download_url(db, identity, file_id)
    return SignedUrlResponse(url=url, expires_in=settings.SIGNED_URL_EXPIRE_SECONDS)


@router.get("/{file_id}/preview-url", response_model=SignedUrlResponse)
async def preview_url(
    file_id: UUID,
    identity: CurrentIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    url = await file_service.preview_url(db, identity, file_id)
    return SignedUrlResponse(url=url, expires_in=settings.SIGNED_URL_EXPIRE_SECONDS)


@router.get("/{file_id}/assignments", response_model=list[FileAssignmentResponse])
async def list_assignments(
    file_id: UUID,
    identity: CurrentIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    assignments = await file_service.list_assignments(db, identity, file_id)
    return [FileAssignmentResponse.from_row(a) for a in assignments]


@router.post("/{file_id}/assignments", response_model=FileAssignmentResponse, status_code=status.HTTP_201_CREATED)
async def assign_file(
    file_id: UUID,
    request: FileAssignRequest,
    identity: CurrentIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    target = request.target.to_target()
    assignment = await file_service.assign(db, identity, file_id, target)
    notify_rooms(FILES_CHANGED, rooms_for_targets([target]))
    return FileAssignmentResponse.from_row(assignment)
