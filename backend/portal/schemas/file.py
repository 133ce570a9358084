from pydantic import BaseModel, Field
from typing import Optional
from uuid import UUID
from datetime import datetime

from portal.schemas.assignment import AssignmentResponse, TargetIn, TargetOut


class FileResponse(BaseModel):
    id: UUID
    filename: str
    original_filename: str
    storage_path: str
    file_size: int
    file_type: str
    uploaded_by: UUID
    description: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class FileAssignRequest(BaseModel):
    target: TargetIn


class BulkAssignRequest(BaseModel):
    file_ids: list[UUID] = Field(min_length=1)
    targets: list[TargetIn] = Field(min_length=1)


class FileAssignmentResponse(AssignmentResponse):
    file_id: UUID

    @classmethod
    def from_row(cls, assignment) -> "FileAssignmentResponse":
        return cls(
            id=assignment.id,
            file_id=assignment.file_id,
            target=TargetOut.from_target(assignment.target),
            assigned_by=assignment.assigned_by,
            created_at=assignment.created_at,
        )


class BulkAssignmentFailureResponse(BaseModel):
    file_id: UUID
    target: TargetOut
    error: str


class BulkAssignResponse(BaseModel):
    created: list[FileAssignmentResponse]
    failed: list[BulkAssignmentFailureResponse]


class SignedUrlResponse(BaseModel):
    url: str
    expires_in: int


class FileStatsResponse(BaseModel):
    total_files: int
    total_size: int
    recent_uploads: int
    active_assignments: int


class AccessCountResponse(BaseModel):
    file_id: UUID
    count: int
