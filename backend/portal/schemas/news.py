from pydantic import BaseModel, Field
from typing import Optional
from uuid import UUID
from datetime import datetime

from portal.schemas.assignment import AssignmentResponse, TargetIn, TargetOut


class NewsCreate(BaseModel):
    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    targets: list[TargetIn] = []


class NewsUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None


class NewsAssignRequest(BaseModel):
    targets: list[TargetIn] = Field(min_length=1)


class NewsResponse(BaseModel):
    id: UUID
    title: str
    content: str
    created_by: UUID
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class NewsAssignmentResponse(AssignmentResponse):
    news_id: UUID

    @classmethod
    def from_row(cls, assignment) -> "NewsAssignmentResponse":
        return cls(
            id=assignment.id,
            news_id=assignment.news_id,
            target=TargetOut.from_target(assignment.target),
            assigned_by=assignment.assigned_by,
            created_at=assignment.created_at,
        )


class NewsWithAssignmentsResponse(NewsResponse):
    assignments: list[NewsAssignmentResponse] = []
