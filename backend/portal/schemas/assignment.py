from pydantic import BaseModel, Field
from typing import Annotated, Literal, Optional, Union
from uuid import UUID
from datetime import datetime

from portal.core.targets import AssignmentTarget, Broadcast, ClientTarget, UserTarget
from portal.models.enums import TargetKind


class UserTargetIn(BaseModel):
    kind: Literal["user"]
    user_id: UUID

    def to_target(self) -> AssignmentTarget:
        return UserTarget(self.user_id)


class ClientTargetIn(BaseModel):
    kind: Literal["client"]
    client_id: UUID

    def to_target(self) -> AssignmentTarget:
        return ClientTarget(self.client_id)


class BroadcastIn(BaseModel):
    kind: Literal["broadcast"]

    def to_target(self) -> AssignmentTarget:
        return Broadcast()


TargetIn = Annotated[Union[UserTargetIn, ClientTargetIn, BroadcastIn], Field(discriminator="kind")]


class TargetOut(BaseModel):
    kind: TargetKind
    user_id: Optional[UUID] = None
    client_id: Optional[UUID] = None

    @classmethod
    def from_target(cls, target: AssignmentTarget) -> "TargetOut":
        if isinstance(target, UserTarget):
            return cls(kind=TargetKind.USER, user_id=target.user_id)
        if isinstance(target, ClientTarget):
            return cls(kind=TargetKind.CLIENT, client_id=target.client_id)
        return cls(kind=TargetKind.BROADCAST)


class AssignmentResponse(BaseModel):
    id: UUID
    target: TargetOut
    assigned_by: UUID
    created_at: datetime

    @classmethod
    def from_row(cls, assignment) -> "AssignmentResponse":
        return cls(
            id=assignment.id,
            target=TargetOut.from_target(assignment.target),
            assigned_by=assignment.assigned_by,
            created_at=assignment.created_at,
        )
