"""Assignment targets as a tagged union.

Assignment rows store their target in two nullable columns. Everything above
the model layer works with ``UserTarget | ClientTarget | Broadcast`` and only
converts at the edge, so the "exactly one column" rule never needs a runtime
check outside of ``to_columns``/``from_columns``.
"""
from dataclasses import dataclass
from typing import Optional, Union
import uuid

from portal.core.errors import ValidationError
from portal.models.enums import TargetKind


@dataclass(frozen=True)
class UserTarget:
    user_id: uuid.UUID
    kind = TargetKind.USER


@dataclass(frozen=True)
class ClientTarget:
    client_id: uuid.UUID
    kind = TargetKind.CLIENT


@dataclass(frozen=True)
class Broadcast:
    kind = TargetKind.BROADCAST


AssignmentTarget = Union[UserTarget, ClientTarget, Broadcast]


def to_columns(target: AssignmentTarget) -> tuple[Optional[uuid.UUID], Optional[uuid.UUID]]:
    """Return ``(assigned_to_user, assigned_to_client)`` for a target."""
    if isinstance(target, UserTarget):
        return target.user_id, None
    if isinstance(target, ClientTarget):
        return None, target.client_id
    if isinstance(target, Broadcast):
        return None, None
    raise ValidationError("target", f"Unknown assignment target: {target!r}")


def from_columns(
    assigned_to_user: Optional[uuid.UUID],
    assigned_to_client: Optional[uuid.UUID],
) -> AssignmentTarget:
    if assigned_to_user is not None and assigned_to_client is not None:
        raise ValidationError("target", "An assignment cannot target both a user and a client")
    if assigned_to_user is not None:
        return UserTarget(assigned_to_user)
    if assigned_to_client is not None:
        return ClientTarget(assigned_to_client)
    return Broadcast()


def build_target(
    kind: TargetKind,
    target_id: Optional[uuid.UUID] = None,
) -> AssignmentTarget:
    if kind == TargetKind.BROADCAST:
        if target_id is not None:
            raise ValidationError("target", "A broadcast assignment takes no target id")
        return Broadcast()
    if target_id is None:
        raise ValidationError("target", f"A {kind.value} assignment requires a target id")
    if kind == TargetKind.USER:
        return UserTarget(target_id)
    return ClientTarget(target_id)
