"""Authorization policy.

One rule table drives both the server-side checks the services run before
every write or scoped read, and the permission list handed to the UI as an
affordance hint (``/auth/me``). The functions here are pure; they accept any
object with ``id``, ``role`` and ``client_id`` attributes (an ``Identity`` or
a ``Profile`` row).
"""
from typing import Any, Iterable, Optional, Sequence, TypeVar
import uuid

from sqlalchemy import or_, and_
from sqlalchemy.sql.elements import ColumnElement

from portal.core.targets import AssignmentTarget, Broadcast, ClientTarget, UserTarget
from portal.models.enums import MessageType, UserRole
from portal.models.file import FileAssignment
from portal.models.news import NewsAssignment

P = TypeVar("P")

MANAGE_CLIENTS = "manage_clients"
MANAGE_USERS = "manage_users"
MANAGE_OWN_USERS = "manage_own_users"
MANAGE_FILES = "manage_files"
UPLOAD_FILES = "upload_files"
ASSIGN_FILES = "assign_files"
VIEW_ASSIGNED_FILES = "view_assigned_files"
SEND_MESSAGES = "send_messages"
SEND_MESSAGES_TO_USERS = "send_messages_to_users"
SEND_MESSAGES_TO_ADMIN = "send_messages_to_admin"
SEND_MESSAGES_TO_CLIENT = "send_messages_to_client"
CREATE_NEWS = "create_news"
ASSIGN_NEWS = "assign_news"
VIEW_ASSIGNED_NEWS = "view_assigned_news"
VIEW_SYSTEM_STATS = "view_system_stats"
VIEW_CLIENT_STATS = "view_client_stats"
UPDATE_OWN_PROFILE = "update_own_profile"

ROLE_PERMISSIONS: dict[UserRole, tuple[str, ...]] = {
    UserRole.ADMIN: (
        MANAGE_CLIENTS,
        MANAGE_USERS,
        MANAGE_FILES,
        UPLOAD_FILES,
        ASSIGN_FILES,
        SEND_MESSAGES,
        CREATE_NEWS,
        ASSIGN_NEWS,
        VIEW_SYSTEM_STATS,
        UPDATE_OWN_PROFILE,
    ),
    UserRole.CLIENT: (
        MANAGE_OWN_USERS,
        UPLOAD_FILES,
        ASSIGN_FILES,
        VIEW_ASSIGNED_FILES,
        VIEW_ASSIGNED_NEWS,
        SEND_MESSAGES_TO_USERS,
        SEND_MESSAGES_TO_ADMIN,
        VIEW_CLIENT_STATS,
        UPDATE_OWN_PROFILE,
    ),
    UserRole.USER: (
        VIEW_ASSIGNED_FILES,
        VIEW_ASSIGNED_NEWS,
        SEND_MESSAGES_TO_ADMIN,
        SEND_MESSAGES_TO_CLIENT,
        UPDATE_OWN_PROFILE,
    ),
}

MESSAGE_TYPES: dict[tuple[UserRole, UserRole], MessageType] = {
    (UserRole.ADMIN, UserRole.CLIENT): MessageType.ADMIN_TO_CLIENT,
    (UserRole.ADMIN, UserRole.USER): MessageType.ADMIN_TO_USER,
    (UserRole.ADMIN, UserRole.ADMIN): MessageType.ADMIN_TO_USER,
    (UserRole.CLIENT, UserRole.USER): MessageType.CLIENT_TO_USER,
    (UserRole.CLIENT, UserRole.ADMIN): MessageType.CLIENT_TO_ADMIN,
    (UserRole.USER, UserRole.ADMIN): MessageType.USER_TO_ADMIN,
    (UserRole.USER, UserRole.CLIENT): MessageType.USER_TO_CLIENT,
}


def role_of(subject: Any) -> UserRole:
    role = subject.role if hasattr(subject, "role") else subject
    return role if isinstance(role, UserRole) else UserRole(str(role).lower())


def permissions_for(role: Any) -> list[str]:
    return list(ROLE_PERMISSIONS.get(role_of(role), ()))


def has_permission(role: Any, permission: str) -> bool:
    try:
        return permission in ROLE_PERMISSIONS[role_of(role)]
    except (KeyError, ValueError):
        return False


def is_admin(actor: Any) -> bool:
    return role_of(actor) == UserRole.ADMIN


def same_client(actor: Any, other: Any) -> bool:
    return actor.client_id is not None and actor.client_id == other.client_id


def can_message(actor: Any, target: Any) -> bool:
    if actor.id == target.id:
        return False

    actor_role = role_of(actor)
    target_role = role_of(target)
    if actor_role == UserRole.ADMIN:
        return True
    if target_role == UserRole.ADMIN:
        return True
    if actor_role == UserRole.CLIENT:
        return target_role == UserRole.USER and same_client(actor, target)
    if actor_role == UserRole.USER:
        return target_role == UserRole.CLIENT and same_client(actor, target)
    return False


def messageable_peers(actor: Any, candidates: Iterable[P]) -> list[P]:
    return [candidate for candidate in candidates if can_message(actor, candidate)]


def message_type_for(sender: Any, recipient: Any) -> MessageType:
    return MESSAGE_TYPES[(role_of(sender), role_of(recipient))]


def target_visible_to(actor: Any, target: AssignmentTarget, member_ids: Sequence[uuid.UUID] = ()) -> bool:
    """Whether an assignment target grants ``actor`` visibility.

    ``member_ids`` are the profile ids of the actor's client; a client manager
    also sees items assigned to its users.
    """
    if is_admin(actor):
        return True
    if isinstance(target, Broadcast):
        return True
    if isinstance(target, UserTarget):
        if target.user_id == actor.id:
            return True
        return role_of(actor) == UserRole.CLIENT and target.user_id in member_ids
    if isinstance(target, ClientTarget):
        return actor.client_id is not None and target.client_id == actor.client_id
    return False


def can_view_file(actor: Any, file: Any, targets: Iterable[AssignmentTarget]) -> bool:
    if is_admin(actor) or file.uploaded_by == actor.id:
        return True
    return any(
        target_visible_to(actor, target)
        for target in targets
        if not isinstance(target, Broadcast)
    )


def can_delete_file(actor: Any, file: Any) -> bool:
    return is_admin(actor) or file.uploaded_by == actor.id


def can_assign(actor: Any, target: AssignmentTarget, target_profile: Optional[Any] = None) -> bool:
    """Files never take a broadcast target; admins may target anyone, a
    client manager only its own client or users belonging to it."""
    if isinstance(target, Broadcast):
        return False
    role = role_of(actor)
    if role == UserRole.ADMIN:
        return True
    if role != UserRole.CLIENT or actor.client_id is None:
        return False
    if isinstance(target, ClientTarget):
        return target.client_id == actor.client_id
    if target_profile is None:
        return False
    return target_profile.id == actor.id or (
        role_of(target_profile) == UserRole.USER and target_profile.client_id == actor.client_id
    )


def can_remove_assignment(actor: Any, assignment: Any) -> bool:
    return is_admin(actor) or assignment.assigned_by == actor.id


def can_manage_profile(actor: Any, profile: Any) -> bool:
    role = role_of(actor)
    if role == UserRole.ADMIN:
        return True
    if role == UserRole.CLIENT:
        return role_of(profile) == UserRole.USER and same_client(actor, profile)
    return False


def file_assignment_clause(actor: Any) -> ColumnElement[bool]:
    """Rows of ``file_assignments`` visible to a client or user.

    Without a client_id the client branch is left out rather than compared
    against NULL.
    """
    conditions = [FileAssignment.assigned_to_user == actor.id]
    if actor.client_id is not None:
        conditions.append(FileAssignment.assigned_to_client == actor.client_id)
    return or_(*conditions)


def news_assignment_clause(actor: Any, member_ids: Sequence[uuid.UUID] = ()) -> ColumnElement[bool]:
    broadcast = and_(
        NewsAssignment.assigned_to_user.is_(None),
        NewsAssignment.assigned_to_client.is_(None),
    )
    conditions = [broadcast, NewsAssignment.assigned_to_user == actor.id]
    if actor.client_id is not None:
        conditions.append(NewsAssignment.assigned_to_client == actor.client_id)
    if role_of(actor) == UserRole.CLIENT and member_ids:
        conditions.append(NewsAssignment.assigned_to_user.in_(list(member_ids)))
    return or_(*conditions)
