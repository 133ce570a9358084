"""Client, user and team administration.

Admins manage every client and profile. A client manager manages only the
``user`` profiles of its own client (its "team"). Everyone may rename
themselves.
"""
from typing import Any, Optional
from dataclasses import dataclass, field
import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, update, func, or_

from portal.core import policy
from portal.core.errors import NotFound, PermissionDenied, ValidationError, error_log
from portal.models.client import Client
from portal.models.enums import ClientStatus, UserRole
from portal.models.file import File, FileAccessLog, FileAssignment
from portal.models.message import Message
from portal.models.news import News, NewsAssignment
from portal.models.user import AuthSession, AuthUser, Profile
from portal.services.auth_service import create_account, normalize_email, validate_role_client
from portal.services.storage_service import storage_service

logger = logging.getLogger(__name__)

_UNSET: Any = object()


@dataclass
class ClientSummary:
    client: Client
    user_count: int
    file_count: int


@dataclass
class ClientDeletionReport:
    client_id: uuid.UUID
    deleted_user_ids: list[uuid.UUID] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class SystemStats:
    clients: int
    active_clients: int
    users_by_role: dict[str, int]
    files: int
    storage_bytes: int
    messages: int
    unread_messages: int
    news: int


@dataclass
class ClientStats:
    team_members: int
    assigned_files: int
    uploaded_files: int
    unread_messages: int


class AdminService:
    def __init__(self, storage: Any = None):
        self.storage = storage if storage is not None else storage_service

    def _require_admin(self, actor: Any) -> None:
        if not policy.is_admin(actor):
            raise PermissionDenied("Admin access required")

    async def get_client(self, db: AsyncSession, client_id: uuid.UUID) -> Client:
        result = await db.execute(select(Client).where(Client.id == client_id))
        client = result.scalar_one_or_none()
        if not client:
            raise NotFound("Client not found")
        return client

    async def get_profile(self, db: AsyncSession, profile_id: uuid.UUID) -> Profile:
        result = await db.execute(select(Profile).where(Profile.id == profile_id))
        profile = result.scalar_one_or_none()
        if not profile:
            raise NotFound("User not found")
        return profile

    # Clients

    async def list_clients(self, db: AsyncSession, actor: Any) -> list[ClientSummary]:
        self._require_admin(actor)
        users = (
            select(func.count(Profile.id))
            .where(Profile.client_id == Client.id)
            .correlate(Client)
            .scalar_subquery()
        )
        files = (
            select(func.count(func.distinct(FileAssignment.file_id)))
            .where(FileAssignment.assigned_to_client == Client.id)
            .correlate(Client)
            .scalar_subquery()
        )
        result = await db.execute(select(Client, users, files).order_by(Client.created_at.desc()))
        return [ClientSummary(client, user_count, file_count) for client, user_count, file_count in result.all()]

    async def create_client(
        self,
        db: AsyncSession,
        actor: Any,
        company_name: str,
        contact_email: str,
        manager_full_name: Optional[str] = None,
        manager_password: Optional[str] = None,
    ) -> Client:
        """Create a client and, when credentials are given, its manager login."""
        self._require_admin(actor)
        if not company_name or not company_name.strip():
            raise ValidationError("company_name", "Company name is required", company_name)

        client = Client(
            id=uuid.uuid4(),
            company_name=company_name.strip(),
            contact_email=normalize_email(contact_email),
            status=ClientStatus.ACTIVE,
        )
        db.add(client)

        if manager_full_name and manager_password:
            await db.flush()
            _, manager = await create_account(
                db,
                contact_email,
                manager_password,
                manager_full_name,
                role=UserRole.CLIENT,
                client_id=client.id,
                commit=False,
            )
            await db.flush()
            client.client_admin_id = manager.id

        await db.commit()
        await db.refresh(client)
        logger.info("Client %s created by %s", client.id, actor.id)
        return client

    async def update_client(
        self,
        db: AsyncSession,
        actor: Any,
        client_id: uuid.UUID,
        company_name: Optional[str] = None,
        contact_email: Optional[str] = None,
        status: Optional[ClientStatus] = None,
        client_admin_id: Any = _UNSET,
    ) -> Client:
        self._require_admin(actor)
        client = await self.get_client(db, client_id)

        if company_name is not None:
            if not company_name.strip():
                raise ValidationError("company_name", "Company name is required", company_name)
            client.company_name = company_name.strip()
        if contact_email is not None:
            client.contact_email = normalize_email(contact_email)
        if status is not None:
            client.status = status
        if client_admin_id is not _UNSET:
            if client_admin_id is not None:
                manager = await self.get_profile(db, client_admin_id)
                if manager.client_id != client.id or policy.role_of(manager) != UserRole.CLIENT:
                    raise ValidationError("client_admin_id", "The manager must be a client account of this client")
            client.client_admin_id = client_admin_id

        await db.commit()
        await db.refresh(client)
        return client

    async def delete_client(
        self,
        db: AsyncSession,
        actor: Any,
        client_id: uuid.UUID,
        delete_users: bool = True,
    ) -> ClientDeletionReport:
        """Delete a client, optionally with every profile attached to it.

        Users are removed one by one; a user that cannot be removed becomes a
        warning in the report and does not stop the others.
        """
        if not (policy.is_admin(actor) or (policy.role_of(actor) == UserRole.CLIENT and actor.client_id == client_id)):
            raise PermissionDenied("You cannot delete this client")
        await self.get_client(db, client_id)
        report = ClientDeletionReport(client_id=client_id)

        result = await db.execute(select(Profile.id).where(Profile.client_id == client_id))
        member_ids = list(result.scalars().all())
        if member_ids and not delete_users:
            raise ValidationError("client", "The client still has users; delete them first")

        for member_id in member_ids:
            try:
                await self._purge_profile(db, member_id)
                await db.commit()
                report.deleted_user_ids.append(member_id)
            except Exception as e:
                await db.rollback()
                report.warnings.append(f"Delete failed for {member_id}: {e}")
                error_log.record(e, context="client.delete.user", actor_id=actor.id)

        await db.execute(delete(FileAssignment).where(FileAssignment.assigned_to_client == client_id))
        await db.execute(delete(NewsAssignment).where(NewsAssignment.assigned_to_client == client_id))
        await db.execute(update(Profile).where(Profile.client_id == client_id).values(client_id=None))
        await db.execute(delete(Client).where(Client.id == client_id))
        await db.commit()
        logger.info("Client %s deleted by %s (%d users)", client_id, actor.id, len(report.deleted_user_ids))
        return report

    async def _purge_profile(self, db: AsyncSession, profile_id: uuid.UUID) -> None:
        """Remove a profile, its platform identity and everything that references it."""
        result = await db.execute(select(File.id, File.storage_path).where(File.uploaded_by == profile_id))
        owned_files = result.all()
        for _, storage_path in owned_files:
            try:
                self.storage.delete_file(storage_path)
            except Exception as e:
                logger.warning("Storage delete failed for %s: %s", storage_path, e)
        owned_ids = [file_id for file_id, _ in owned_files]
        if owned_ids:
            await db.execute(delete(FileAccessLog).where(FileAccessLog.file_id.in_(owned_ids)))
            await db.execute(delete(FileAssignment).where(FileAssignment.file_id.in_(owned_ids)))
            await db.execute(delete(File).where(File.id.in_(owned_ids)))

        await db.execute(delete(FileAccessLog).where(FileAccessLog.user_id == profile_id))
        await db.execute(delete(FileAssignment).where(
            or_(FileAssignment.assigned_to_user == profile_id, FileAssignment.assigned_by == profile_id)
        ))
        authored = select(News.id).where(News.created_by == profile_id)
        await db.execute(delete(NewsAssignment).where(
            or_(
                NewsAssignment.assigned_to_user == profile_id,
                NewsAssignment.assigned_by == profile_id,
                NewsAssignment.news_id.in_(authored),
            )
        ))
        await db.execute(delete(News).where(News.created_by == profile_id))
        await db.execute(delete(Message).where(
            or_(Message.sender_id == profile_id, Message.recipient_id == profile_id)
        ))
        await db.execute(update(Client).where(Client.client_admin_id == profile_id).values(client_admin_id=None))
        await db.execute(delete(Profile).where(Profile.id == profile_id))
        await db.execute(delete(AuthSession).where(AuthSession.user_id == profile_id))
        await db.execute(delete(AuthUser).where(AuthUser.id == profile_id))

    # Users

    async def list_users(
        self,
        db: AsyncSession,
        actor: Any,
        role: Optional[UserRole] = None,
        client_id: Optional[uuid.UUID] = None,
        search: Optional[str] = None,
    ) -> list[Profile]:
        self._require_admin(actor)
        query = select(Profile)
        if role:
            query = query.where(Profile.role == role)
        if client_id:
            query = query.where(Profile.client_id == client_id)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.where(or_(Profile.full_name.ilike(pattern), Profile.email.ilike(pattern)))
        result = await db.execute(query.order_by(Profile.created_at.desc()))
        return list(result.scalars().all())

    async def create_user(
        self,
        db: AsyncSession,
        actor: Any,
        email: str,
        password: str,
        full_name: str,
        role: UserRole,
        client_id: Optional[uuid.UUID] = None,
    ) -> Profile:
        self._require_admin(actor)
        validate_role_client(role, client_id)
        if client_id is not None:
            await self.get_client(db, client_id)
        _, profile = await create_account(db, email, password, full_name, role=role, client_id=client_id)
        return profile

    async def update_user(
        self,
        db: AsyncSession,
        actor: Any,
        user_id: uuid.UUID,
        full_name: Optional[str] = None,
        role: Optional[UserRole] = None,
        client_id: Any = _UNSET,
    ) -> Profile:
        self._require_admin(actor)
        profile = await self.get_profile(db, user_id)

        new_role = role or policy.role_of(profile)
        new_client_id = profile.client_id if client_id is _UNSET else client_id
        if new_role == UserRole.ADMIN and client_id is _UNSET:
            new_client_id = None
        validate_role_client(new_role, new_client_id)
        if new_client_id is not None:
            await self.get_client(db, new_client_id)

        if full_name is not None:
            if not full_name.strip():
                raise ValidationError("full_name", "Full name is required", full_name)
            profile.full_name = full_name.strip()
        profile.role = new_role
        profile.client_id = new_client_id

        await db.commit()
        await db.refresh(profile)
        return profile

    async def delete_user(self, db: AsyncSession, actor: Any, user_id: uuid.UUID) -> None:
        self._require_admin(actor)
        if user_id == actor.id:
            raise ValidationError("user", "You cannot delete your own account")
        await self.get_profile(db, user_id)
        await self._purge_profile(db, user_id)
        await db.commit()
        logger.info("User %s deleted by %s", user_id, actor.id)

    async def system_stats(self, db: AsyncSession, actor: Any) -> SystemStats:
        if not policy.has_permission(actor, policy.VIEW_SYSTEM_STATS):
            raise PermissionDenied("Admin access required")

        async def scalar(query) -> int:
            return (await db.execute(query)).scalar_one() or 0

        roles = await db.execute(select(Profile.role, func.count(Profile.id)).group_by(Profile.role))
        users_by_role = {role.value: 0 for role in UserRole}
        for role, count in roles.all():
            users_by_role[UserRole(role).value] = count

        return SystemStats(
            clients=await scalar(select(func.count(Client.id))),
            active_clients=await scalar(select(func.count(Client.id)).where(Client.status == ClientStatus.ACTIVE)),
            users_by_role=users_by_role,
            files=await scalar(select(func.count(File.id))),
            storage_bytes=int(await scalar(select(func.coalesce(func.sum(File.file_size), 0)))),
            messages=await scalar(select(func.count(Message.id))),
            unread_messages=await scalar(select(func.count(Message.id)).where(Message.read_at.is_(None))),
            news=await scalar(select(func.count(News.id))),
        )

    # Team (client managers)

    def _require_manager(self, actor: Any) -> None:
        if not policy.has_permission(actor, policy.MANAGE_OWN_USERS) or actor.client_id is None:
            raise PermissionDenied("Only client managers can manage a team")

    async def _team_member(self, db: AsyncSession, actor: Any, member_id: uuid.UUID) -> Profile:
        profile = await self.get_profile(db, member_id)
        if not policy.can_manage_profile(actor, profile):
            raise PermissionDenied("This user is not part of your team")
        return profile

    async def list_team(self, db: AsyncSession, actor: Any) -> list[Profile]:
        self._require_manager(actor)
        result = await db.execute(
            select(Profile)
            .where(Profile.client_id == actor.client_id)
            .where(Profile.role == UserRole.USER)
            .order_by(Profile.full_name)
        )
        return list(result.scalars().all())

    async def add_team_member(
        self,
        db: AsyncSession,
        actor: Any,
        email: str,
        full_name: str,
        password: str,
    ) -> Profile:
        self._require_manager(actor)
        _, profile = await create_account(
            db, email, password, full_name, role=UserRole.USER, client_id=actor.client_id,
        )
        return profile

    async def update_team_member(
        self,
        db: AsyncSession,
        actor: Any,
        member_id: uuid.UUID,
        full_name: str,
    ) -> Profile:
        self._require_manager(actor)
        profile = await self._team_member(db, actor, member_id)
        if not full_name or not full_name.strip():
            raise ValidationError("full_name", "Full name is required", full_name)
        profile.full_name = full_name.strip()
        await db.commit()
        await db.refresh(profile)
        return profile

    async def remove_team_member(self, db: AsyncSession, actor: Any, member_id: uuid.UUID) -> None:
        self._require_manager(actor)
        await self._team_member(db, actor, member_id)
        await self._purge_profile(db, member_id)
        await db.commit()

    async def client_stats(self, db: AsyncSession, actor: Any) -> ClientStats:
        if not policy.has_permission(actor, policy.VIEW_CLIENT_STATS) or actor.client_id is None:
            raise PermissionDenied("Client access required")

        async def scalar(query) -> int:
            return (await db.execute(query)).scalar_one() or 0

        return ClientStats(
            team_members=await scalar(
                select(func.count(Profile.id))
                .where(Profile.client_id == actor.client_id)
                .where(Profile.role == UserRole.USER)
            ),
            assigned_files=await scalar(
                select(func.count(func.distinct(FileAssignment.file_id)))
                .where(policy.file_assignment_clause(actor))
            ),
            uploaded_files=await scalar(select(func.count(File.id)).where(File.uploaded_by == actor.id)),
            unread_messages=await scalar(
                select(func.count(Message.id))
                .where(Message.recipient_id == actor.id)
                .where(Message.read_at.is_(None))
            ),
        )

    # Self

    async def update_own_name(self, db: AsyncSession, actor: Any, full_name: str) -> Profile:
        if not policy.has_permission(actor, policy.UPDATE_OWN_PROFILE):
            raise PermissionDenied("You cannot update your profile")
        if not full_name or not full_name.strip():
            raise ValidationError("full_name", "Full name is required", full_name)
        profile = await self.get_profile(db, actor.id)
        profile.full_name = full_name.strip()
        await db.commit()
        await db.refresh(profile)
        return profile


admin_service = AdminService()
