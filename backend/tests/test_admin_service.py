import pytest
from sqlalchemy import func, select

from portal.core.errors import AuthenticationRequired, PermissionDenied, ValidationError
from portal.core.targets import ClientTarget
from portal.models.client import Client
from portal.models.enums import ClientStatus, UserRole
from portal.models.message import Message
from portal.models.user import AuthUser, Profile
from portal.services.admin_service import AdminService
from portal.services.auth_service import authenticate, create_account
from portal.services.message_service import MessageService

from conftest import FakeStorage, make_file_service, portal_db, seed_portal

PDF = b"%PDF-1.7 contract"


async def test_create_account_and_authenticate():
    async with portal_db() as db:
        auth_user, profile = await create_account(db, " Dana@Example.TEST ", "correct-horse", "Dana")
        assert auth_user.email == "dana@example.test"
        assert profile is None

        assert (await authenticate(db, "DANA@example.test", "correct-horse")).id == auth_user.id
        with pytest.raises(AuthenticationRequired):
            await authenticate(db, "dana@example.test", "wrong-password")
        with pytest.raises(ValidationError):
            await create_account(db, "dana@example.test", "another-password", "Dana Again")
        with pytest.raises(ValidationError):
            await create_account(db, "short@example.test", "short", "Shorty")


async def test_role_and_client_must_agree():
    async with portal_db() as db:
        p = await seed_portal(db)
        service = AdminService(storage=FakeStorage())

        with pytest.raises(ValidationError):
            await service.create_user(db, p.admin, "x@example.test", "password123", "X", UserRole.USER)
        with pytest.raises(ValidationError):
            await service.create_user(db, p.admin, "y@example.test", "password123", "Y", UserRole.ADMIN, p.acme.id)

        created = await service.create_user(db, p.admin, "z@example.test", "password123", "Z", UserRole.USER, p.acme.id)
        assert created.client_id == p.acme.id

        promoted = await service.update_user(db, p.admin, created.id, role=UserRole.ADMIN)
        assert promoted.role == UserRole.ADMIN
        assert promoted.client_id is None


async def test_create_client_with_manager():
    async with portal_db() as db:
        p = await seed_portal(db)
        service = AdminService(storage=FakeStorage())

        client = await service.create_client(db, p.admin, "Initech", "boss@initech.test", "Bill Lumbergh", "tps-reports")
        manager = (await db.execute(select(Profile).where(Profile.id == client.client_admin_id))).scalar_one()
        assert manager.role == UserRole.CLIENT
        assert manager.client_id == client.id
        assert client.status == ClientStatus.ACTIVE

        with pytest.raises(PermissionDenied):
            await service.create_client(db, p.acme_manager, "Nope", "x@nope.test")

        summaries = {s.client.company_name: s for s in await service.list_clients(db, p.admin)}
        assert summaries["Acme"].user_count == 3
        assert summaries["Initech"].user_count == 1


async def test_delete_client_removes_members_and_their_data():
    async with portal_db() as db:
        p = await seed_portal(db)
        storage = FakeStorage()
        service = AdminService(storage=storage)
        files, _, _ = make_file_service(storage=storage)
        messages = MessageService()

        owned = await files.upload(db, p.acme_manager, "contract.pdf", "application/pdf", PDF)
        shared = await files.upload(db, p.admin, "terms.pdf", "application/pdf", PDF)
        await files.assign(db, p.admin, shared.id, ClientTarget(p.acme.id))
        await messages.send(db, p.alice, p.admin.id, "bye")

        with pytest.raises(ValidationError):
            await service.delete_client(db, p.admin, p.acme.id, delete_users=False)

        report = await service.delete_client(db, p.admin, p.acme.id)

        assert set(report.deleted_user_ids) == {p.acme_manager.id, p.alice.id, p.bob.id}
        assert report.warnings == []
        assert owned.storage_path in storage.deleted
        assert (await db.execute(select(func.count()).select_from(Message))).scalar_one() == 0
        remaining = set((await db.execute(select(AuthUser.email))).scalars().all())
        assert remaining == {"admin@portal.test", "manager@globex.test", "carol@globex.test"}
        assert (await db.execute(select(Client.company_name))).scalars().all() == ["Globex"]
        assert await files.list_files(db, p.admin) != []


async def test_manager_may_only_delete_its_own_client():
    async with portal_db() as db:
        p = await seed_portal(db)
        service = AdminService(storage=FakeStorage())
        with pytest.raises(PermissionDenied):
            await service.delete_client(db, p.acme_manager, p.globex.id)
        with pytest.raises(PermissionDenied):
            await service.delete_client(db, p.alice, p.acme.id)


async def test_team_management_stays_inside_the_client():
    async with portal_db() as db:
        p = await seed_portal(db)
        service = AdminService(storage=FakeStorage())

        team = await service.list_team(db, p.acme_manager)
        assert {m.id for m in team} == {p.alice.id, p.bob.id}

        member = await service.add_team_member(db, p.acme_manager, "dave@acme.test", "Dave", "password123")
        assert member.client_id == p.acme.id
        assert member.role == UserRole.USER

        renamed = await service.update_team_member(db, p.acme_manager, p.bob.id, "Robert")
        assert renamed.full_name == "Robert"

        with pytest.raises(PermissionDenied):
            await service.update_team_member(db, p.acme_manager, p.carol.id, "Caroline")
        with pytest.raises(PermissionDenied):
            await service.remove_team_member(db, p.acme_manager, p.globex_manager.id)
        with pytest.raises(PermissionDenied):
            await service.list_team(db, p.alice)

        await service.remove_team_member(db, p.acme_manager, member.id)
        assert {m.id for m in await service.list_team(db, p.acme_manager)} == {p.alice.id, p.bob.id}


async def test_stats():
    async with portal_db() as db:
        p = await seed_portal(db)
        service = AdminService(storage=FakeStorage())
        files, _, _ = make_file_service()
        await MessageService().send(db, p.alice, p.acme_manager.id, "hello")
        shared = await files.upload(db, p.admin, "terms.pdf", "application/pdf", PDF)
        await files.assign(db, p.admin, shared.id, ClientTarget(p.acme.id))

        stats = await service.system_stats(db, p.admin)
        assert stats.clients == 2
        assert stats.users_by_role == {"admin": 1, "client": 2, "user": 3}
        assert stats.files == 1
        assert stats.unread_messages == 1

        client_stats = await service.client_stats(db, p.acme_manager)
        assert client_stats.team_members == 2
        assert client_stats.assigned_files == 1
        assert client_stats.unread_messages == 1

        with pytest.raises(PermissionDenied):
            await service.system_stats(db, p.acme_manager)


async def test_admins_cannot_delete_themselves():
    async with portal_db() as db:
        p = await seed_portal(db)
        service = AdminService(storage=FakeStorage())
        with pytest.raises(ValidationError):
            await service.delete_user(db, p.admin, p.admin.id)

        await service.delete_user(db, p.admin, p.carol.id)
        assert (await db.execute(select(Profile).where(Profile.id == p.carol.id))).scalar_one_or_none() is None


async def test_update_own_name():
    async with portal_db() as db:
        p = await seed_portal(db)
        service = AdminService(storage=FakeStorage())
        profile = await service.update_own_name(db, p.alice, "  Alice Liddell ")
        assert profile.full_name == "Alice Liddell"
        with pytest.raises(ValidationError):
            await service.update_own_name(db, p.alice, " ")
