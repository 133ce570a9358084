import asyncio
import inspect
import os
import uuid
from contextlib import asynccontextmanager
from types import SimpleNamespace

# Settings are read at import time, so the environment has to be in place
# before anything from the portal package is imported.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SESSION_COOKIE_SECURE"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key"

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from portal.core.database import Base
from portal.core.errors import NetworkError
from portal.core.rate_limit import OperationLimits
from portal.models import base as _models  # noqa: F401  registers every table
from portal.models.client import Client
from portal.models.enums import ClientStatus, UserRole
from portal.models.user import AuthUser, Profile
from portal.services.access_log import AccessLogEmitter
from portal.services.file_service import FileService
from portal.services.storage_service import SignedUrlCache


def pytest_pyfunc_call(pyfuncitem):
    test_func = pyfuncitem.obj
    if not inspect.iscoroutinefunction(test_func):
        return None

    funcargs = {name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames}
    loop = asyncio.new_event_loop()
    try:
        loop.run_until_complete(test_func(**funcargs))
    finally:
        loop.close()
    return True


def make_engine():
    return create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )


@asynccontextmanager
async def portal_db():
    engine = make_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    sessions = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with sessions() as session:
            yield session
    finally:
        await engine.dispose()


async def add_profile(
    db: AsyncSession,
    email: str,
    role: UserRole,
    client_id=None,
    full_name=None,
) -> Profile:
    user_id = uuid.uuid4()
    db.add(AuthUser(id=user_id, email=email, password_hash="not-a-real-hash", full_name=full_name))
    await db.flush()
    profile = Profile(
        id=user_id,
        email=email,
        full_name=full_name or email.split("@")[0].title(),
        role=role,
        client_id=client_id,
    )
    db.add(profile)
    await db.commit()
    await db.refresh(profile)
    return profile


async def add_client(db: AsyncSession, company_name: str) -> Client:
    client = Client(
        company_name=company_name,
        contact_email=f"contact@{company_name.lower()}.test",
        status=ClientStatus.ACTIVE,
    )
    db.add(client)
    await db.commit()
    await db.refresh(client)
    return client


async def seed_portal(db: AsyncSession) -> SimpleNamespace:
    """Two clients, each with a manager and users, plus one administrator."""
    acme = await add_client(db, "Acme")
    globex = await add_client(db, "Globex")

    admin = await add_profile(db, "admin@portal.test", UserRole.ADMIN, full_name="Ada Admin")
    acme_manager = await add_profile(db, "manager@acme.test", UserRole.CLIENT, acme.id, "Mona Manager")
    alice = await add_profile(db, "alice@acme.test", UserRole.USER, acme.id, "Alice")
    bob = await add_profile(db, "bob@acme.test", UserRole.USER, acme.id, "Bob")
    globex_manager = await add_profile(db, "manager@globex.test", UserRole.CLIENT, globex.id, "Gus Manager")
    carol = await add_profile(db, "carol@globex.test", UserRole.USER, globex.id, "Carol")

    acme.client_admin_id = acme_manager.id
    globex.client_admin_id = globex_manager.id
    await db.commit()

    return SimpleNamespace(
        acme=acme,
        globex=globex,
        admin=admin,
        acme_manager=acme_manager,
        alice=alice,
        bob=bob,
        globex_manager=globex_manager,
        carol=carol,
    )


class FakeStorage:
    """Object storage double that keeps uploads in a dict."""

    def __init__(self):
        self.objects = {}
        self.deleted = []
        self.signed = []
        self.fail_uploads = False
        self.fail_deletes = False
        self.fail_signing = False

    async def ensure_bucket(self):
        return None

    def upload_file(self, storage_path, data, content_type="application/octet-stream"):
        if self.fail_uploads:
            raise NetworkError("storage unavailable")
        self.objects[storage_path] = (data, content_type)

    def delete_file(self, storage_path):
        if self.fail_deletes:
            raise NetworkError("storage unavailable")
        self.deleted.append(storage_path)
        self.objects.pop(storage_path, None)

    def get_presigned_download_url(self, storage_path, expires=None, download_name=None):
        if self.fail_signing:
            raise NetworkError("signing failed", retryable=False)
        self.signed.append((storage_path, download_name))
        suffix = f"?filename={download_name}" if download_name else ""
        return f"https://storage.test/{storage_path}{suffix}#{len(self.signed)}"


class RecordingDispatch:
    def __init__(self, fail: bool = False):
        self.events = []
        self.fail = fail

    def __call__(self, file_id, user_id, access_type):
        if self.fail:
            raise ConnectionError("broker unreachable")
        self.events.append((file_id, user_id, access_type))


def make_file_service(storage=None, dispatch=None, url_cache=None, limits=None, clock=None):
    storage = storage if storage is not None else FakeStorage()
    dispatch = dispatch if dispatch is not None else RecordingDispatch()
    service = FileService(
        storage=storage,
        url_cache=url_cache if url_cache is not None else SignedUrlCache(),
        emitter=AccessLogEmitter(dispatch),
        limits=limits if limits is not None else OperationLimits.from_settings(),
        clock=clock,
    )
    return service, storage, dispatch


@pytest.fixture
def fake_storage():
    return FakeStorage()
