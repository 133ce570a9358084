import asyncio
from datetime import datetime, timedelta, timezone

from jose import jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from portal.core.database import Base
from portal.core.errors import NetworkError, error_log
from portal.core.identity import (
    ACCESS_TOKEN_KEY,
    REFRESH_TOKEN_KEY,
    SESSION_TOKEN_KEY,
    Identity,
    IdentityProvider,
    IdentityResolver,
    PlatformSessionProvider,
    ProfileLoader,
    TokenPairProvider,
    TokenStore,
)
from portal.core.security import create_token_pair
from portal.models.enums import UserRole
from portal.models.user import AuthSession, AuthUser, Profile, RevokedToken

from conftest import portal_db, seed_portal


class SpyProvider(IdentityProvider):
    name = "spy"

    def __init__(self, identity=None, error=None):
        self.identity = identity
        self.error = error
        self.resolved = 0
        self.invalidated = 0

    async def resolve(self, store):
        self.resolved += 1
        if self.error:
            raise self.error
        return self.identity

    async def invalidate(self, store):
        self.invalidated += 1


async def instant(seconds):
    return None


def expired_pair(profile):
    issued = datetime.now(timezone.utc) - timedelta(days=2)
    identity = Identity.from_profile(profile, "token")
    return create_token_pair(str(profile.id), identity.claims(), now=issued)


async def test_valid_access_token_is_trusted():
    async with portal_db() as db:
        p = await seed_portal(db)
        profiles = ProfileLoader(db, sleep=instant)
        tokens = TokenPairProvider(db, profiles)
        store = TokenStore()
        tokens.issue(store, Identity.from_profile(p.acme_manager, "token"))

        identity = await IdentityResolver([tokens]).initialize(TokenStore({ACCESS_TOKEN_KEY: store.get(ACCESS_TOKEN_KEY)}))
        assert identity.id == p.acme_manager.id
        assert identity.role == UserRole.CLIENT
        assert identity.client_id == p.acme.id


async def test_expired_access_token_is_refreshed_before_the_session_is_consulted():
    async with portal_db() as db:
        p = await seed_portal(db)
        profiles = ProfileLoader(db, sleep=instant)
        spy = SpyProvider()
        resolver = IdentityResolver([TokenPairProvider(db, profiles), spy])

        access, refresh = expired_pair(p.alice)
        store = TokenStore({ACCESS_TOKEN_KEY: access, REFRESH_TOKEN_KEY: refresh, SESSION_TOKEN_KEY: "cookie"})

        identity = await resolver.initialize(store)

        assert identity.id == p.alice.id
        assert identity.source == "token"
        assert spy.resolved == 0
        assert store.get(ACCESS_TOKEN_KEY) != access
        assert store.get(REFRESH_TOKEN_KEY) != refresh
        assert {ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY} <= store.changed

        old_jti = jwt.get_unverified_claims(refresh)["jti"]
        revoked = await db.execute(select(RevokedToken).where(RevokedToken.jti == old_jti))
        assert revoked.scalar_one().user_id == p.alice.id


async def test_refresh_token_is_single_use():
    async with portal_db() as db:
        p = await seed_portal(db)
        tokens = TokenPairProvider(db, ProfileLoader(db, sleep=instant))
        _, refresh = expired_pair(p.alice)

        assert await tokens.refresh(TokenStore({REFRESH_TOKEN_KEY: refresh})) is not None
        replay = TokenStore({REFRESH_TOKEN_KEY: refresh})
        assert await tokens.resolve(replay) is None
        assert REFRESH_TOKEN_KEY not in replay


async def test_malformed_access_token_falls_through_to_the_session():
    async with portal_db() as db:
        p = await seed_portal(db)
        spy = SpyProvider(identity=Identity.from_profile(p.bob, "spy"))
        resolver = IdentityResolver([TokenPairProvider(db, ProfileLoader(db, sleep=instant)), spy])
        store = TokenStore({ACCESS_TOKEN_KEY: "not-a-jwt"})

        identity = await resolver.initialize(store)

        assert identity.id == p.bob.id
        assert spy.resolved == 1
        assert ACCESS_TOKEN_KEY not in store


async def test_platform_session_round_trip():
    async with portal_db() as db:
        p = await seed_portal(db)
        sessions = PlatformSessionProvider(db, ProfileLoader(db, sleep=instant))
        auth_user = (await db.execute(select(AuthUser).where(AuthUser.id == p.carol.id))).scalar_one()

        store = TokenStore()
        token = await sessions.create_session(store, auth_user)
        assert store.get(SESSION_TOKEN_KEY) == token

        identity = await sessions.resolve(TokenStore({SESSION_TOKEN_KEY: token}))
        assert identity.id == p.carol.id
        assert identity.source == "session"

        stale = TokenStore({SESSION_TOKEN_KEY: "unknown-token"})
        assert await sessions.resolve(stale) is None
        assert SESSION_TOKEN_KEY not in stale


async def test_expired_platform_session_is_rejected():
    async with portal_db() as db:
        p = await seed_portal(db)
        later = lambda: datetime.now(timezone.utc) + timedelta(days=30)
        loader = ProfileLoader(db, sleep=instant)
        auth_user = (await db.execute(select(AuthUser).where(AuthUser.id == p.carol.id))).scalar_one()

        store = TokenStore()
        token = await PlatformSessionProvider(db, loader).create_session(store, auth_user)

        assert await PlatformSessionProvider(db, loader, clock=later).resolve(TokenStore({SESSION_TOKEN_KEY: token})) is None


async def test_missing_profile_is_provisioned_with_least_privilege():
    async with portal_db() as db:
        auth_user = AuthUser(email="newcomer@example.test", password_hash="x", full_name="New Comer")
        db.add(auth_user)
        await db.commit()

        sessions = PlatformSessionProvider(db, ProfileLoader(db, sleep=instant))
        store = TokenStore()
        token = await sessions.create_session(store, auth_user)
        identity = await sessions.resolve(TokenStore({SESSION_TOKEN_KEY: token}))

        assert identity.role == UserRole.USER
        assert identity.client_id is None
        profile = (await db.execute(select(Profile).where(Profile.id == auth_user.id))).scalar_one()
        assert profile.full_name == "New Comer"


async def test_profile_loader_retries_transient_failures():
    async with portal_db() as db:
        p = await seed_portal(db)
        loader = ProfileLoader(db, retries=3, delay=0, sleep=instant)
        real_fetch = loader._fetch
        failures = []

        async def flaky(user_id):
            if len(failures) < 2:
                failures.append(1)
                raise NetworkError("timeout")
            return await real_fetch(user_id)

        loader._fetch = flaky
        profile = await loader.load(p.alice.id)
        assert profile.id == p.alice.id
        assert len(failures) == 2


async def test_resolver_fails_closed():
    error_log.clear()
    fallback = SpyProvider(identity=Identity(id=None, email="x", role=UserRole.ADMIN))
    resolver = IdentityResolver([SpyProvider(error=NetworkError("profiles unavailable")), fallback])

    assert await resolver.initialize(TokenStore()) is None
    assert fallback.resolved == 0
    assert error_log.entries()[-1].context == "identity.spy"


async def test_sign_out_clears_every_credential():
    async with portal_db() as db:
        p = await seed_portal(db)
        profiles = ProfileLoader(db, sleep=instant)
        tokens = TokenPairProvider(db, profiles)
        sessions = PlatformSessionProvider(db, profiles)
        auth_user = (await db.execute(select(AuthUser).where(AuthUser.id == p.alice.id))).scalar_one()

        store = TokenStore({"auth.extra": "leftover"})
        await sessions.create_session(store, auth_user)
        tokens.issue(store, Identity.from_profile(p.alice, "token"))
        refresh_jti = jwt.get_unverified_claims(store.get(REFRESH_TOKEN_KEY))["jti"]

        await IdentityResolver([tokens, sessions]).sign_out(store)

        for key in (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, SESSION_TOKEN_KEY, "auth.extra"):
            assert key not in store
        assert (await db.execute(select(AuthSession))).scalars().all() == []
        assert (await db.execute(select(RevokedToken.jti))).scalars().all() == [refresh_jti]


async def test_refresh_losing_the_jti_claim_is_unauthenticated():
    async with portal_db() as db:
        p = await seed_portal(db)
        tokens = TokenPairProvider(db, ProfileLoader(db, sleep=instant))
        _, refresh = expired_pair(p.alice)
        claims = jwt.get_unverified_claims(refresh)
        db.add(RevokedToken(jti=claims["jti"], user_id=p.alice.id, expires_at=datetime.now(timezone.utc) + timedelta(days=7)))
        await db.commit()

        async def not_yet_revoked(jti):
            return False

        tokens._is_revoked = not_yet_revoked
        store = TokenStore({REFRESH_TOKEN_KEY: refresh})

        assert await IdentityResolver([tokens]).initialize(store) is None
        assert REFRESH_TOKEN_KEY not in store


async def test_concurrent_refreshes_with_one_token_rotate_once(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'portal.db'}")
    sessions = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with sessions() as db:
            p = await seed_portal(db)
            alice_id = p.alice.id
            access, refresh = expired_pair(p.alice)

        async def page_request():
            async with sessions() as db:
                resolver = IdentityResolver([TokenPairProvider(db, ProfileLoader(db, sleep=instant))])
                return await resolver.initialize(TokenStore({ACCESS_TOKEN_KEY: access, REFRESH_TOKEN_KEY: refresh}))

        results = await asyncio.gather(page_request(), page_request(), page_request())

        async with sessions() as db:
            revoked = (await db.execute(select(RevokedToken.jti))).scalars().all()
    finally:
        await engine.dispose()

    winners = [identity for identity in results if identity is not None]
    assert [identity.id for identity in winners] == [alice_id]
    assert revoked == [jwt.get_unverified_claims(refresh)["jti"]]


async def test_revalidate_without_any_credentials_left_is_unauthenticated():
    async with portal_db() as db:
        p = await seed_portal(db)
        profiles = ProfileLoader(db, sleep=instant)
        tokens = TokenPairProvider(db, profiles)
        sessions = PlatformSessionProvider(db, profiles)
        resolver = IdentityResolver([tokens, sessions])
        auth_user = (await db.execute(select(AuthUser).where(AuthUser.id == p.bob.id))).scalar_one()

        store = TokenStore()
        await sessions.create_session(store, auth_user)
        tokens.issue(store, Identity.from_profile(p.bob, "token"))
        refresh_token, session_token = store.get(REFRESH_TOKEN_KEY), store.get(SESSION_TOKEN_KEY)
        assert (await resolver.revalidate(TokenStore({SESSION_TOKEN_KEY: session_token}))).id == p.bob.id

        await resolver.sign_out(store)

        replay = TokenStore({REFRESH_TOKEN_KEY: refresh_token, SESSION_TOKEN_KEY: session_token})
        assert await resolver.revalidate(replay) is None
        assert REFRESH_TOKEN_KEY not in replay
        assert SESSION_TOKEN_KEY not in replay
