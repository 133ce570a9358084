import asyncio
import logging
from datetime import datetime, timezone
from http.cookies import SimpleCookie
from typing import Any, Awaitable, Callable, Iterable, Optional

import socketio

from portal.core.config import settings
from portal.core.database import AsyncSessionLocal
from portal.core.identity import (
    ACCESS_TOKEN_KEY,
    SESSION_TOKEN_KEY,
    Identity,
    TokenStore,
    build_resolver,
)
from portal.core.targets import AssignmentTarget, ClientTarget, UserTarget
from portal.models.enums import UserRole

logger = logging.getLogger(__name__)

sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins=settings.CORS_ORIGINS,
    logger=False,
    engineio_logger=False,
)

socket_app = socketio.ASGIApp(sio, socketio_path="")

MESSAGES_CHANGED = "messages_changed"
NEWS_CHANGED = "news_changed"
FILES_CHANGED = "files_changed"
ADMINS_ROOM = "admins"
EVERYONE_ROOM = "everyone"

# In-memory state (use Redis in production for multi-instance)
connected_profiles: dict[str, dict] = {}  # sid -> identity info


def profile_room(profile_id: Any) -> str:
    return f"profile:{profile_id}"


def client_room(client_id: Any) -> str:
    return f"client:{client_id}"


def rooms_for_targets(targets: Iterable[AssignmentTarget]) -> list[str]:
    rooms = []
    for target in targets:
        if isinstance(target, UserTarget):
            rooms.append(profile_room(target.user_id))
        elif isinstance(target, ClientTarget):
            rooms.append(client_room(target.client_id))
        else:
            rooms.append(EVERYONE_ROOM)
    return rooms


class ChangeNotifier:
    """Coalesces bursts of change notifications per (event, room).

    Every ``notify`` restarts the room's timer; only the last payload is sent
    once the window has passed without another notification.
    """

    def __init__(
        self,
        emit: Callable[[str, dict, str], Awaitable[Any]],
        delay: float = settings.REALTIME_DEBOUNCE_SECONDS,
    ):
        self.emit = emit
        self.delay = delay
        self._pending: dict[tuple[str, str], asyncio.Task] = {}

    def notify(self, event: str, room: str, payload: Optional[dict] = None) -> None:
        key = (event, room)
        previous = self._pending.get(key)
        if previous is not None and not previous.done():
            previous.cancel()
        self._pending[key] = asyncio.get_running_loop().create_task(self._fire(key, payload or {}))

    def notify_many(self, event: str, rooms: Iterable[str], payload: Optional[dict] = None) -> None:
        for room in dict.fromkeys(rooms):
            self.notify(event, room, payload)

    async def _fire(self, key: tuple[str, str], payload: dict) -> None:
        await asyncio.sleep(self.delay)
        self._pending.pop(key, None)
        event, room = key
        payload = {**payload, "timestamp": datetime.now(timezone.utc).isoformat()}
        try:
            await self.emit(event, payload, room)
        except Exception as e:
            logger.warning("Failed to emit %s to %s: %s", event, room, e)

    async def flush(self) -> None:
        pending = [task for task in self._pending.values() if not task.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    @property
    def pending(self) -> int:
        return sum(1 for task in self._pending.values() if not task.done())


async def _emit(event: str, payload: dict, room: str) -> None:
    await sio.emit(event, payload, room=room)


change_notifier = ChangeNotifier(_emit)


def notify_profiles(event: str, profile_ids: Iterable[Any], payload: Optional[dict] = None) -> None:
    change_notifier.notify_many(event, (profile_room(pid) for pid in profile_ids), payload)


def notify_rooms(event: str, rooms: Iterable[str], payload: Optional[dict] = None) -> None:
    change_notifier.notify_many(event, rooms, payload)


def session_token_from_environ(environ: dict) -> Optional[str]:
    raw = environ.get("HTTP_COOKIE")
    if not raw:
        return None
    cookie = SimpleCookie()
    cookie.load(raw)
    morsel = cookie.get(settings.SESSION_COOKIE_NAME)
    return morsel.value if morsel else None


async def resolve_socket_identity(environ: dict, auth: Optional[dict]) -> Optional[Identity]:
    store = TokenStore({
        ACCESS_TOKEN_KEY: (auth or {}).get("token"),
        SESSION_TOKEN_KEY: session_token_from_environ(environ),
    })
    async with AsyncSessionLocal() as db:
        return await build_resolver(db).initialize(store)


@sio.event
async def connect(sid, environ, auth):
    identity = await resolve_socket_identity(environ, auth)
    if identity is None:
        return False

    connected_profiles[sid] = {
        "id": str(identity.id),
        "role": identity.role.value,
        "client_id": str(identity.client_id) if identity.client_id else None,
    }
    await sio.enter_room(sid, EVERYONE_ROOM)
    await sio.enter_room(sid, profile_room(identity.id))
    if identity.client_id:
        await sio.enter_room(sid, client_room(identity.client_id))
    if identity.role == UserRole.ADMIN:
        await sio.enter_room(sid, ADMINS_ROOM)
    logger.info("Profile %s connected (%s)", identity.id, sid)
    return True


@sio.event
async def disconnect(sid):
    profile = connected_profiles.pop(sid, None)
    if profile:
        logger.info("Profile %s disconnected (%s)", profile["id"], sid)
