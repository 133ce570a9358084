import asyncio
import uuid

from portal.core.targets import Broadcast, ClientTarget, UserTarget
from portal.realtime.gateway import (
    EVERYONE_ROOM,
    MESSAGES_CHANGED,
    ChangeNotifier,
    client_room,
    profile_room,
    rooms_for_targets,
    session_token_from_environ,
)


class Recorder:
    def __init__(self, fail: bool = False):
        self.emitted = []
        self.fail = fail

    async def __call__(self, event, payload, room):
        if self.fail:
            raise ConnectionError("socket closed")
        self.emitted.append((event, payload, room))


async def test_burst_of_changes_is_coalesced():
    recorder = Recorder()
    notifier = ChangeNotifier(recorder, delay=0.05)

    for n in range(5):
        notifier.notify(MESSAGES_CHANGED, "profile:1", {"n": n})
    notifier.notify(MESSAGES_CHANGED, "profile:2", {"n": 99})
    assert notifier.pending == 2

    await asyncio.sleep(0.2)

    assert notifier.pending == 0
    assert sorted((room, payload["n"]) for _, payload, room in recorder.emitted) == [
        ("profile:1", 4),
        ("profile:2", 99),
    ]
    assert all("timestamp" in payload for _, payload, _ in recorder.emitted)


async def test_flush_delivers_pending_notifications():
    recorder = Recorder()
    notifier = ChangeNotifier(recorder, delay=0.01)
    notifier.notify_many(MESSAGES_CHANGED, ["a", "b", "a"])

    await notifier.flush()

    assert sorted(room for _, _, room in recorder.emitted) == ["a", "b"]


async def test_emit_failures_are_logged_not_raised():
    notifier = ChangeNotifier(Recorder(fail=True), delay=0)
    notifier.notify(MESSAGES_CHANGED, "a")
    await notifier.flush()
    assert notifier.pending == 0


def test_rooms_for_targets():
    user_id, client_id = uuid.uuid4(), uuid.uuid4()
    assert rooms_for_targets([UserTarget(user_id), ClientTarget(client_id), Broadcast()]) == [
        profile_room(user_id),
        client_room(client_id),
        EVERYONE_ROOM,
    ]


def test_session_cookie_is_read_from_the_handshake():
    environ = {"HTTP_COOKIE": "theme=dark; portal_session=abc123"}
    assert session_token_from_environ(environ) == "abc123"
    assert session_token_from_environ({}) is None
