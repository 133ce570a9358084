from portal.models.enums import AccessType
from portal.services.access_log import AccessLogEmitter
from portal.services.storage_service import SignedUrlCache

from conftest import RecordingDispatch


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_cached_url_is_reused_until_ttl():
    clock = Clock()
    cache = SignedUrlCache(ttl_seconds=3000, clock=clock)
    calls = []

    def sign():
        calls.append(1)
        return f"https://signed/{len(calls)}"

    assert cache.get_or_create("uploads/a.pdf", sign) == "https://signed/1"
    clock.now = 2999
    assert cache.get_or_create("uploads/a.pdf", sign) == "https://signed/1"
    clock.now = 3000
    assert cache.get_or_create("uploads/a.pdf", sign) == "https://signed/2"
    assert len(calls) == 2


def test_download_and_preview_urls_are_cached_separately():
    cache = SignedUrlCache(ttl_seconds=60, clock=Clock())
    cache.put("uploads/a.pdf", "preview-url")
    cache.put("uploads/a.pdf", "download-url", download=True)
    assert cache.get("uploads/a.pdf") == "preview-url"
    assert cache.get("uploads/a.pdf", download=True) == "download-url"

    cache.invalidate("uploads/a.pdf")
    assert len(cache) == 0


def test_emitter_sends_serialized_event():
    dispatch = RecordingDispatch()
    emitter = AccessLogEmitter(dispatch)
    assert emitter.emit("f-1", "u-1", AccessType.DOWNLOAD)
    assert dispatch.events == [("f-1", "u-1", "download")]


def test_emitter_swallows_dispatch_failures():
    emitter = AccessLogEmitter(RecordingDispatch(fail=True))
    assert emitter.emit("f-1", None, AccessType.VIEW) is False
