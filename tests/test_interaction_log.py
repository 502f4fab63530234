"""
Tests for the Interaction Log
===============================
Entries are built with a fake clock so latency is exact, and stored in
memory, in a temp file, or against a mocked PostgREST endpoint.
"""

import json

import httpx
import pytest

from matrixvoice.api.interaction_log import (
    FileInteractionStore,
    InteractionLogEntry,
    InteractionLogger,
    NullInteractionStore,
    SupabaseInteractionStore,
    build_store,
    classify_device,
)
from matrixvoice.core.event_bus import EventBus
from matrixvoice.io.config import Config

from fakes import FakeClock, MemoryStore


@pytest.fixture
def store():
    return MemoryStore()


def make_logger(store, **kwargs):
    return InteractionLogger(EventBus(), store=store, user_id="user-1", **kwargs)


# ─── Device classification ───────────────────────────────────

@pytest.mark.parametrize("user_agent, expected", [
    ("Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X)", "mobile"),
    ("Mozilla/5.0 (Linux; Android 14; Pixel 8)", "mobile"),
    ("Mozilla/5.0 (iPad; CPU OS 16_0 like Mac OS X)", "mobile"),
    ("Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0)", "desktop"),
    ("", "desktop"),
    (None, "desktop"),
])
def test_classify_device(user_agent, expected):
    assert classify_device(user_agent) == expected


# ─── InteractionLogger ───────────────────────────────────────

@pytest.mark.asyncio
async def test_log_measures_latency_from_dispatch_start(store):
    log = make_logger(store, clock=FakeClock(10.0, 10.25))

    log.mark_dispatch_start()
    await log.log("inventory_check", {"item": "widgets"}, "check widgets", "You have 5.", True)

    entry = store.entries[0]
    assert entry.response_time_ms == 250
    assert entry.user_id == "user-1"
    assert entry.intent == "inventory_check"
    assert entry.entities == {"item": "widgets"}
    assert entry.raw_transcript == "check widgets"
    assert entry.success is True
    assert entry.device == "desktop"


@pytest.mark.asyncio
async def test_log_without_dispatch_start_has_zero_latency(store):
    log = make_logger(store)

    await log.log("general", None, "hello", "Hi", True)

    assert store.entries[0].response_time_ms == 0
    assert store.entries[0].entities == {}


@pytest.mark.asyncio
async def test_response_summary_is_truncated(store):
    log = make_logger(store)

    await log.log("general", {}, "tell me a story", "x" * 500, True)

    assert len(store.entries[0].response_summary) == 200


@pytest.mark.asyncio
async def test_summary_limit_is_configurable(store):
    log = make_logger(store, summary_limit=10)

    await log.log("general", {}, "q", "abcdefghijklmnop", True)

    assert store.entries[0].response_summary == "abcdefghij"


@pytest.mark.asyncio
async def test_device_may_be_resolved_per_entry(store):
    log = make_logger(store, device=lambda: "mobile")

    await log.log("general", {}, "q", "a", True)

    assert store.entries[0].device == "mobile"


@pytest.mark.asyncio
async def test_store_failure_is_swallowed():
    log = make_logger(MemoryStore(fail=True))

    # Neither call may raise
    await log.log("general", {}, "q", "a", True)
    log.log_wake("hey matrix", "hey matrix")
    await log.drain()


@pytest.mark.asyncio
async def test_log_wake_records_phrase_in_background(store):
    log = make_logger(store)

    log.log_wake("Hey Matrixx", "hey matrix")
    await log.drain()

    entry = store.entries[0]
    assert entry.intent == "wake"
    assert entry.raw_transcript == "Hey Matrixx"
    assert entry.wake_phrase == "hey matrix"
    assert entry.success is True


@pytest.mark.asyncio
async def test_stop_drains_and_closes_store(store):
    log = make_logger(store)
    await log.start()
    log.log_wake("hey matrix", "hey matrix")

    await log.stop()

    assert len(store.entries) == 1
    assert log.is_running is False


# ─── Stores ──────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_file_store_writes_json_lines(tmp_path):
    path = tmp_path / "data" / "interactions.log"
    file_store = FileInteractionStore(path)

    await file_store.append(InteractionLogEntry(intent="wake", raw_transcript="hey matrix", success=True))
    await file_store.append(InteractionLogEntry(intent="error", raw_transcript="stock", success=False))
    await file_store.aclose()

    lines = path.read_text().splitlines()
    assert len(lines) == 2
    first, second = (json.loads(line) for line in lines)
    assert first["intent"] == "wake"
    assert second["success"] is False
    assert "created_at" in first


def _recording_client(requests):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(201)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_supabase_store_inserts_command_rows():
    requests = []
    remote = SupabaseInteractionStore("https://x.supabase.co/", "anon-key", client=_recording_client(requests))

    await remote.append(InteractionLogEntry(
        user_id="user-1", intent="inventory_check", raw_transcript="check widgets",
        response_summary="You have 5.", response_time_ms=120, success=True,
    ))

    assert len(requests) == 1
    request = requests[0]
    assert str(request.url) == "https://x.supabase.co/rest/v1/matrix_logs"
    assert request.headers["apikey"] == "anon-key"
    row = json.loads(request.content)
    assert row["intent"] == "inventory_check"
    assert row["response_time_ms"] == 120
    assert "created_at" not in row


@pytest.mark.asyncio
async def test_supabase_store_routes_wake_phrases():
    requests = []
    remote = SupabaseInteractionStore("https://x.supabase.co", "anon-key", client=_recording_client(requests))

    await remote.append(InteractionLogEntry(
        user_id="user-1", intent="wake", raw_transcript="hey matrixx", wake_phrase="hey matrix", success=True,
    ))

    assert str(requests[0].url).endswith("/rest/v1/matrix_wake_phrases")
    assert json.loads(requests[0].content) == {
        "user_id": "user-1",
        "phrase_text": "hey matrixx",
        "recognized": True,
        "device": "desktop",
    }


@pytest.mark.asyncio
async def test_supabase_store_skips_anonymous_entries():
    requests = []
    remote = SupabaseInteractionStore("https://x.supabase.co", "anon-key", client=_recording_client(requests))

    await remote.append(InteractionLogEntry(intent="general", raw_transcript="hi", success=True))

    assert requests == []


@pytest.mark.asyncio
async def test_supabase_store_raises_on_http_error():
    def handler(request):
        return httpx.Response(401)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    remote = SupabaseInteractionStore("https://x.supabase.co", "bad", client=client)

    with pytest.raises(httpx.HTTPStatusError):
        await remote.append(InteractionLogEntry(user_id="u", intent="general", raw_transcript="hi", success=True))


@pytest.mark.parametrize("env, expected", [
    ({"MATRIX_INTERACTIONS_STORE": "none"}, NullInteractionStore),
    ({"MATRIX_INTERACTIONS_STORE": "bogus"}, NullInteractionStore),
    ({"MATRIX_INTERACTIONS_STORE": "supabase"}, NullInteractionStore),
    ({
        "MATRIX_INTERACTIONS_STORE": "supabase",
        "MATRIX_INTERACTIONS_URL": "https://x.supabase.co",
        "MATRIX_INTERACTIONS_API_KEY": "anon-key",
    }, SupabaseInteractionStore),
])
def test_build_store_picks_configured_store(tmp_path, env, expected):
    config = Config(tmp_path / "config.yaml", environ=env)
    assert isinstance(build_store(config), expected)


def test_build_store_file(tmp_path):
    path = tmp_path / "interactions.log"
    config = Config(tmp_path / "config.yaml", environ={
        "MATRIX_INTERACTIONS_STORE": "file",
        "MATRIX_INTERACTIONS_FILE": str(path),
    })

    file_store = build_store(config)

    assert isinstance(file_store, FileInteractionStore)
    assert file_store.path == path
