"""
Tests for the Command Dispatcher
==================================
Every dispatch must end in non-empty spoken text and exactly one log
entry, whether the service answered or not.
"""

import pytest

from matrixvoice.api.dispatcher import APOLOGY_TEXT, FALLBACK_TEXT, CommandDispatcher
from matrixvoice.api.interaction_log import InteractionLogger
from matrixvoice.api.reasoning import ReasoningServiceError, SessionContext
from matrixvoice.core.event_bus import EventBus

from fakes import FakeClock, FakeReasoningClient, MemoryStore


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def interaction_log(store):
    return InteractionLogger(EventBus(), store=store, user_id="user-1", clock=FakeClock(1.0, 1.5))


def make_dispatcher(client, interaction_log, **kwargs):
    spoken = []
    responses = []

    async def speak(text):
        spoken.append(text)

    dispatcher = CommandDispatcher(
        client,
        interaction_log,
        SessionContext(user_id="user-1", tone="warm"),
        speak=speak,
        on_response=responses.append,
        **kwargs,
    )
    return dispatcher, spoken, responses


@pytest.mark.asyncio
async def test_successful_dispatch_speaks_and_logs(interaction_log, store):
    client = FakeReasoningClient({
        "response": "You have 5 widgets.",
        "intent": "inventory_check",
        "entities": {"item": "widgets"},
        "cardType": "inventory",
        "data": {"qty": 5},
    })
    dispatcher, spoken, responses = make_dispatcher(client, interaction_log)

    result = await dispatcher.dispatch("  check widgets  ")

    assert result.ok is True
    assert client.calls[0][0] == "check widgets"
    assert client.calls[0][1].tone == "warm"
    assert spoken == ["You have 5 widgets."]
    assert responses[0].card_type == "inventory"
    assert responses[0].data == {"qty": 5}
    assert dispatcher.last_response == "You have 5 widgets."
    assert dispatcher.is_processing is False

    entry = store.entries[0]
    assert entry.intent == "inventory_check"
    assert entry.entities == {"item": "widgets"}
    assert entry.success is True
    assert entry.response_time_ms == 500


@pytest.mark.asyncio
async def test_reply_without_text_uses_fallback(interaction_log, store):
    dispatcher, spoken, responses = make_dispatcher(FakeReasoningClient({"data": {"x": 1}}), interaction_log)

    result = await dispatcher.dispatch("do something")

    assert result.response.text == FALLBACK_TEXT
    assert spoken == [FALLBACK_TEXT]
    assert store.entries[0].intent == "unknown"
    assert store.entries[0].success is True


@pytest.mark.asyncio
async def test_service_failure_apologizes_and_logs_failure(interaction_log, store):
    client = FakeReasoningClient(error=ReasoningServiceError("Reasoning service timed out"))
    dispatcher, spoken, responses = make_dispatcher(client, interaction_log)

    result = await dispatcher.dispatch("check widgets")

    assert result.ok is False
    assert result.error == "Reasoning service timed out"
    assert result.response.text == APOLOGY_TEXT
    assert spoken == [APOLOGY_TEXT]
    assert responses == []
    assert dispatcher.is_processing is False

    entry = store.entries[0]
    assert entry.intent == "error"
    assert entry.success is False
    assert entry.raw_transcript == "check widgets"
    assert entry.response_summary == "Reasoning service timed out"


@pytest.mark.asyncio
async def test_unexpected_error_is_handled_like_service_error(interaction_log, store):
    dispatcher, spoken, _ = make_dispatcher(FakeReasoningClient(error=RuntimeError()), interaction_log)

    result = await dispatcher.dispatch("check widgets")

    assert result.ok is False
    assert result.error == "RuntimeError"
    assert spoken == [APOLOGY_TEXT]


@pytest.mark.asyncio
@pytest.mark.parametrize("command", ["", "   ", None])
async def test_blank_command_is_ignored(interaction_log, store, command):
    client = FakeReasoningClient()
    dispatcher, spoken, _ = make_dispatcher(client, interaction_log)

    assert await dispatcher.dispatch(command) is None
    assert client.calls == []
    assert spoken == []
    assert store.entries == []


@pytest.mark.asyncio
async def test_failing_sinks_do_not_break_dispatch(interaction_log, store):
    async def broken_speak(text):
        raise RuntimeError("no audio")

    def broken_callback(response):
        raise RuntimeError("ui gone")

    dispatcher = CommandDispatcher(
        FakeReasoningClient(), interaction_log, speak=broken_speak, on_response=broken_callback,
    )

    result = await dispatcher.dispatch("hello")

    assert result.ok is True
    assert store.entries[0].success is True


@pytest.mark.asyncio
async def test_store_failure_does_not_break_dispatch():
    log = InteractionLogger(EventBus(), store=MemoryStore(fail=True))
    dispatcher = CommandDispatcher(FakeReasoningClient(), log)

    result = await dispatcher.dispatch("hello")

    assert result.ok is True
    assert result.response.text == "Done."
