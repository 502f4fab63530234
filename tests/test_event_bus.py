"""
Tests for the Event Bus
=========================

LEARNING POINT: Unit Testing
-------------------------------
Each test follows the same three steps:

1. ARRANGE — Set up the test conditions
2. ACT — Run the code being tested
3. ASSERT — Verify the result is correct

NAMING CONVENTION:
  test_<what>_<scenario>
  Example: test_publish_reaches_every_subscriber
"""

import pytest

from matrixvoice.core.event_bus import EventBus


# ─── Fixtures ────────────────────────────────────────────────

@pytest.fixture
def event_bus():
    """A fresh EventBus for each test."""
    return EventBus()


# ─── Tests ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_subscriber_receives_wake_event(event_bus):
    # ARRANGE
    received = []

    async def on_wake(data):
        received.append(data)

    event_bus.subscribe("voice.wake", on_wake)

    # ACT
    await event_bus.publish("voice.wake", {"transcript": "hey matrix", "phrase": "hey matrix"})

    # ASSERT
    assert len(received) == 1
    assert received[0]["phrase"] == "hey matrix"
    assert received[0]["_event_type"] == "voice.wake"


@pytest.mark.asyncio
async def test_publish_reaches_every_subscriber(event_bus):
    results = []

    async def ui(data):
        results.append("ui")

    async def bridge(data):
        results.append("bridge")

    event_bus.subscribe("voice.state", ui)
    event_bus.subscribe("voice.state", bridge)

    await event_bus.publish("voice.state", {"phase": "idle"})

    assert sorted(results) == ["bridge", "ui"]


@pytest.mark.asyncio
async def test_publish_without_subscribers(event_bus):
    # Must not raise
    await event_bus.publish("voice.error", {"code": "not-allowed"})


@pytest.mark.asyncio
async def test_unsubscribed_handler_is_not_called(event_bus):
    received = []

    async def handler(data):
        received.append(data)

    event_bus.subscribe("voice.transcript", handler)
    event_bus.unsubscribe("voice.transcript", handler)
    # Unsubscribing twice is harmless
    event_bus.unsubscribe("voice.transcript", handler)

    await event_bus.publish("voice.transcript", {"text": "hello"})

    assert received == []


@pytest.mark.asyncio
async def test_history_keeps_publish_order(event_bus):
    await event_bus.publish("recognition.start", {})
    await event_bus.publish("recognition.stop", {})

    history = event_bus.get_history()

    assert [h["type"] for h in history] == ["recognition.start", "recognition.stop"]


@pytest.mark.asyncio
async def test_history_is_bounded():
    event_bus = EventBus(max_history=3)
    for n in range(5):
        await event_bus.publish("voice.transcript", {"n": n})

    history = event_bus.get_history()

    assert len(history) == 3
    assert [h["data"]["n"] for h in history] == [2, 3, 4]


def test_subscriber_count(event_bus):
    async def dummy(data):
        pass

    event_bus.subscribe("voice.state", dummy)
    event_bus.subscribe("voice.state", dummy)
    event_bus.subscribe("voice.response", dummy)

    counts = event_bus.subscriber_count
    assert counts["voice.state"] == 2
    assert counts["voice.response"] == 1


@pytest.mark.asyncio
async def test_failing_handler_does_not_stop_others(event_bus):
    """
    LEARNING POINT: Fault Tolerance
    ----------------------------------
    A broken UI subscriber must not keep the WebSocket bridge from
    seeing the event, and the publisher never sees the exception.
    """
    results = []

    async def bad_handler(data):
        raise ValueError("I'm broken!")

    async def good_handler(data):
        results.append("success")

    event_bus.subscribe("voice.response", bad_handler)
    event_bus.subscribe("voice.response", good_handler)

    await event_bus.publish("voice.response", {})

    assert results == ["success"]


@pytest.mark.asyncio
async def test_wildcard_subscription_receives_topic_family(event_bus):
    seen = []

    async def bridge(data):
        seen.append(data["_event_type"])

    event_bus.subscribe("voice.*", bridge)

    await event_bus.publish("voice.wake", {})
    await event_bus.publish("voice.state", {})
    await event_bus.publish("recognition.start", {})

    assert seen == ["voice.wake", "voice.state"]


@pytest.mark.asyncio
async def test_star_receives_everything(event_bus):
    seen = []

    async def everything(data):
        seen.append(data["_event_type"])

    event_bus.subscribe("*", everything)

    await event_bus.publish("system.ready", {})
    await event_bus.publish("voice.error", {"code": "not-allowed"})

    assert seen == ["system.ready", "voice.error"]


@pytest.mark.asyncio
async def test_history_can_be_filtered_and_cleared(event_bus):
    await event_bus.publish("voice.wake", {})
    await event_bus.publish("recognition.stop", {})

    assert [h["type"] for h in event_bus.get_history("voice.*")] == ["voice.wake"]
    assert "timestamp" in event_bus.get_history()[0]

    event_bus.clear_history()
    assert event_bus.get_history() == []
