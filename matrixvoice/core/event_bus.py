"""
Event Bus - How Matrix Talks to Its Host
=========================================

The conversation never calls the UI directly. It publishes named events
and whoever cares subscribes:

    voice.state        — phase/flags snapshot after every change
    voice.transcript   — interim or final recognition text
    voice.wake         — a wake phrase was recognized
    voice.response     — structured reply for a finished command
    voice.error        — recognition failed or is unavailable
    recognition.start  — a recognizing client should begin capture
    recognition.stop   — ... and stop it
    system.ready / system.module_error

LEARNING POINT: Topic Wildcards
---------------------------------
Event names are dotted topics. A subscription ending in ".*" receives
every event under that prefix, and "*" receives everything. The
WebSocket bridge subscribes to "voice.*" once instead of listing each
event by hand.

Usage:
    bus = EventBus()

    async def on_wake(data):
        print(f"Woke on: {data['phrase']}")

    bus.subscribe("voice.wake", on_wake)
    await bus.publish("voice.wake", {"phrase": "hey matrix"})
"""

import asyncio
import time
import traceback
from collections import defaultdict
from typing import Any, Callable, Coroutine

from matrixvoice.utils.logger import setup_logger


logger = setup_logger(__name__)

EventHandler = Callable[[dict[str, Any]], Coroutine[Any, Any, None]]

WILDCARD = "*"


def topic_matches(pattern: str, event_type: str) -> bool:
    """'voice.*' matches 'voice.wake'; '*' matches anything."""
    if pattern == WILDCARD:
        return True
    if pattern.endswith(".*"):
        return event_type.startswith(pattern[:-1])
    return pattern == event_type


class EventBus:
    """
    In-process publish/subscribe with a bounded history.

    Handlers run concurrently per publish and are isolated from each
    other: one raising handler is logged, the rest still run, and the
    publisher never sees the exception.
    """

    def __init__(self, max_history: int = 100):
        # {"voice.wake": [handler], "voice.*": [bridge_handler]}
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)
        self._history: list[dict[str, Any]] = []
        self._max_history = max_history

    def subscribe(self, pattern: str, handler: EventHandler) -> None:
        """
        Register `handler` for an exact event name or a wildcard pattern.

        The same handler may be registered more than once; it is then
        called once per registration.
        """
        self._subscribers[pattern].append(handler)

    def unsubscribe(self, pattern: str, handler: EventHandler) -> None:
        """Remove one registration. Unknown handlers are ignored."""
        handlers = self._subscribers.get(pattern)
        if handlers and handler in handlers:
            handlers.remove(handler)
            if not handlers:
                del self._subscribers[pattern]

    def handlers_for(self, event_type: str) -> list[EventHandler]:
        return [
            handler
            for pattern, handlers in self._subscribers.items()
            if topic_matches(pattern, event_type)
            for handler in handlers
        ]

    async def publish(self, event_type: str, data: dict[str, Any] | None = None) -> None:
        """
        Deliver `data` to every matching handler and record it.

        The payload is tagged with `_event_type` so a wildcard subscriber
        can tell which event it received.

        LEARNING POINT: asyncio.gather(return_exceptions=True)
        --------------------------------------------------------
        Exceptions come back as values instead of propagating, so a
        broken subscriber is reported here and nowhere else.
        """
        if data is None:
            data = {}
        data["_event_type"] = event_type

        self._history.append({"type": event_type, "data": data, "timestamp": time.time()})
        if len(self._history) > self._max_history:
            del self._history[: len(self._history) - self._max_history]

        handlers = self.handlers_for(event_type)
        if not handlers:
            return

        results = await asyncio.gather(
            *(handler(data) for handler in handlers),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                tb = "".join(traceback.format_exception(type(result), result, result.__traceback__))
                logger.error(f"Handler error for '{event_type}': {tb}")

    def get_history(self, event_type: str | None = None) -> list[dict[str, Any]]:
        """Recent events, oldest first; optionally only those matching a pattern."""
        if event_type is None:
            return list(self._history)
        return [h for h in self._history if topic_matches(event_type, h["type"])]

    def clear_history(self) -> None:
        self._history.clear()

    @property
    def subscriber_count(self) -> dict[str, int]:
        """Registrations per subscribed pattern."""
        return {pattern: len(handlers) for pattern, handlers in self._subscribers.items()}
