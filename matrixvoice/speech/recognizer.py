"""
Speech Recognition - The Ears
==============================

Matrix does not process audio itself. It consumes text from a
recognition capability that reports three things:

    result(text, is_final)  — interim or finalized transcript
    error(code)             — e.g. "no-speech", "aborted", "not-allowed"
    end()                   — the capture session closed (silence timeout,
                              explicit stop, ...)

`RecognitionBackend` is that contract. `RemoteRecognition` implements it
for a browser client using the Web Speech API: the browser captures and
transcribes, then streams results over the WebSocket; Matrix tells it when
to start and stop through `recognition.start` / `recognition.stop` events.
"""

import inspect
from abc import ABC, abstractmethod
from typing import Any, Callable

from matrixvoice.core.event_bus import EventBus
from matrixvoice.utils.logger import setup_logger


logger = setup_logger(__name__)

# Transient conditions: restart capture, never bother the user
BENIGN_ERRORS = frozenset({"no-speech", "aborted"})

ResultHandler = Callable[[str, bool], Any]
ErrorHandler = Callable[[str], Any]
EndHandler = Callable[[], Any]


async def _call(handler: Callable | None, *args) -> None:
    if handler is None:
        return
    result = handler(*args)
    if inspect.isawaitable(result):
        await result


class RecognitionBackend(ABC):
    """Platform speech-to-text capability."""

    def __init__(self):
        self._on_result: ResultHandler | None = None
        self._on_error: ErrorHandler | None = None
        self._on_end: EndHandler | None = None

    @property
    @abstractmethod
    def available(self) -> bool:
        ...

    def bind(self, on_result: ResultHandler, on_error: ErrorHandler, on_end: EndHandler) -> None:
        """Attach the single consumer of recognition events."""
        self._on_result = on_result
        self._on_error = on_error
        self._on_end = on_end

    @abstractmethod
    async def start(self) -> None:
        """Begin capturing. Starting an already started capture is a no-op."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop capturing. Stopping a stopped capture is a no-op."""
        ...

    async def emit_result(self, text: str, is_final: bool) -> None:
        await _call(self._on_result, text, is_final)

    async def emit_error(self, code: str) -> None:
        await _call(self._on_error, code)

    async def emit_end(self) -> None:
        await _call(self._on_end)


class RemoteRecognition(RecognitionBackend):
    """
    Recognition performed by a connected client.

    Available while at least one client is attached. The client mirrors
    `recognition.start` / `recognition.stop` and streams events back
    through the `feed_*` methods.
    """

    def __init__(self, event_bus: EventBus, language: str = "en-US"):
        super().__init__()
        self.event_bus = event_bus
        self.language = language
        self._clients = 0
        self._capturing = False

    @property
    def available(self) -> bool:
        return self._clients > 0

    @property
    def is_capturing(self) -> bool:
        return self._capturing

    def attach_client(self) -> None:
        self._clients += 1

    def detach_client(self) -> None:
        self._clients = max(0, self._clients - 1)

    async def start(self) -> None:
        if self._capturing:
            return
        if not self.available:
            raise RuntimeError("No recognition client connected")
        self._capturing = True
        await self.event_bus.publish("recognition.start", {
            "language": self.language,
            "continuous": True,
            "interim_results": True,
        })

    async def stop(self) -> None:
        if not self._capturing:
            return
        self._capturing = False
        await self.event_bus.publish("recognition.stop", {})

    async def feed_result(self, text: str, is_final: bool) -> None:
        if not self._capturing:
            logger.debug(f"Dropping result while not capturing: {text!r}")
            return
        await self.emit_result(text, is_final)

    async def feed_error(self, code: str) -> None:
        # The browser session is over; a restart must publish recognition.start again
        if code in BENIGN_ERRORS:
            self._capturing = False
        await self.emit_error(code)

    async def feed_end(self) -> None:
        self._capturing = False
        await self.emit_end()
