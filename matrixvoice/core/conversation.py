"""
Conversation Controller - The Orchestrator
===========================================

Connects the pure `ConversationMachine` to the real world:

  recognition events ─┐
  speech signals ─────┼─► event queue ─► machine.transition() ─► effects
  public controls ────┘                                         │
       ▲                                                         ▼
       └──────── recognition / speech / dispatcher / event bus ◄─┘

LEARNING POINT: One Queue, One Consumer
-----------------------------------------
Recognition, speech output and the network all call back asynchronously.
Instead of guarding every callback with locks, each one becomes an event
on a single asyncio.Queue consumed by one worker task. Transitions never
interleave, and an effect that triggers another event (speech finishing
immediately on a host without audio) simply queues it.

Public methods wait until the queue has drained, so when
`await controller.stop_listening()` returns, recognition is stopped,
speech is cancelled and any in-flight dispatch is gone.
"""

import asyncio
import inspect
from typing import Any, Callable

from matrixvoice.api.dispatcher import APOLOGY_TEXT, CommandDispatcher, MatrixResponse
from matrixvoice.api.interaction_log import InteractionLogger
from matrixvoice.core.engine import Module
from matrixvoice.core.event_bus import EventBus
from matrixvoice.core.state_machine import (
    CancelDispatch,
    CancelSpeech,
    CommandSubmitted,
    ConversationMachine,
    ConversationState,
    Dispatch,
    DispatchFinished,
    EmitResponse,
    EmitTranscript,
    EmitWake,
    LogWake,
    RecognitionEnded,
    RecognitionError,
    RecognitionResult,
    ReportError,
    Speak,
    SpeakRequested,
    SpeechFinished,
    StartRecognition,
    StartRequested,
    StopRecognition,
    StopRequested,
)
from matrixvoice.speech.greetings import Tone, pick_greeting
from matrixvoice.speech.recognizer import RecognitionBackend
from matrixvoice.speech.synthesizer import SpeechOutput
from matrixvoice.utils.logger import setup_logger
from matrixvoice.voice.wake_word import WakePhraseMatcher


logger = setup_logger(__name__)

RECOGNITION_UNAVAILABLE = "recognition-unavailable"
START_FAILED = "start-failed"


class ConversationController(Module):
    """
    Owns one voice session: recognition and speech lifecycles, the
    command in flight, and the host callbacks.

    Host callbacks (sync or async, all optional):
        on_wake()               — once per detected wake phrase
        on_transcript(text)     — every interim/final recognition update
        on_response(response)   — once per successful command
    """

    def __init__(
        self,
        event_bus: EventBus,
        matcher: WakePhraseMatcher,
        recognition: RecognitionBackend | None,
        speech: SpeechOutput,
        dispatcher: CommandDispatcher,
        interaction_log: InteractionLogger | None = None,
        tone: Tone | str = Tone.PROFESSIONAL,
        auto_resume: bool = True,
        on_wake: Callable[[], Any] | None = None,
        on_transcript: Callable[[str], Any] | None = None,
        on_response: Callable[[MatrixResponse], Any] | None = None,
        greeting_picker: Callable[[Tone], str] = pick_greeting,
    ):
        super().__init__("ConversationController", event_bus)
        self.machine = ConversationMachine(matcher, tone=tone, auto_resume=auto_resume, greeting_picker=greeting_picker)
        self.recognition = recognition
        self.speech = speech
        self.dispatcher = dispatcher
        self.interaction_log = interaction_log

        self.on_wake = on_wake
        self.on_transcript = on_transcript
        self.on_response = on_response

        self._state = ConversationState()
        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._dispatch_task: asyncio.Task | None = None

        if recognition is not None:
            recognition.bind(self._on_recognition_result, self._on_recognition_error, self._on_recognition_end)
        speech.add_listener(on_finished=self._on_speech_finished)

    # ─── Module lifecycle ────────────────────────────────────

    async def start(self) -> None:
        self._running = True
        self._ensure_worker()
        logger.info(f"Conversation ready (tone: {self.machine.tone.value}, auto-resume: {self.machine.auto_resume})")

    async def stop(self) -> None:
        await self.stop_listening()
        self._running = False
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

    # ─── Public controls ─────────────────────────────────────

    @property
    def state(self) -> ConversationState:
        return self._state

    def snapshot(self) -> dict[str, Any]:
        return self._state.to_dict()

    async def start_listening(self) -> bool:
        """
        Begin wake listening. Returns False, without raising, when the
        host has no recognition capability or capture failed to start.
        """
        if self.recognition is None or not self.recognition.available:
            logger.warning("Speech recognition not supported on this device")
            await self.emit("voice.error", {
                "code": RECOGNITION_UNAVAILABLE,
                "message": "Speech recognition not supported on this device",
            })
            return False
        await self._submit(StartRequested())
        return self._state.active

    async def stop_listening(self) -> None:
        await self._submit(StopRequested())

    async def toggle_listening(self) -> bool:
        """Returns whether Matrix is listening afterwards."""
        if self._state.active:
            await self.stop_listening()
            return False
        return await self.start_listening()

    async def send_command(self, text: str) -> bool:
        """Dispatch typed text directly, skipping wake detection."""
        if not text or not text.strip():
            return False
        if self._state.processing:
            logger.warning(f"Command ignored, another is in flight: {text!r}")
            return False
        await self._submit(CommandSubmitted(text))
        return True

    async def speak(self, text: str) -> None:
        """System-initiated utterance; listening pauses while it plays."""
        await self._submit(SpeakRequested(text))

    # ─── Collaborator callbacks ──────────────────────────────

    async def _on_recognition_result(self, text: str, is_final: bool) -> None:
        await self._submit(RecognitionResult(text, is_final))

    async def _on_recognition_error(self, code: str) -> None:
        logger.warning(f"Speech recognition error: {code}")
        await self._submit(RecognitionError(code))

    async def _on_recognition_end(self) -> None:
        await self._submit(RecognitionEnded())

    async def _on_speech_finished(self, utterance_id: int) -> None:
        if not self.speech.is_current(utterance_id):
            logger.debug(f"Ignoring finish of superseded utterance #{utterance_id}")
            return
        await self._submit(SpeechFinished())

    # ─── Event pump ──────────────────────────────────────────

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._process_events())

    async def _submit(self, event) -> None:
        self._ensure_worker()
        self._queue.put_nowait(event)
        # The worker itself must not wait on its own queue
        if asyncio.current_task() is not self._worker:
            await self._queue.join()

    async def _process_events(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._apply(event)
            except Exception as e:
                logger.error(f"Failed to apply {type(event).__name__}: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    async def _apply(self, event) -> None:
        previous = self._state
        transition = self.machine.transition(previous, event)
        self._state = transition.state

        if transition.state.phase is not previous.phase:
            logger.debug(f"{previous.phase.value} → {transition.state.phase.value} ({type(event).__name__})")

        for effect in transition.effects:
            await self._run_effect(effect)

        if transition.state != previous:
            await self.emit("voice.state", self.snapshot())

    async def _run_effect(self, effect) -> None:
        match effect:
            case StartRecognition():
                try:
                    await self.recognition.start()
                except Exception as e:
                    logger.error(f"Failed to start recognition: {e}")
                    self._queue.put_nowait(RecognitionError(START_FAILED))
            case StopRecognition():
                if self.recognition is not None:
                    try:
                        await self.recognition.stop()
                    except Exception as e:
                        logger.error(f"Failed to stop recognition: {e}")
            case Speak(text=text):
                await self.speech.speak(text)
            case CancelSpeech():
                await self.speech.cancel()
            case Dispatch(seq=seq, command=command, origin=origin):
                self._dispatch_task = asyncio.create_task(self._run_dispatch(seq, command, origin))
            case CancelDispatch():
                await self._cancel_dispatch()
            case EmitTranscript(text=text, final=final):
                await self.emit("voice.transcript", {"text": text, "final": final})
                await self._invoke(self.on_transcript, text)
            case EmitWake(transcript=transcript, phrase=phrase):
                logger.info(f"Wake phrase detected: {transcript!r} ({phrase})")
                await self.emit("voice.wake", {"transcript": transcript, "phrase": phrase})
                await self._invoke(self.on_wake)
            case EmitResponse(response=response):
                await self.emit("voice.response", {"response": response.model_dump(by_alias=True)})
                await self._invoke(self.on_response, response)
            case LogWake(transcript=transcript, phrase=phrase):
                if self.interaction_log is not None:
                    self.interaction_log.log_wake(transcript, phrase)
            case ReportError(code=code):
                await self.emit("voice.error", {"code": code})
            case _:
                raise TypeError(f"Unknown effect: {effect!r}")

    async def _run_dispatch(self, seq: int, command: str, origin: str) -> None:
        try:
            result = await self.dispatcher.dispatch(command)
        except Exception as e:
            logger.error(f"Dispatcher raised: {e}", exc_info=True)
            result = None
        if self._dispatch_task is asyncio.current_task():
            self._dispatch_task = None

        if result is None:
            # Still close the cycle so the session cannot stay in DISPATCHING
            await self._submit(DispatchFinished(seq=seq, text=APOLOGY_TEXT, ok=False, origin=origin))
            return
        await self._submit(DispatchFinished(
            seq=seq,
            text=result.response.text,
            ok=result.ok,
            origin=origin,
            response=result.response,
        ))

    async def _cancel_dispatch(self) -> None:
        task, self._dispatch_task = self._dispatch_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Dispatch ended with an error during cancel: {e}")

    async def _invoke(self, callback: Callable | None, *args) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Host callback failed: {e}", exc_info=True)
