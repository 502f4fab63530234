"""
Conversation State Machine - Who Gets the Microphone?
======================================================

Phases of one conversation:

    IDLE ──start──► WAKE_LISTENING ──wake phrase──► GREETING (speaking)
                         ▲                              │ finished
                         │                              ▼
                    RESPONDING ◄──reply── DISPATCHING ◄── COMMAND_LISTENING
                    (speaking)                          final utterance

LEARNING POINT: One Enum Instead of Many Booleans
---------------------------------------------------
"Listening" and "speaking" are not two flags that scattered `if`
statements must keep apart. They are properties of a single `phase`:
a listening phase is never a speaking phase, so the engine cannot hear
its own voice by construction.

LEARNING POINT: Pure Transitions
----------------------------------
`ConversationMachine.transition(state, event)` returns the next state and
a list of effects (start recognition, speak, dispatch, ...). It performs
no I/O. The controller executes the effects, which makes every sequence
testable without audio hardware.
"""

from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Any, Callable, Literal

from matrixvoice.speech.greetings import Tone, pick_greeting
from matrixvoice.speech.recognizer import BENIGN_ERRORS
from matrixvoice.voice.wake_word import WakePhraseMatcher


class Phase(str, Enum):
    IDLE = "idle"
    WAKE_LISTENING = "wake_listening"
    GREETING = "greeting"
    COMMAND_LISTENING = "command_listening"
    DISPATCHING = "dispatching"
    RESPONDING = "responding"


LISTENING_PHASES = frozenset({Phase.WAKE_LISTENING, Phase.COMMAND_LISTENING})
SPEAKING_PHASES = frozenset({Phase.GREETING, Phase.RESPONDING})

Origin = Literal["voice", "manual"]


@dataclass(frozen=True)
class ConversationState:
    """
    One session's state. `active` means the user asked Matrix to listen;
    it decides whether capture resumes after speech.
    """
    phase: Phase = Phase.IDLE
    active: bool = False
    wake_mode: bool = True
    processing: bool = False
    transcript: str = ""
    last_response: str = ""
    dispatch_seq: int = 0

    @property
    def is_listening(self) -> bool:
        return self.phase in LISTENING_PHASES

    @property
    def is_speaking(self) -> bool:
        return self.phase in SPEAKING_PHASES

    @property
    def is_processing(self) -> bool:
        return self.processing

    @property
    def is_wake_mode(self) -> bool:
        return self.wake_mode

    def resume_phase(self) -> Phase:
        return Phase.WAKE_LISTENING if self.wake_mode else Phase.COMMAND_LISTENING

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["phase"] = self.phase.value
        data.update(
            is_listening=self.is_listening,
            is_speaking=self.is_speaking,
            is_processing=self.is_processing,
            is_wake_mode=self.is_wake_mode,
        )
        return data


# ─── Events ──────────────────────────────────────────────────

@dataclass(frozen=True)
class StartRequested:
    pass


@dataclass(frozen=True)
class StopRequested:
    pass


@dataclass(frozen=True)
class RecognitionResult:
    text: str
    final: bool


@dataclass(frozen=True)
class RecognitionError:
    code: str


@dataclass(frozen=True)
class RecognitionEnded:
    pass


@dataclass(frozen=True)
class SpeechFinished:
    pass


@dataclass(frozen=True)
class CommandSubmitted:
    text: str


@dataclass(frozen=True)
class SpeakRequested:
    text: str


@dataclass(frozen=True)
class DispatchFinished:
    seq: int
    text: str
    ok: bool
    origin: Origin
    response: Any = None


# ─── Effects ─────────────────────────────────────────────────

@dataclass(frozen=True)
class StartRecognition:
    pass


@dataclass(frozen=True)
class StopRecognition:
    pass


@dataclass(frozen=True)
class Speak:
    text: str


@dataclass(frozen=True)
class CancelSpeech:
    pass


@dataclass(frozen=True)
class Dispatch:
    seq: int
    command: str
    origin: Origin


@dataclass(frozen=True)
class CancelDispatch:
    pass


@dataclass(frozen=True)
class EmitTranscript:
    text: str
    final: bool


@dataclass(frozen=True)
class EmitWake:
    transcript: str
    phrase: str


@dataclass(frozen=True)
class EmitResponse:
    response: Any


@dataclass(frozen=True)
class LogWake:
    transcript: str
    phrase: str


@dataclass(frozen=True)
class ReportError:
    code: str


@dataclass(frozen=True)
class Transition:
    state: ConversationState
    effects: tuple = ()


def _idle(state: ConversationState) -> ConversationState:
    """Leave the session idle. The next start always begins with the wake phrase."""
    return replace(state, phase=Phase.IDLE, active=False, wake_mode=True)


class ConversationMachine:
    """
    The exhaustive transition table.

    Given the same state, event and greeting picker, `transition()` always
    returns the same result.
    """

    def __init__(
        self,
        matcher: WakePhraseMatcher,
        tone: Tone | str = Tone.PROFESSIONAL,
        auto_resume: bool = True,
        greeting_picker: Callable[[Tone], str] = pick_greeting,
    ):
        self.matcher = matcher
        self.tone = Tone(tone)
        self.auto_resume = auto_resume
        self.greeting_picker = greeting_picker

        self._handlers = {
            StartRequested: self._on_start,
            StopRequested: self._on_stop,
            RecognitionResult: self._on_result,
            RecognitionError: self._on_recognition_error,
            RecognitionEnded: self._on_recognition_ended,
            SpeechFinished: self._on_speech_finished,
            CommandSubmitted: self._on_command,
            SpeakRequested: self._on_speak,
            DispatchFinished: self._on_dispatch_finished,
        }

    def transition(self, state: ConversationState, event) -> Transition:
        handler = self._handlers.get(type(event))
        if handler is None:
            raise TypeError(f"Unknown conversation event: {event!r}")
        return handler(state, event)

    # ─── Lifecycle ───────────────────────────────────────────

    def _on_start(self, state: ConversationState, event: StartRequested) -> Transition:
        if state.is_listening:
            return Transition(state)
        if state.phase is Phase.IDLE:
            return Transition(
                replace(state, phase=Phase.WAKE_LISTENING, active=True, wake_mode=True),
                (StartRecognition(),),
            )
        # Speaking or dispatching: capture starts once that completes
        return Transition(replace(state, active=True))

    def _on_stop(self, state: ConversationState, event: StopRequested) -> Transition:
        stopped = ConversationState(last_response=state.last_response, dispatch_seq=state.dispatch_seq)
        if state.phase is Phase.IDLE and not state.active and not state.processing and state.wake_mode:
            return Transition(stopped)
        return Transition(stopped, (CancelSpeech(), StopRecognition(), CancelDispatch()))

    # ─── Recognition ─────────────────────────────────────────

    def _on_result(self, state: ConversationState, event: RecognitionResult) -> Transition:
        shown = replace(state, transcript=event.text)
        effects: list = [EmitTranscript(event.text, event.final)]

        # Interim text is display-only; finals only count while capturing
        if not event.final or not state.is_listening:
            return Transition(shown, tuple(effects))

        if state.phase is Phase.WAKE_LISTENING:
            phrase = self.matcher.match(event.text)
            if phrase is None:
                return Transition(shown, tuple(effects))
            effects += [
                StopRecognition(),
                EmitWake(event.text, phrase),
                LogWake(event.text, phrase),
                Speak(self.greeting_picker(self.tone)),
            ]
            return Transition(
                replace(state, phase=Phase.GREETING, wake_mode=False, transcript=""),
                tuple(effects),
            )

        command = event.text.strip()
        if not command:
            return Transition(shown, tuple(effects))
        seq = state.dispatch_seq + 1
        effects += [StopRecognition(), Dispatch(seq, command, "voice")]
        return Transition(
            replace(state, phase=Phase.DISPATCHING, processing=True, transcript="", dispatch_seq=seq),
            tuple(effects),
        )

    def _on_recognition_error(self, state: ConversationState, event: RecognitionError) -> Transition:
        if event.code in BENIGN_ERRORS:
            if state.is_listening:
                return Transition(state, (StartRecognition(),))
            return Transition(state)

        # Fatal: no restart. A reply in flight still finishes, then Matrix idles
        stopped = _idle(state) if state.is_listening else replace(state, active=False)
        return Transition(
            stopped,
            (StopRecognition(), ReportError(event.code)),
        )

    def _on_recognition_ended(self, state: ConversationState, event: RecognitionEnded) -> Transition:
        # While speaking the restart waits for SpeechFinished
        if not state.is_listening:
            return Transition(state)
        if self.auto_resume and state.active:
            return Transition(state, (StartRecognition(),))
        return Transition(_idle(state))

    # ─── Speech ──────────────────────────────────────────────

    def _on_speech_finished(self, state: ConversationState, event: SpeechFinished) -> Transition:
        if not state.is_speaking:
            return Transition(state)
        if state.processing:
            return Transition(replace(state, phase=Phase.DISPATCHING))
        if state.active and self.auto_resume:
            return Transition(replace(state, phase=state.resume_phase()), (StartRecognition(),))
        return Transition(_idle(state))

    def _on_speak(self, state: ConversationState, event: SpeakRequested) -> Transition:
        if not event.text.strip():
            return Transition(state)
        effects: list = []
        if state.is_listening:
            effects.append(StopRecognition())
        effects.append(Speak(event.text))
        return Transition(replace(state, phase=Phase.RESPONDING), tuple(effects))

    # ─── Commands ────────────────────────────────────────────

    def _on_command(self, state: ConversationState, event: CommandSubmitted) -> Transition:
        command = event.text.strip()
        if not command or state.processing:
            return Transition(state)

        effects: list = []
        if state.is_listening:
            effects.append(StopRecognition())
        if state.is_speaking:
            effects.append(CancelSpeech())
        seq = state.dispatch_seq + 1
        effects.append(Dispatch(seq, command, "manual"))
        return Transition(
            replace(state, phase=Phase.DISPATCHING, processing=True, dispatch_seq=seq),
            tuple(effects),
        )

    def _on_dispatch_finished(self, state: ConversationState, event: DispatchFinished) -> Transition:
        if not state.processing or event.seq != state.dispatch_seq:
            return Transition(state)

        effects: list = [Speak(event.text)]
        if event.ok:
            effects.append(EmitResponse(event.response))
        return Transition(
            replace(
                state,
                phase=Phase.RESPONDING,
                processing=False,
                last_response=event.text,
                wake_mode=True if event.origin == "voice" else state.wake_mode,
            ),
            tuple(effects),
        )
