"""
Speech Output - Matrix's Voice
===============================

Two layers:

  SynthesisBackend — the platform capability that actually makes sound
                     (macOS `say`, Linux `espeak`, or a test fake)
  SpeechOutput     — the controller the rest of Matrix talks to

LEARNING POINT: Last Write Wins
---------------------------------
A queue of utterances would let stale replies pile up behind each other.
SpeechOutput keeps at most ONE utterance alive: a new `speak()` cancels
whatever is playing first. A replaced utterance stays silent; the new
one's `finished` signal covers both, so nobody waits forever.

LEARNING POINT: Graceful Degradation
--------------------------------------
With no usable backend, `speak()` plays nothing and signals `finished`
straight away. The conversation keeps moving on hosts without audio.
"""

import asyncio
import inspect
import re
import shutil
import subprocess
import sys
from abc import ABC, abstractmethod
from typing import Any, Callable

from matrixvoice.core.engine import Module
from matrixvoice.core.event_bus import EventBus
from matrixvoice.utils.logger import setup_logger


logger = setup_logger(__name__)

DEFAULT_VOICE_PREFERENCES = ("female", "samantha", "victoria", "karen")

# Words per minute at rate 1.0 for the command-line engines
BASE_WPM = 175

SpeechListener = Callable[[int], Any]


class SynthesisBackend(ABC):
    """Platform text-to-speech capability."""

    @property
    @abstractmethod
    def available(self) -> bool:
        ...

    def voices(self) -> list[str]:
        return []

    @abstractmethod
    async def say(self, text: str, voice: str | None, rate: float, pitch: float) -> None:
        """Play `text` and return when playback ends. Must be cancellable."""
        ...

    async def cancel_all(self) -> None:
        """Silence anything still playing."""


class SystemSynthesis(SynthesisBackend):
    """
    Uses the operating system's TTS command:
      - macOS: built-in `say`
      - Linux: `espeak` / `espeak-ng`
      - Otherwise: unavailable
    """

    def __init__(self):
        if sys.platform == "darwin":
            self._binary = shutil.which("say")
        else:
            self._binary = shutil.which("espeak") or shutil.which("espeak-ng")
        self._proc: asyncio.subprocess.Process | None = None
        self._voices: list[str] | None = None

    @property
    def available(self) -> bool:
        return self._binary is not None

    @property
    def _is_say(self) -> bool:
        return bool(self._binary) and self._binary.endswith("say")

    def voices(self) -> list[str]:
        if self._voices is not None:
            return self._voices
        self._voices = []
        if not self.available:
            return self._voices

        args = [self._binary, "-v", "?"] if self._is_say else [self._binary, "--voices"]
        try:
            result = subprocess.run(args, capture_output=True, text=True, timeout=5)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning(f"Could not list voices: {e}")
            return self._voices

        for line in result.stdout.splitlines():
            if self._is_say:
                # "Samantha            en_US    # Hello, my name is Samantha."
                name = re.split(r"\s{2,}", line.strip())[0]
            else:
                # " 5  en-gb          M  english              gmw/en ..."
                parts = line.split()
                name = parts[3] if len(parts) > 3 and parts[0] != "Pty" else ""
            if name:
                self._voices.append(name)
        return self._voices

    async def say(self, text: str, voice: str | None, rate: float, pitch: float) -> None:
        args = [self._binary, "-r" if self._is_say else "-s", str(int(BASE_WPM * rate))]
        if not self._is_say:
            args += ["-p", str(int(50 * pitch))]
        if voice:
            args += ["-v", voice]
        args.append(text)

        self._proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        try:
            await self._proc.wait()
        finally:
            await self.cancel_all()
            self._proc = None

    async def cancel_all(self) -> None:
        if self._proc is not None and self._proc.returncode is None:
            self._proc.kill()
            await self._proc.wait()


def select_voice(voices: list[str], preferences: list[str] | tuple[str, ...]) -> str | None:
    """
    Pick a voice by preference order: the first preference that appears
    (case-insensitively) in any voice name wins. None means platform default.
    """
    for preference in preferences:
        wanted = preference.lower()
        for voice in voices:
            if wanted in voice.lower():
                return voice
    return None


class SpeechOutput(Module):
    """
    Serializes speech requests: at most one utterance plays at any time.

    Listeners receive the utterance id with `started` and `finished`.
    Only the most recent id is current; `is_current()` lets callers drop
    signals that belong to a superseded request.
    """

    def __init__(
        self,
        event_bus: EventBus,
        backend: SynthesisBackend | None = None,
        voice_preferences: list[str] | tuple[str, ...] = DEFAULT_VOICE_PREFERENCES,
        rate: float = 1.0,
        pitch: float = 1.0,
    ):
        super().__init__("SpeechOutput", event_bus)
        self.backend = backend
        self.voice_preferences = tuple(voice_preferences)
        self.rate = rate
        self.pitch = pitch

        self._utterance_id = 0
        self._task: asyncio.Task | None = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._listeners: list[tuple[SpeechListener | None, SpeechListener | None]] = []
        self._voice: str | None = None
        self._voice_resolved = False

    @property
    def available(self) -> bool:
        return self.backend is not None and self.backend.available

    @property
    def is_speaking(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def voice(self) -> str | None:
        """The selected voice; None until resolved or when the platform default is used."""
        return self._voice

    async def resolve_voice(self) -> str | None:
        """
        Pick a voice once. Listing voices shells out to the TTS command,
        so it runs in the default executor instead of on the event loop.
        """
        if not self._voice_resolved and self.available:
            loop = asyncio.get_running_loop()
            voices = await loop.run_in_executor(None, self.backend.voices)
            self._voice = select_voice(voices, self.voice_preferences)
            self._voice_resolved = True
        return self._voice

    def add_listener(self, on_started: SpeechListener | None = None, on_finished: SpeechListener | None = None) -> None:
        self._listeners.append((on_started, on_finished))

    def is_current(self, utterance_id: int) -> bool:
        return utterance_id == self._utterance_id

    async def start(self) -> None:
        self._running = True
        if self.available:
            voice = await self.resolve_voice()
            logger.info(f"Speech output ready (voice: {voice or 'platform default'})")
        else:
            logger.warning("Speech synthesis unavailable; responses will be text only.")

    async def stop(self) -> None:
        self._running = False
        await self._interrupt()

    async def speak(self, text: str) -> int:
        """
        Cancel anything playing, then start `text`. Returns the utterance id.
        """
        await self._interrupt()
        self._utterance_id += 1
        utterance_id = self._utterance_id

        if not self.available:
            logger.debug(f'Speech unavailable, skipping: "{text}"')
            await self._notify(utterance_id, finished=True)
            return utterance_id

        logger.info(f'Matrix says: "{text}"')
        self._idle.clear()
        self._task = asyncio.create_task(self._play(utterance_id, text))
        await self._notify(utterance_id, finished=False)
        return utterance_id

    async def cancel(self) -> None:
        """Stop playback; the cancelled utterance still signals `finished`."""
        if not self.is_speaking:
            return
        utterance_id = self._utterance_id
        await self._interrupt()
        await self._notify(utterance_id, finished=True)

    async def wait_until_idle(self) -> None:
        await self._idle.wait()

    async def _play(self, utterance_id: int, text: str) -> None:
        try:
            voice = await self.resolve_voice()
            await self.backend.say(text, voice, self.rate, self.pitch)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Speech playback failed: {e}")

        # Detach before notifying so a listener may call speak() again
        if self._task is asyncio.current_task():
            self._task = None
            self._idle.set()
        await self._notify(utterance_id, finished=True)

    async def _interrupt(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            try:
                await self.backend.cancel_all()
            except Exception as e:
                logger.error(f"Failed to cancel speech: {e}")
        self._idle.set()

    async def _notify(self, utterance_id: int, finished: bool) -> None:
        for on_started, on_finished in list(self._listeners):
            callback = on_finished if finished else on_started
            if callback is None:
                continue
            try:
                result = callback(utterance_id)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Speech listener failed: {e}", exc_info=True)
