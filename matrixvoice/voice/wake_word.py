"""
Wake Phrase Detection - "Hey Matrix"
=====================================

A wake phrase is what moves Matrix from passive listening to taking a
command. Everything else said near the microphone is ignored.

The detector works on transcribed text, cheapest check first:

  1. Exact    : the utterance IS a dictionary phrase
  2. Substring: the utterance CONTAINS a phrase ("um hey matrix")
  3. Fuzzy    : the utterance is CLOSE to a phrase ("hey matrixx")

Exact and substring checks are linear in the utterance length; the fuzzy
check runs an edit distance per phrase, so it only runs when the cheap
checks fail.
"""

from matrixvoice.utils.logger import setup_logger
from matrixvoice.voice.similarity import similarity


logger = setup_logger(__name__)

DEFAULT_WAKE_PHRASES = (
    "hey matrix",
    "hi matrix",
    "hello matrix",
    "matrix",
    "are you here babe",
    "hey are you here babe",
    "matrix you there",
    "hey babe",
    "you there matrix",
    "wake up matrix",
)

# Policy knob, not an algorithmic invariant: 0.7 lets one-letter slips
# through on short phrases while rejecting unrelated sentences.
DEFAULT_FUZZY_THRESHOLD = 0.7


def normalize(text: str) -> str:
    return text.strip().lower()


class WakePhraseMatcher:
    """
    Decides whether an utterance is a wake phrase.

    The dictionary is fixed at construction; nothing mutates it at runtime.
    """

    def __init__(
        self,
        phrases: list[str] | tuple[str, ...] = DEFAULT_WAKE_PHRASES,
        threshold: float = DEFAULT_FUZZY_THRESHOLD,
    ):
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"Fuzzy threshold must be within [0, 1], got {threshold}")

        # dict.fromkeys keeps first-seen order while dropping duplicates
        normalized = [normalize(p) for p in phrases]
        self._phrases: tuple[str, ...] = tuple(dict.fromkeys(p for p in normalized if p))
        if not self._phrases:
            raise ValueError("Wake phrase dictionary must not be empty")

        self.threshold = threshold

    @property
    def phrases(self) -> tuple[str, ...]:
        return self._phrases

    def match(self, text: str) -> str | None:
        """
        Return the dictionary phrase the utterance matched, or None.

        Args:
            text: Finalized transcript from speech recognition
        """
        utterance = normalize(text)
        if not utterance:
            return None

        if utterance in self._phrases:
            return utterance

        # Longest contained phrase wins, so "wake up matrix" beats "matrix"
        contained = max((p for p in self._phrases if p in utterance), key=len, default=None)
        if contained is not None:
            return contained

        for phrase in self._phrases:
            score = similarity(utterance, phrase)
            if score >= self.threshold:
                logger.debug(f"Fuzzy wake match '{utterance}' ~ '{phrase}' ({score:.2f})")
                return phrase

        return None

    def is_wake_phrase(self, text: str) -> bool:
        return self.match(text) is not None
