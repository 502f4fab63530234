"""Greeting lines spoken right after a wake phrase, one list per tone."""

import random
from enum import Enum


class Tone(str, Enum):
    PROFESSIONAL = "professional"
    WARM = "warm"
    FLIRTY = "flirty"


GREETINGS: dict[Tone, tuple[str, ...]] = {
    Tone.PROFESSIONAL: (
        "I'm here. What do you need?",
        "Matrix online. How can I assist?",
        "Ready. What's your query?",
        "At your service. What can I help with?",
    ),
    Tone.WARM: (
        "Hey there! What can I do for you?",
        "I'm here! How can I help?",
        "Ready when you are. What's up?",
        "Right here! What do you need?",
    ),
    Tone.FLIRTY: (
        "I'm here, babe. What do you need?",
        "You rang? I'm all yours.",
        "Right here for you. What's on your mind?",
        "Always here when you need me. What's up?",
    ),
}


def pick_greeting(tone: Tone | str, rng: random.Random | None = None) -> str:
    """Pick a greeting uniformly at random. Raises ValueError for an unknown tone."""
    lines = GREETINGS[Tone(tone)]
    return (rng or random).choice(lines)
