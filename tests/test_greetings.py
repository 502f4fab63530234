"""Tests for tone-specific greetings."""

import random

import pytest

from matrixvoice.speech.greetings import GREETINGS, Tone, pick_greeting


@pytest.mark.parametrize("tone", list(Tone))
def test_greeting_comes_from_tone_list(tone):
    for seed in range(20):
        assert pick_greeting(tone, random.Random(seed)) in GREETINGS[tone]


def test_tone_accepts_plain_string():
    assert pick_greeting("warm", random.Random(1)) in GREETINGS[Tone.WARM]


def test_every_tone_has_greetings():
    for tone in Tone:
        assert GREETINGS[tone]
        assert all(line.strip() for line in GREETINGS[tone])


def test_unknown_tone_is_rejected():
    with pytest.raises(ValueError):
        pick_greeting("sarcastic")


def test_all_greetings_are_eventually_used():
    rng = random.Random(7)
    seen = {pick_greeting(Tone.PROFESSIONAL, rng) for _ in range(200)}
    assert seen == set(GREETINGS[Tone.PROFESSIONAL])
