"""
Tests for the layered Configuration Manager
==============================================
"""

import pytest
import yaml

from matrixvoice.io.config import Config


@pytest.fixture
def config_path(tmp_path):
    return tmp_path / "config.yaml"


def test_defaults_without_file_or_env(config_path):
    config = Config(config_path, environ={})

    assert config.get("wake.fuzzy_threshold") == 0.7
    assert "hey matrix" in config.get("wake.phrases")
    assert config.get("voice.tone") == "professional"
    assert config.get("voice.auto_listen") is True
    assert config.get("reasoning.function") == "matrix-voice-assistant"
    assert config.get("interactions.summary_limit") == 200


def test_missing_key_returns_default(config_path):
    config = Config(config_path, environ={})

    assert config.get("nope.nothing") is None
    assert config.get("wake.nothing", 42) == 42


def test_file_overrides_are_deep_merged(config_path):
    config_path.write_text(yaml.safe_dump({
        "speech": {"rate": 1.2},
        "wake": {"phrases": ["hey neo"]},
    }))

    config = Config(config_path, environ={})

    assert config.get("speech.rate") == 1.2
    assert config.get("speech.pitch") == 1.0  # preserved
    assert config.get("wake.phrases") == ["hey neo"]
    assert config.get("wake.fuzzy_threshold") == 0.7


def test_non_mapping_file_is_ignored(config_path):
    config_path.write_text("- just\n- a list\n")

    config = Config(config_path, environ={})

    assert config.get("voice.tone") == "professional"


@pytest.mark.parametrize("env, key, expected", [
    ({"MATRIX_WAKE_FUZZY_THRESHOLD": "0.8"}, "wake.fuzzy_threshold", 0.8),
    ({"MATRIX_VOICE_AUTO_LISTEN": "false"}, "voice.auto_listen", False),
    ({"MATRIX_VOICE_TONE": "flirty"}, "voice.tone", "flirty"),
    ({"MATRIX_API_PORT": "9000"}, "api.port", 9000),
    ({"MATRIX_WAKE_PHRASES": "hey neo, neo"}, "wake.phrases", ["hey neo", "neo"]),
    ({"MATRIX_REASONING_URL": "https://x.supabase.co"}, "reasoning.url", "https://x.supabase.co"),
])
def test_environment_overrides(config_path, env, key, expected):
    config = Config(config_path, environ=env)
    assert config.get(key) == expected


def test_environment_beats_file(config_path):
    config_path.write_text(yaml.safe_dump({"voice": {"tone": "warm"}}))

    config = Config(config_path, environ={"MATRIX_VOICE_TONE": "flirty"})

    assert config.get("voice.tone") == "flirty"


def test_unrelated_environment_is_ignored(config_path):
    config = Config(config_path, environ={"HOME": "/tmp", "MATRIX_": "x", "MATRIXFOO": "1"})
    assert config.get("voice.tone") == "professional"


def test_set_creates_nested_keys(config_path):
    config = Config(config_path, environ={})

    config.set("new.nested.key", 42)

    assert config.get("new.nested.key") == 42


def test_save_round_trips(config_path):
    config = Config(config_path, environ={})
    config.set("voice.tone", "warm")
    config.save()

    reloaded = Config(config_path, environ={})

    assert reloaded.get("voice.tone") == "warm"
