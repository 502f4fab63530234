"""
Configuration - Everything Matrix Can Be Told
==============================================

Wake phrases, the fuzzy threshold, tone, service URLs and voice
preferences are read from here; the code that uses them never holds
them as literals.

Sources, weakest first:

  defaults  <  ~/.matrix/config.yaml  <  MATRIX_<SECTION>_<KEY> env vars

Example ~/.matrix/config.yaml:
    wake:
      phrases: ["hey matrix", "matrix"]
      fuzzy_threshold: 0.75
    voice:
      tone: warm
    reasoning:
      url: https://<project>.supabase.co
      api_key: <anon key>
"""

import copy
import os
from pathlib import Path
from typing import Any

import yaml

from matrixvoice.utils.logger import setup_logger


logger = setup_logger(__name__)

ENV_PREFIX = "MATRIX_"
DEFAULT_CONFIG_PATH = Path.home() / ".matrix" / "config.yaml"


DEFAULTS = {
    "matrix": {
        "name": "Matrix",
        "version": "0.1.0",
        "log_level": "INFO",
    },
    "wake": {
        "phrases": [
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
        ],
        "fuzzy_threshold": 0.7,
    },
    "voice": {
        "tone": "professional",
        "auto_listen": True,
        "language": "en-US",
    },
    "speech": {
        "voice_preferences": ["female", "samantha", "victoria", "karen"],
        "rate": 1.0,
        "pitch": 1.0,
    },
    "reasoning": {
        "url": "http://localhost:54321",
        "function": "matrix-voice-assistant",
        "api_key": None,
        "timeout": 30.0,
    },
    "interactions": {
        "store": "file",
        "file": str(Path.home() / ".matrix" / "data" / "interactions.log"),
        "summary_limit": 200,
        "url": None,
        "api_key": None,
    },
    "session": {
        "user_id": None,
        "user_agent": "",
    },
    "api": {
        "host": "127.0.0.1",
        "port": 8421,
    },
}




class Config:
    """
    Section/key settings with dotted access.

    LEARNING POINT: Dotted Keys
    -----------------------------
    `config.get("wake.fuzzy_threshold")` walks the nested mapping one
    segment at a time. A missing segment anywhere returns the default,
    so callers never handle KeyError.
    """

    def __init__(self, config_path: str | Path | None = None, environ: dict[str, str] | None = None):
        self._config_path = Path(config_path).expanduser() if config_path else DEFAULT_CONFIG_PATH
        self._data: dict = copy.deepcopy(DEFAULTS)

        self._merge_file()
        self._apply_environment(os.environ if environ is None else environ)

        logger.debug(f"Configuration loaded ({self._config_path})")

    @property
    def path(self) -> Path:
        return self._config_path

    def get(self, key: str, default: Any = None) -> Any:
        node: Any = self._data
        for segment in key.split("."):
            if not isinstance(node, dict) or segment not in node:
                return default
            node = node[segment]
        return node

    def set(self, key: str, value: Any) -> None:
        """Store `value` under a dotted key, replacing non-mapping parents."""
        *parents, leaf = key.split(".")
        node = self._data
        for segment in parents:
            child = node.get(segment)
            if not isinstance(child, dict):
                child = node[segment] = {}
            node = child
        node[leaf] = value

    def as_dict(self) -> dict:
        return copy.deepcopy(self._data)

    def save(self) -> None:
        """Write the effective settings back to the YAML file."""
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._config_path, "w") as f:
            yaml.safe_dump(self._data, f, default_flow_style=False, sort_keys=False)
        logger.info(f"Configuration saved to {self._config_path}")

    def _merge_file(self) -> None:
        if not self._config_path.is_file():
            return

        with open(self._config_path) as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            logger.warning(f"Ignoring config file without a mapping at top level: {self._config_path}")
            return
        _merge_into(self._data, loaded)

    def _apply_environment(self, environ: dict[str, str]) -> None:
        """
        MATRIX_<SECTION>_<KEY>: the first word names the section, the rest
        is the key.

            MATRIX_WAKE_FUZZY_THRESHOLD=0.8   →  wake.fuzzy_threshold = 0.8
            MATRIX_WAKE_PHRASES=hey neo,neo   →  wake.phrases = ["hey neo", "neo"]
        """
        for name, raw in environ.items():
            if not name.startswith(ENV_PREFIX):
                continue
            section, _, key = name[len(ENV_PREFIX):].lower().partition("_")
            if not section or not key:
                continue
            dotted = f"{section}.{key}"
            self.set(dotted, coerce(raw, self.get(dotted)))


def coerce(raw: str, current: Any = None) -> Any:
    """
    Turn an environment string into a typed value.

    Lists stay lists (comma separated); otherwise booleans, ints and
    floats are recognized and anything else stays a string.
    """
    if isinstance(current, list):
        return [item.strip() for item in raw.split(",") if item.strip()]

    lowered = raw.strip().lower()
    if lowered in ("true", "yes", "on"):
        return True
    if lowered in ("false", "no", "off"):
        return False
    for number in (int, float):
        try:
            return number(raw)
        except ValueError:
            continue
    return raw


def _merge_into(base: dict, override: dict) -> None:
    """Recursive merge: nested sections keep keys the override does not name."""
    for key, value in override.items():
        existing = base.get(key)
        if isinstance(existing, dict) and isinstance(value, dict):
            _merge_into(existing, value)
        else:
            base[key] = value


_config: Config | None = None


def get_config() -> Config:
    """Return the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = Config()
    return _config
