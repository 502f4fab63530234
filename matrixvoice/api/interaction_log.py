"""
Interaction Log — append-only analytics records for Matrix.

One entry per command dispatch and one per recognized wake phrase.
Writing is fire-and-forget: a store failure is reported through the
module logger and never reaches the conversation.

Stores:
  file      — JSON lines in ~/.matrix/data/interactions.log (rotating, 5 MB x 3)
  supabase  — PostgREST inserts into matrix_logs / matrix_wake_phrases
  none      — discard
"""

import asyncio
import logging
import re
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Literal

import httpx
from pydantic import BaseModel, Field

from matrixvoice.core.engine import Module
from matrixvoice.core.event_bus import EventBus
from matrixvoice.utils.logger import setup_logger

logger = setup_logger(__name__)

DEFAULT_LOG_FILE = Path.home() / ".matrix" / "data" / "interactions.log"
MAX_BYTES = 5 * 1024 * 1024  # 5 MB
BACKUP_COUNT = 3

SUMMARY_LIMIT = 200
WAKE_INTENT = "wake"

_MOBILE_RE = re.compile(r"iPhone|iPad|iPod|Android", re.IGNORECASE)

DeviceClass = Literal["mobile", "desktop"]


def classify_device(user_agent: str | None) -> DeviceClass:
    """Map a user-agent hint to the device class used in logs."""
    return "mobile" if user_agent and _MOBILE_RE.search(user_agent) else "desktop"


class InteractionLogEntry(BaseModel):
    user_id: str | None = None
    intent: str
    entities: dict[str, Any] = Field(default_factory=dict)
    raw_transcript: str
    response_summary: str = ""
    response_time_ms: int = 0
    device: DeviceClass = "desktop"
    wake_phrase: str | None = None
    success: bool
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class InteractionStore(ABC):
    """Append-only persistence. Matrix never reads entries back."""

    @abstractmethod
    async def append(self, entry: InteractionLogEntry) -> None:
        ...

    async def aclose(self) -> None:
        pass


class NullInteractionStore(InteractionStore):
    async def append(self, entry: InteractionLogEntry) -> None:
        logger.debug(f"Interaction not persisted (no store): {entry.intent}")


class FileInteractionStore(InteractionStore):
    """JSON lines through a rotating file handler."""

    def __init__(self, path: str | Path = DEFAULT_LOG_FILE, max_bytes: int = MAX_BYTES, backup_count: int = BACKUP_COUNT):
        self.path = Path(path).expanduser()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._log = logging.getLogger(f"matrixvoice.interactions.{self.path}")
        self._log.setLevel(logging.INFO)
        self._log.propagate = False
        if not self._log.handlers:
            handler = RotatingFileHandler(str(self.path), maxBytes=max_bytes, backupCount=backup_count)
            handler.setFormatter(logging.Formatter("%(message)s"))
            self._log.addHandler(handler)

    async def append(self, entry: InteractionLogEntry) -> None:
        self._log.info(entry.model_dump_json())

    async def aclose(self) -> None:
        for handler in list(self._log.handlers):
            handler.close()
            self._log.removeHandler(handler)


class SupabaseInteractionStore(InteractionStore):
    """Inserts rows through Supabase's PostgREST endpoint."""

    LOGS_TABLE = "matrix_logs"
    WAKE_TABLE = "matrix_wake_phrases"

    def __init__(self, base_url: str, api_key: str, client: httpx.AsyncClient | None = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Prefer": "return=minimal",
        }

    async def append(self, entry: InteractionLogEntry) -> None:
        if entry.user_id is None:
            logger.debug("Skipping remote interaction log: no signed-in user")
            return

        if entry.intent == WAKE_INTENT:
            table = self.WAKE_TABLE
            row = {
                "user_id": entry.user_id,
                "phrase_text": entry.raw_transcript,
                "recognized": entry.success,
                "device": entry.device,
            }
        else:
            table = self.LOGS_TABLE
            row = entry.model_dump(mode="json", exclude={"created_at"})

        resp = await self._client.post(f"{self.base_url}/rest/v1/{table}", json=row, headers=self._headers)
        resp.raise_for_status()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def build_store(config) -> InteractionStore:
    """Choose the store named by `interactions.store`."""
    kind = (config.get("interactions.store") or "none").lower()
    if kind == "file":
        return FileInteractionStore(config.get("interactions.file") or DEFAULT_LOG_FILE)
    if kind == "supabase":
        url = config.get("interactions.url")
        api_key = config.get("interactions.api_key")
        if url and api_key:
            return SupabaseInteractionStore(url, api_key)
        logger.warning("Supabase store selected without url/api_key; interactions will not be persisted")
    elif kind != "none":
        logger.warning(f"Unknown interaction store '{kind}'; interactions will not be persisted")
    return NullInteractionStore()


class InteractionLogger(Module):
    """
    Builds interaction entries and hands them to the store.

    `log()` never raises; `log_wake()` does not even wait for the write.
    """

    def __init__(
        self,
        event_bus: EventBus,
        store: InteractionStore | None = None,
        user_id: str | None = None,
        device: DeviceClass | Callable[[], DeviceClass] = "desktop",
        clock: Callable[[], float] = time.monotonic,
        summary_limit: int = SUMMARY_LIMIT,
    ):
        super().__init__("InteractionLogger", event_bus)
        self.store = store or NullInteractionStore()
        self.user_id = user_id
        self._device = device
        self._clock = clock
        self.summary_limit = summary_limit
        self._dispatch_started: float | None = None
        self._pending: set[asyncio.Task] = set()

    @property
    def device(self) -> DeviceClass:
        return self._device() if callable(self._device) else self._device

    async def start(self) -> None:
        self._running = True
        logger.info(f"InteractionLogger started ({type(self.store).__name__})")

    async def stop(self) -> None:
        self._running = False
        await self.drain()
        await self.store.aclose()

    def mark_dispatch_start(self) -> None:
        self._dispatch_started = self._clock()

    def elapsed_ms(self) -> int:
        if self._dispatch_started is None:
            return 0
        return max(0, int((self._clock() - self._dispatch_started) * 1000))

    async def log(
        self,
        intent: str,
        entities: dict | None,
        transcript: str,
        response_summary: str,
        success: bool,
        wake_phrase: str | None = None,
    ) -> None:
        try:
            entry = InteractionLogEntry(
                user_id=self.user_id,
                intent=intent,
                entities=entities or {},
                raw_transcript=transcript,
                response_summary=(response_summary or "")[:self.summary_limit],
                response_time_ms=self.elapsed_ms(),
                device=self.device,
                wake_phrase=wake_phrase,
                success=success,
            )
            await self.store.append(entry)
        except Exception as e:
            logger.error(f"Failed to log interaction: {e}")

    def log_wake(self, transcript: str, phrase: str) -> None:
        """Record a recognized wake phrase in the background."""
        try:
            entry = InteractionLogEntry(
                user_id=self.user_id,
                intent=WAKE_INTENT,
                raw_transcript=transcript,
                device=self.device,
                wake_phrase=phrase,
                success=True,
            )
        except Exception as e:
            logger.error(f"Failed to build wake log entry: {e}")
            return
        task = asyncio.create_task(self._append_quietly(entry))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for background writes to settle."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def _append_quietly(self, entry: InteractionLogEntry) -> None:
        try:
            await self.store.append(entry)
        except Exception as e:
            logger.error(f"Failed to log wake phrase: {e}")
