"""
Command Dispatcher — one finalized command in, one spoken reply out.

Every path ends in a response with non-empty text and a log entry:

  success  → service text (or FALLBACK_TEXT when it sent none), logged success
  failure  → APOLOGY_TEXT, logged failure with the error detail

`dispatch()` never raises (cancellation aside), so the conversation can
always return to wake listening afterwards.
"""

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, ConfigDict, Field

from matrixvoice.api.interaction_log import InteractionLogger
from matrixvoice.api.reasoning import CardType, ReasoningClient, SessionContext
from matrixvoice.utils.logger import setup_logger

logger = setup_logger(__name__)

FALLBACK_TEXT = "I couldn't process that request."
APOLOGY_TEXT = "Sorry, I had trouble processing that. Please try again."


class MatrixResponse(BaseModel):
    """Structured response handed to the host UI."""

    model_config = ConfigDict(populate_by_name=True)

    text: str = Field(min_length=1)
    intent: str | None = None
    data: Any = None
    card_type: CardType | None = Field(default=None, alias="cardType")


@dataclass
class DispatchResult:
    command: str
    response: MatrixResponse
    ok: bool
    error: str | None = None


SpeakSink = Callable[[str], Awaitable[Any]]
ResponseCallback = Callable[[MatrixResponse], Any]


class CommandDispatcher:
    """
    Sends commands to the reasoning service.

    `speak` and `on_response` are optional sinks. The conversation
    controller leaves them unset and performs both steps as part of its
    own transition so phase changes stay ordered.
    """

    def __init__(
        self,
        client: ReasoningClient,
        interaction_log: InteractionLogger,
        context: SessionContext | None = None,
        speak: SpeakSink | None = None,
        on_response: ResponseCallback | None = None,
    ):
        self.client = client
        self.interaction_log = interaction_log
        self.context = context or SessionContext()
        self.speak = speak
        self.on_response = on_response

        self.is_processing = False
        self.last_response = ""

    async def dispatch(self, command: str) -> DispatchResult | None:
        if not command or not command.strip():
            return None
        command = command.strip()

        self.is_processing = True
        self.interaction_log.mark_dispatch_start()
        logger.info(f"Command received: {command}")

        try:
            reply = await self.client.invoke(command, self.context)
        except asyncio.CancelledError:
            self.is_processing = False
            raise
        except Exception as e:
            self.is_processing = False
            detail = str(e) or type(e).__name__
            logger.error(f"Matrix voice error: {detail}")
            result = DispatchResult(command, MatrixResponse(text=APOLOGY_TEXT), ok=False, error=detail)
            await self._speak(APOLOGY_TEXT)
            await self.interaction_log.log("error", {}, command, detail, False)
            return result

        response = MatrixResponse(
            text=reply.spoken_text or FALLBACK_TEXT,
            intent=reply.intent,
            data=reply.data,
            card_type=reply.card_type,
        )
        self.is_processing = False
        self.last_response = response.text

        await self._speak(response.text)
        await self._notify(response)
        await self.interaction_log.log(
            reply.intent or "unknown",
            reply.entities or {},
            command,
            response.text,
            True,
        )
        return DispatchResult(command, response, ok=True)

    async def _speak(self, text: str) -> None:
        if self.speak is None:
            return
        try:
            await self.speak(text)
        except Exception as e:
            logger.error(f"Failed to speak response: {e}")

    async def _notify(self, response: MatrixResponse) -> None:
        if self.on_response is None:
            return
        try:
            result = self.on_response(response)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Response callback failed: {e}", exc_info=True)
