"""
Reasoning client — sends a finalized command to the hosted
`matrix-voice-assistant` function and validates its reply.

One attempt per command. A command can have side effects on the
service (stock adjustments, orders), so failures are reported, never
retried here.
"""

from dataclasses import dataclass
from typing import Any, Literal

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from matrixvoice.utils.logger import setup_logger

logger = setup_logger(__name__)

DEFAULT_FUNCTION = "matrix-voice-assistant"

CardType = Literal["inventory", "document", "text"]
CARD_TYPES = ("inventory", "document", "text")


class ReasoningServiceError(Exception):
    """The reasoning service could not produce a usable reply."""


@dataclass
class SessionContext:
    user_id: str | None = None
    tone: str = "professional"

    def to_payload(self) -> dict[str, Any]:
        return {"userId": self.user_id, "toneMode": self.tone}


class ReasoningReply(BaseModel):
    """What the service sends back. Unknown fields are ignored."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    response: str | None = None
    text: str | None = None
    intent: str | None = None
    entities: dict[str, Any] | None = None
    data: Any = None
    card_type: CardType | None = Field(default=None, alias="cardType")

    @field_validator("card_type", mode="before")
    @classmethod
    def _unknown_card_type(cls, value: Any) -> Any:
        if value is not None and value not in CARD_TYPES:
            logger.warning(f"Ignoring unknown card type: {value!r}")
            return None
        return value

    @property
    def spoken_text(self) -> str:
        return (self.response or self.text or "").strip()


class ReasoningClient:
    """Thin async wrapper over the hosted function endpoint."""

    def __init__(
        self,
        base_url: str,
        function: str = DEFAULT_FUNCTION,
        api_key: str | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = f"{base_url.rstrip('/')}/functions/v1/{function}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"
            self._headers["apikey"] = api_key

    async def invoke(self, command: str, context: SessionContext) -> ReasoningReply:
        """
        POST {command, userId, toneMode} and return the validated reply.

        Raises:
            ReasoningServiceError: transport failure, timeout, non-2xx status,
                invalid JSON, an `error` field in the body, or a reply that
                does not match the expected shape.
        """
        payload = {"command": command, **context.to_payload()}
        try:
            resp = await self._client.post(self.url, json=payload, headers=self._headers)
            resp.raise_for_status()
            body = resp.json()
        except httpx.TimeoutException as e:
            raise ReasoningServiceError("Reasoning service timed out") from e
        except httpx.HTTPStatusError as e:
            raise ReasoningServiceError(f"Reasoning service returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ReasoningServiceError(f"Reasoning service unreachable: {e}") from e
        except ValueError as e:
            raise ReasoningServiceError("Reasoning service returned invalid JSON") from e

        if not isinstance(body, dict):
            raise ReasoningServiceError(f"Malformed reply: expected an object, got {type(body).__name__}")
        if body.get("error"):
            raise ReasoningServiceError(str(body["error"]))

        try:
            return ReasoningReply.model_validate(body)
        except ValidationError as e:
            raise ReasoningServiceError(f"Malformed reply: {e}") from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
