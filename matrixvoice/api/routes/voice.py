"""
Voice API — session controls for the host UI.

Every call returns the conversation snapshot after the action, so a
button can update from the response without waiting for the WebSocket.
"""

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

router = APIRouter(tags=["voice"])


class TextRequest(BaseModel):
    text: str = Field(min_length=1, max_length=2000)

    @field_validator("text")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("text must not be blank")
        return value


def _conversation():
    from matrixvoice.api.server import engine

    if engine is None or engine.conversation is None:
        raise HTTPException(status_code=503, detail="Engine not started")
    return engine.conversation


@router.get("/state")
async def get_state():
    """Current phase and flags of the voice session."""
    return _conversation().snapshot()


@router.post("/start")
async def start_listening():
    conversation = _conversation()
    if not await conversation.start_listening():
        return JSONResponse(status_code=409, content={
            "listening": False,
            "error": "Speech recognition not supported on this device",
            "state": conversation.snapshot(),
        })
    return {"listening": True, "state": conversation.snapshot()}


@router.post("/stop")
async def stop_listening():
    conversation = _conversation()
    await conversation.stop_listening()
    return {"listening": False, "state": conversation.snapshot()}


@router.post("/toggle")
async def toggle_listening():
    conversation = _conversation()
    listening = await conversation.toggle_listening()
    return {"listening": listening, "state": conversation.snapshot()}


@router.post("/command", status_code=202)
async def send_command(req: TextRequest):
    """Dispatch typed text. The reply arrives as a voice.response event."""
    conversation = _conversation()
    if not await conversation.send_command(req.text):
        raise HTTPException(status_code=409, detail="A command is already being processed")
    return {"accepted": True, "state": conversation.snapshot()}


@router.post("/speak")
async def speak(req: TextRequest):
    conversation = _conversation()
    await conversation.speak(req.text)
    return {"state": conversation.snapshot()}
