"""
WebSocket bridge — the host UI's live connection to Matrix.

Outbound: every `system.*`, `voice.*` and `recognition.*` bus event is
forwarded to all authenticated clients as {"type": ..., "data": ...}.

Inbound: a client speaks first with
    {"type": "auth", "token": "...", "recognition": true}

`recognition` (default true) says the client runs the Web Speech API.
Such a client follows `recognition.start` / `recognition.stop` and
reports back:
    {"type": "transcript", "text": "...", "final": false}
    {"type": "recognition_error", "code": "no-speech"}
    {"type": "recognition_end"}

Every client may send {"type": "command", "text": "..."} and
{"type": "ping"}.
"""

import asyncio
import json

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from matrixvoice.utils.logger import setup_logger

logger = setup_logger(__name__)

router = APIRouter()

BRIDGED_TOPICS = ("system.*", "voice.*", "recognition.*")

AUTH_TIMEOUT = 5  # seconds

# Authenticated sockets currently receiving events
_clients: set[WebSocket] = set()


def _dumps(message_type: str, data) -> str:
    return json.dumps({"type": message_type, "data": data}, default=str)


async def broadcast(event_type: str, data: dict):
    """Send one event to every client; sockets that fail are dropped."""
    message = _dumps(event_type, data)
    dead = set()
    for ws in list(_clients):
        try:
            await ws.send_text(message)
        except Exception:
            dead.add(ws)
    _clients.difference_update(dead)


async def _forward(data: dict):
    # Underscore keys are bus bookkeeping, not payload
    payload = {k: v for k, v in data.items() if not k.startswith("_")}
    await broadcast(data["_event_type"], payload)


def install_event_bridge(event_bus):
    """Forward bridged topics from `event_bus` to WebSocket clients."""
    for topic in BRIDGED_TOPICS:
        event_bus.subscribe(topic, _forward)
    logger.info(f"WebSocket event bridge installed ({', '.join(BRIDGED_TOPICS)})")


async def _read_auth(ws: WebSocket) -> dict | None:
    """The first message must be a valid auth message; returns it or None."""
    from matrixvoice.api.server import session_token

    try:
        msg = json.loads(await asyncio.wait_for(ws.receive_text(), timeout=AUTH_TIMEOUT))
    except asyncio.TimeoutError:
        logger.warning("WebSocket auth failed: timeout")
        return None
    except (json.JSONDecodeError, WebSocketDisconnect) as e:
        logger.warning(f"WebSocket auth failed: {e}")
        return None

    if not isinstance(msg, dict) or msg.get("type") != "auth" or msg.get("token") != session_token:
        logger.warning("WebSocket auth failed: invalid token")
        return None
    return msg


@router.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    from matrixvoice.api.server import engine

    await ws.accept()

    auth = await _read_auth(ws)
    if auth is None:
        await ws.send_text(_dumps("error", {
            "message": "Authentication required. Send {type: 'auth', token: '...'} first.",
        }))
        await ws.close(code=4001, reason="Authentication failed")
        return

    recognition = None
    if engine is not None and auth.get("recognition", True):
        recognition = engine.recognition
        recognition.attach_client()

    _clients.add(ws)
    logger.info(f"WebSocket client authenticated ({len(_clients)} connected)")

    try:
        await ws.send_text(_dumps("connected", {
            "message": "Connected to Matrix",
            "clients": len(_clients),
            "state": engine.conversation.snapshot() if engine is not None else None,
        }))

        while True:
            raw = await ws.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                await ws.send_text(_dumps("error", {"message": "Invalid JSON"}))
                continue
            if isinstance(msg, dict):
                await _handle_client_message(ws, msg)
    except WebSocketDisconnect:
        pass
    finally:
        _clients.discard(ws)
        if recognition is not None:
            recognition.detach_client()
            if not recognition.available and recognition.is_capturing:
                # The last recognizing client left mid-capture
                await recognition.feed_error("audio-capture")
        logger.info(f"WebSocket client disconnected ({len(_clients)} connected)")


async def _handle_client_message(sender: WebSocket, msg: dict):
    from matrixvoice.api.server import engine

    match msg.get("type"):
        case "ping":
            await sender.send_text(_dumps("pong", {"message": "alive"}))
        case _ if engine is None:
            return
        case "transcript":
            await engine.recognition.feed_result(str(msg.get("text", "")), bool(msg.get("final", False)))
        case "recognition_error":
            await engine.recognition.feed_error(str(msg.get("code", "unknown")))
        case "recognition_end":
            await engine.recognition.feed_end()
        case "command":
            await engine.conversation.send_command(str(msg.get("text", "")))
        case other:
            await sender.send_text(_dumps("error", {"message": f"Unknown message type: {other}"}))
