"""
Status API — engine uptime, module health and recent events.
"""

import time

from fastapi import APIRouter

router = APIRouter(tags=["status"])

_started_at = time.time()


@router.get("/status")
async def get_status():
    """Return engine status with per-module running flags."""
    from matrixvoice.api.server import engine

    if engine is None:
        return {"running": False, "modules": [], "uptime_seconds": 0}

    return {
        "running": engine.is_running,
        "uptime_seconds": round(time.time() - _started_at, 1),
        "modules": [
            {"name": m.name, "status": "running" if m.is_running else "stopped"}
            for m in engine.modules
        ],
        "recognition_available": engine.recognition.available if engine.recognition is not None else False,
        "conversation": engine.conversation.snapshot() if engine.conversation is not None else None,
        "events_recorded": len(engine.event_bus.get_history()),
    }


@router.get("/events")
async def get_events(limit: int = 50):
    """Most recent engine events, newest last."""
    from matrixvoice.api.server import engine

    if engine is None:
        return {"events": []}
    history = engine.event_bus.get_history()
    return {"events": history[-limit:] if limit > 0 else []}
