"""
Matrix API Server — FastAPI application
=========================================
REST controls for the voice session plus a WebSocket that streams
engine events to the host UI and carries browser speech recognition
results back into the engine.
"""

import secrets
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from matrixvoice import __version__
from matrixvoice.api.routes import status, voice
from matrixvoice.api.websocket_handler import install_event_bridge
from matrixvoice.api.websocket_handler import router as ws_router
from matrixvoice.core.engine import MatrixEngine
from matrixvoice.io.config import get_config
from matrixvoice.utils.logger import setup_logger

logger = setup_logger(__name__)

PORT = int(get_config().get("api.port", 8421))

# Shared engine instance, set during lifespan
engine: MatrixEngine | None = None

# Session token for WebSocket auth, regenerated on each startup
session_token: str = ""


def engine_factory() -> MatrixEngine:
    return MatrixEngine.from_config(get_config())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the engine on startup, shut it down on exit."""
    global engine, session_token
    session_token = secrets.token_hex(32)
    logger.info("Session token generated for WebSocket auth")

    engine = engine_factory()
    install_event_bridge(engine.event_bus)
    await engine.start()

    yield

    await engine.shutdown()
    engine = None


def get_engine() -> MatrixEngine:
    """Get the running engine instance."""
    if engine is None:
        raise RuntimeError("Engine not started")
    return engine


# ─── Create App ────────────────────────────────────────────

app = FastAPI(title="Matrix Voice API", version=__version__, lifespan=lifespan)

# CORS: localhost only
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        f"http://localhost:{PORT}",
        f"http://127.0.0.1:{PORT}",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(status.router, prefix="/api")
app.include_router(voice.router, prefix="/api/voice")
app.include_router(ws_router)


@app.get("/api/auth/token")
async def get_auth_token(request: Request):
    """Return the session token for WebSocket auth. Localhost only."""
    host = request.client.host if request.client else ""
    if host not in ("127.0.0.1", "::1", "localhost", "testclient"):
        return JSONResponse(status_code=403, content={"detail": "Forbidden"})
    return {"token": session_token}
