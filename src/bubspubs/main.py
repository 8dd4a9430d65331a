"""
FastAPI application for the Bubspubs signaling coordinator.

Browsers in the same room use this server to find each other, swap the
offers / answers / ICE candidates needed for direct peer-to-peer media,
and keep a shared video's play / pause / position in sync.

Endpoints:
    GET  /                 - Liveness banner
    GET  /health           - Health check
    GET  /metrics          - Connection, room and relay counters
    GET  /rooms/{room_id}  - Member count and playback state of one room
    WS   /ws               - Signaling channel (see bubspubs.protocol)

Startup:
    When EMPTY_ROOM_TTL_SEC is positive, a background task sweeps expired
    empty rooms every ROOM_SWEEP_INTERVAL_SEC.
"""

import asyncio
import contextlib
import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from fastapi import APIRouter, FastAPI, HTTPException, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from bubspubs import __version__
from bubspubs.session import SessionController
from bubspubs.signaling import handle_websocket

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
ROOM_SWEEP_INTERVAL_SEC = float(os.getenv("ROOM_SWEEP_INTERVAL_SEC", "60.0"))
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

router = APIRouter()


async def sweep_empty_rooms(controller: SessionController, interval: float) -> None:
    """Background task that drops rooms empty for longer than the TTL."""
    while True:
        await asyncio.sleep(interval)
        try:
            controller.sweep_rooms()
        except Exception:
            logger.exception("Room sweep failed")


def create_app(controller: SessionController | None = None) -> FastAPI:
    """Build the application around one controller (a fresh one by default)."""
    controller = controller if controller is not None else SessionController()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper = None
        ttl = controller.rooms.empty_room_ttl
        if ttl is not None and ttl > 0:
            sweeper = asyncio.create_task(sweep_empty_rooms(controller, ROOM_SWEEP_INTERVAL_SEC))
            logger.info("Sweeping rooms empty for %.0fs every %.0fs", ttl, ROOM_SWEEP_INTERVAL_SEC)
        yield
        if sweeper is not None:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper

    app = FastAPI(
        title="Bubspubs",
        description="Signaling and playback sync for shared watch rooms",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.controller = controller
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_methods=["GET"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


@router.get("/", response_class=PlainTextResponse)
async def root():
    return "Bubspubs signaling server is running"


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/metrics")
async def metrics(request: Request):
    return request.app.state.controller.metrics()


@router.get("/rooms/{room_id}")
async def room_details(room_id: str, request: Request):
    controller: SessionController = request.app.state.controller
    room = controller.rooms.get(room_id)
    if room is None:
        raise HTTPException(status_code=404, detail="Room not found")

    state = room.playback
    return {
        "room_id": room_id,
        "member_count": len(room.members),
        "playback": (
            {"kind": state.kind.value, "position": state.position, "observedAt": state.observed_at}
            if state is not None
            else None
        ),
    }


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await handle_websocket(websocket, websocket.app.state.controller)


app = create_app()


def run():
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "4000"))
    logger.info("Starting Bubspubs signaling server on %s:%d", host, port)
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run()
