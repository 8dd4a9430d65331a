"""
WebSocket transport for the signaling channel.

One handle_websocket() call serves one browser tab for its whole life:

    1. Accept the socket, register it, start its writer task
    2. Read JSON frames and hand each one to the controller
    3. Ping the client when it has been idle for KEEPALIVE_SEC
    4. On any exit path, run the disconnect transition exactly once

Threading model:
    - Reads happen in this coroutine; writes happen in the writer task that
      drains the connection's Outbox, so broadcasts from other connections
      never wait on this socket
"""

import asyncio
import contextlib
import json
import logging
import os

from fastapi import WebSocket

from bubspubs import protocol
from bubspubs.outbox import Outbox, pump
from bubspubs.session import SessionController

KEEPALIVE_SEC = float(os.getenv("KEEPALIVE_SEC", "30.0"))

logger = logging.getLogger(__name__)


def parse_frame(text: str) -> dict | None:
    """Decode a text frame; anything but a JSON object yields None."""
    try:
        message = json.loads(text)
    except json.JSONDecodeError:
        return None
    return message if isinstance(message, dict) else None


async def handle_websocket(websocket: WebSocket, controller: SessionController) -> None:
    """Serve one signaling connection until it closes."""
    await websocket.accept()

    outbox = Outbox()
    identity = await controller.connect(outbox)
    writer = asyncio.create_task(pump(outbox, websocket))

    try:
        while True:
            try:
                message = await asyncio.wait_for(websocket.receive(), timeout=KEEPALIVE_SEC)
            except TimeoutError:
                outbox.put_nowait(protocol.ping())
                if writer.done():
                    break
                continue

            if message["type"] == "websocket.disconnect":
                break

            text = message.get("text")
            if text is None:
                # Binary frames carry nothing in this protocol
                continue

            data = parse_frame(text)
            if data is None:
                logger.debug("Ignoring non-JSON frame from %s", identity)
                continue

            try:
                await controller.dispatch(identity, data)
            except Exception:
                logger.exception("Error handling %r from %s", data.get("type"), identity)

    except Exception as e:
        logger.warning("Signaling websocket error for %s: %s", identity, e)
    finally:
        await controller.disconnect(identity)
        writer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await writer
