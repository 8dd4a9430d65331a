"""
Bounded per-connection outbound queues.

Every live connection owns one Outbox. Handlers enqueue messages with
put_nowait() and never wait on the network; a writer task per connection
(see pump()) drains the queue to the socket. When a peer stops reading and
its queue fills up, the oldest pending message is dropped so a slow client
can only ever hurt itself.
"""

import asyncio
import json
import logging
import os

from fastapi import WebSocket

OUTBOX_MAXSIZE = int(os.getenv("OUTBOX_MAXSIZE", "256"))

logger = logging.getLogger(__name__)


class Outbox(asyncio.Queue):
    """asyncio.Queue that drops its oldest item instead of raising QueueFull."""

    def __init__(self, maxsize: int = OUTBOX_MAXSIZE) -> None:
        if maxsize <= 0:
            raise ValueError("Outbox requires a positive maxsize")
        super().__init__(maxsize)
        self.dropped = 0

    def put_nowait(self, item: dict) -> None:
        if self.full():
            self.get_nowait()
            self.dropped += 1
            if self.dropped == 1 or self.dropped % 100 == 0:
                logger.warning("Outbox full, dropped %d message(s) so far", self.dropped)
        super().put_nowait(item)


async def pump(outbox: Outbox, websocket: WebSocket) -> None:
    """Drain an outbox to its WebSocket until cancelled or the socket fails."""
    while True:
        message = await outbox.get()
        try:
            await websocket.send_text(json.dumps(message))
        except Exception as e:
            # The receive loop notices the closed socket and runs the disconnect.
            logger.debug("Writer stopped: %s", e)
            return
