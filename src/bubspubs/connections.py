"""
Registry of live client connections.

Each WebSocket session gets an opaque, server-generated identity when it
connects. The identity is the only address peers use to reach each other,
so it lives exactly as long as the transport session and is never reused.

Connection lifecycle:
    1. register(outbox) - Allocate an identity for a new transport session
    2. get(identity) - Resolve an identity to its outbound queue
    3. unregister(identity) - Forget the session (idempotent)

Room membership is not tracked here; see RoomDirectory.
"""

import asyncio
import secrets
import time
from dataclasses import dataclass, field

from bubspubs.outbox import Outbox


@dataclass
class Connection:
    """A live transport session and its outbound queue."""

    identity: str
    outbox: Outbox
    connected_at: float = field(default_factory=time.time)

    def send(self, message: dict) -> None:
        """Enqueue a message without waiting on the network."""
        self.outbox.put_nowait(message)


class ConnectionRegistry:
    """Registry of live connections keyed by identity."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._connections: dict[str, Connection] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def generate_identity(self) -> str:
        """Generate a unique connection identity."""
        return secrets.token_urlsafe(12)  # 96 bits, URL-safe

    async def register(self, outbox: Outbox) -> str:
        """Register a new connection and return its identity."""
        async with self._lock:
            identity = self.generate_identity()
            while identity in self._connections:
                identity = self.generate_identity()
            self._connections[identity] = Connection(identity=identity, outbox=outbox)
            return identity

    async def unregister(self, identity: str) -> Connection | None:
        """Unregister a connection. Returns None if it was already gone."""
        async with self._lock:
            return self._connections.pop(identity, None)

    async def get(self, identity: str) -> Connection | None:
        """Look up a live connection. Returns None if unknown or disconnected."""
        async with self._lock:
            return self._connections.get(identity)

    def dropped_messages(self) -> int:
        """Total messages dropped by full outboxes of live connections."""
        return sum(conn.outbox.dropped for conn in self._connections.values())
