"""
Session lifecycle controller.

Wires the connection registry, room directory, playback store and relay
together and owns the per-connection state machine:

    CONNECTED ──join──▶ JOINED ──disconnect──▶ TERMINATED
        └──────────────disconnect──────────────────┘

    - connect: register, greet the client with its identity
    - join: leave any previous room, join the new one, tell the other
      members, then seed the joiner with the room's playback state
    - relay: forward an opaque handshake message to one identity
    - playback update: store the new state, tell every other member
    - disconnect: leave the room, tell the remaining members (exactly once)

Everything that touches one room runs under that room's lock, so a
membership change and the messages it triggers are never interleaved
with another change to the same room. Sends only enqueue on the target's
bounded outbox and never wait on the network.

Inbound frames reach the controller through dispatch(), an explicit table
from event name to handler. Handlers ignore malformed requests silently.
"""

import logging
import math
from collections import Counter
from collections.abc import Awaitable, Callable, Iterable

from bubspubs import protocol
from bubspubs.connections import ConnectionRegistry
from bubspubs.outbox import Outbox
from bubspubs.playback import PlaybackKind, PlaybackState, PlaybackStore
from bubspubs.protocol import SignalKind
from bubspubs.relay import SignalingRelay
from bubspubs.rooms import RoomDirectory

logger = logging.getLogger(__name__)

Handler = Callable[[str, dict], Awaitable[None]]


def _room_id(message: dict) -> str | None:
    room_id = message.get("roomId")
    if isinstance(room_id, str) and room_id:
        return room_id
    return None


def _position(value) -> float | None:
    # bool is an int subclass but never a valid position
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value) or value < 0:
        return None
    return float(value)


class SessionController:
    """Orchestrates connect / join / relay / playback / disconnect events."""

    def __init__(
        self,
        connections: ConnectionRegistry | None = None,
        rooms: RoomDirectory | None = None,
        playback: PlaybackStore | None = None,
        relay: SignalingRelay | None = None,
    ) -> None:
        self.connections = connections if connections is not None else ConnectionRegistry()
        self.rooms = rooms if rooms is not None else RoomDirectory()
        self.playback = playback if playback is not None else PlaybackStore(self.rooms)
        self.relay = relay if relay is not None else SignalingRelay(self.connections)
        self.counters: Counter[str] = Counter()
        self._dropped_by_closed = 0

        self._handlers: dict[str, Handler] = {
            protocol.JOIN_ROOM: self._on_join_room,
            protocol.SIGNAL_OFFER: self._on_signal,
            protocol.SIGNAL_ANSWER: self._on_signal,
            protocol.SIGNAL_ICE: self._on_signal,
            protocol.PLAYBACK_UPDATE: self._on_playback_update,
        }

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    async def connect(self, outbox: Outbox) -> str:
        """Register a new transport session and greet it with its identity."""
        identity = await self.connections.register(outbox)
        outbox.put_nowait(protocol.connected(identity))
        logger.info("Client connected: %s (%d online)", identity, len(self.connections))
        return identity

    async def join(self, identity: str, room_id: str) -> bool:
        """
        Move a connection into a room.

        Returns:
            True if the connection joined, False if the request was ignored
            (unknown identity, empty room id, or already in that room)
        """
        if not room_id or await self.connections.get(identity) is None:
            return False

        previous = self.rooms.room_of(identity)
        if previous == room_id:
            return False
        if previous is not None:
            await self._leave_room(identity, previous)

        async with self.rooms.locked(room_id):
            # The connection may have dropped while we waited for the lock.
            if await self.connections.get(identity) is None:
                return False
            self.rooms.join(room_id, identity)
            others = self.rooms.members(room_id, exclude=identity)
            await self._send_all(others, protocol.peer_joined(identity))

            state = self.playback.get(room_id)
            if state is not None:
                await self._send(identity, state.as_seed())

        logger.info("%s joined room %s (%d other member(s))", identity, room_id, len(others))
        return True

    async def relay_signal(self, kind: SignalKind, sender: str, recipient: str, payload) -> bool:
        """Forward a handshake message; the sender identity comes from the transport."""
        delivered = await self.relay.relay(kind, sender, recipient, payload)
        self.counters["relayed" if delivered else "relay_dropped"] += 1
        return delivered

    async def update_playback(
        self, identity: str, room_id: str, kind: PlaybackKind, position: float
    ) -> PlaybackState:
        """Store a room's new playback state and fan it out to the other members."""
        async with self.rooms.locked(room_id):
            self.playback.update(room_id, kind, position)
            state = self.playback.get(room_id)
            others = self.rooms.members(room_id, exclude=identity)
            await self._send_all(others, state.as_sync())
            if self.rooms.drop_if_empty(room_id):
                logger.debug("Dropped memberless room %s after playback update", room_id)

        self.counters["playback_updates"] += 1
        logger.info(
            "Playback in room %s: %s at %.2fs (from %s)",
            room_id,
            state.kind.value,
            state.position,
            identity,
        )
        return state

    async def disconnect(self, identity: str) -> str | None:
        """
        Tear down a transport session.

        Safe to call more than once; only the first call leaves the room
        and notifies the remaining members.

        Returns:
            The room the connection was removed from, or None
        """
        conn = await self.connections.unregister(identity)
        if conn is None:
            return None
        self._dropped_by_closed += conn.outbox.dropped

        room_id = self.rooms.room_of(identity)
        if room_id is not None:
            await self._leave_room(identity, room_id)

        logger.info("Client disconnected: %s (%d online)", identity, len(self.connections))
        return room_id

    async def dispatch(self, identity: str, message: dict) -> None:
        """Route one inbound frame to its handler; unknown types are ignored."""
        msg_type = message.get("type")
        handler = self._handlers.get(msg_type) if isinstance(msg_type, str) else None
        if handler is None:
            logger.debug("Ignoring message of type %r from %s", msg_type, identity)
            return
        await handler(identity, message)

    def sweep_rooms(self, now: float | None = None) -> list[str]:
        """Drop rooms that have been empty longer than the configured TTL."""
        expired = self.rooms.sweep(now)
        if expired:
            logger.info("Dropped %d empty room(s)", len(expired))
        return expired

    def metrics(self) -> dict:
        return {
            "connections": len(self.connections),
            "rooms": len(self.rooms),
            "members": self.rooms.member_count(),
            "relayed": self.counters["relayed"],
            "relay_dropped": self.counters["relay_dropped"],
            "playback_updates": self.counters["playback_updates"],
            "outbox_dropped": self._dropped_by_closed + self.connections.dropped_messages(),
        }

    # ------------------------------------------------------------------
    # Message handlers
    # ------------------------------------------------------------------

    async def _on_join_room(self, identity: str, message: dict) -> None:
        room_id = _room_id(message)
        if room_id is None:
            logger.debug("Ignoring join-room without roomId from %s", identity)
            return
        await self.join(identity, room_id)

    async def _on_signal(self, identity: str, message: dict) -> None:
        kind = protocol.SIGNAL_KINDS_BY_EVENT[message["type"]]
        recipient = message.get("to")
        if not isinstance(recipient, str) or not recipient or kind.field not in message:
            logger.debug("Ignoring malformed %s from %s", message["type"], identity)
            return
        await self.relay_signal(kind, identity, recipient, message[kind.field])

    async def _on_playback_update(self, identity: str, message: dict) -> None:
        room_id = _room_id(message)
        position = _position(message.get("position"))
        try:
            kind = PlaybackKind(message.get("kind"))
        except ValueError:
            kind = None
        if room_id is None or kind is None or position is None:
            logger.debug("Ignoring malformed playback-update from %s", identity)
            return
        await self.update_playback(identity, room_id, kind, position)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _leave_room(self, identity: str, room_id: str) -> None:
        async with self.rooms.locked(room_id):
            if self.rooms.leave(identity) is None:
                return
            remaining = self.rooms.members(room_id)
            await self._send_all(remaining, protocol.peer_left(identity))
        logger.info("%s left room %s (%d remaining)", identity, room_id, len(remaining))

    async def _send(self, identity: str, message: dict) -> bool:
        conn = await self.connections.get(identity)
        if conn is None:
            return False
        conn.send(message)
        return True

    async def _send_all(self, identities: Iterable[str], message: dict) -> None:
        for identity in identities:
            await self._send(identity, message)
