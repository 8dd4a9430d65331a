"""
Room membership directory.

Maps room ids to member identities and each identity back to its room. A
connection belongs to at most one room at a time. Rooms are created
implicitly on first join (or first playback report) and hold the room's
last playback state.

Empty-room policy (EMPTY_ROOM_TTL_SEC):
    - unset or negative: empty rooms are kept forever, so a room that
      empties and refills keeps its sync point
    - 0: a room is dropped as soon as it has no members, including a
      room created by a playback report that nobody has joined
    - > 0: sweep() drops rooms that have been empty at least that long

All mutations are synchronous. Callers serialize work per room with
locked(room_id) so that a membership change and the notifications it
triggers are never interleaved with another change to the same room. A
room's lock lives as long as the room or anyone holding or waiting on it.
"""

import asyncio
import os
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from bubspubs.playback import PlaybackState


def _ttl_from_env() -> float | None:
    raw = os.getenv("EMPTY_ROOM_TTL_SEC", "").strip()
    if not raw:
        return None
    ttl = float(raw)
    return None if ttl < 0 else ttl


EMPTY_ROOM_TTL_SEC = _ttl_from_env()


@dataclass
class Room:
    """A named group of connections sharing signaling and playback context."""

    room_id: str
    members: set[str] = field(default_factory=set)
    playback: "PlaybackState | None" = None
    emptied_at: float | None = None  # None while occupied

    @property
    def is_empty(self) -> bool:
        return not self.members


class RoomDirectory:
    """Directory of rooms and the identity → room lookup."""

    def __init__(
        self,
        empty_room_ttl: float | None = EMPTY_ROOM_TTL_SEC,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.empty_room_ttl = empty_room_ttl
        self._clock = clock
        self._rooms: dict[str, Room] = {}
        self._room_of: dict[str, str] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._rooms

    @asynccontextmanager
    async def locked(self, room_id: str) -> AsyncIterator[None]:
        """Hold the lock that serializes all work on one room.

        Every holder and waiter of a room shares one lock. The lock is
        forgotten once the last of them exits and the room is gone.
        """
        lock = self._locks.get(room_id)
        if lock is None:
            lock = self._locks[room_id] = asyncio.Lock()
        self._lock_users[room_id] = self._lock_users.get(room_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[room_id] -= 1
            if not self._lock_users[room_id]:
                del self._lock_users[room_id]
                if room_id not in self._rooms:
                    self._locks.pop(room_id, None)

    def lock_count(self) -> int:
        return len(self._locks)

    def get(self, room_id: str) -> Room | None:
        return self._rooms.get(room_id)

    def ensure(self, room_id: str) -> Room:
        """Get a room, creating it (empty) if absent."""
        room = self._rooms.get(room_id)
        if room is None:
            room = self._rooms[room_id] = Room(room_id=room_id, emptied_at=self._clock())
        return room

    def room_of(self, identity: str) -> str | None:
        return self._room_of.get(identity)

    def join(self, room_id: str, identity: str) -> bool:
        """
        Add an identity to a room, creating the room if needed.

        Returns:
            True if the identity was added, False if it was already a member

        Raises:
            ValueError: If room_id is empty or the identity is in another room
        """
        if not isinstance(room_id, str) or not room_id:
            raise ValueError("room_id must be a non-empty string")

        current = self._room_of.get(identity)
        if current == room_id:
            return False
        if current is not None:
            raise ValueError(f"{identity} already belongs to room {current!r}")

        room = self.ensure(room_id)
        room.members.add(identity)
        room.emptied_at = None
        self._room_of[identity] = room_id
        return True

    def leave(self, identity: str) -> str | None:
        """Remove an identity from its room. Returns the room id, or None."""
        room_id = self._room_of.pop(identity, None)
        if room_id is None:
            return None

        room = self._rooms.get(room_id)
        if room is not None:
            room.members.discard(identity)
            if room.is_empty:
                room.emptied_at = self._clock()
                self.drop_if_empty(room_id)
        return room_id

    def drop_if_empty(self, room_id: str) -> bool:
        """Apply the zero-TTL policy: drop a room right away if it has no members."""
        room = self._rooms.get(room_id)
        if room is None or not room.is_empty or self.empty_room_ttl != 0:
            return False
        self._discard(room_id)
        return True

    def members(self, room_id: str, exclude: str | None = None) -> frozenset[str]:
        """Snapshot of a room's members, optionally without one identity."""
        room = self._rooms.get(room_id)
        if room is None:
            return frozenset()
        if exclude is None:
            return frozenset(room.members)
        return frozenset(m for m in room.members if m != exclude)

    def member_count(self) -> int:
        return len(self._room_of)

    def sweep(self, now: float | None = None) -> list[str]:
        """Drop rooms that have been empty for at least the configured TTL."""
        if self.empty_room_ttl is None:
            return []
        if now is None:
            now = self._clock()

        expired = [
            room_id
            for room_id, room in self._rooms.items()
            if room.is_empty
            and room.emptied_at is not None
            and now - room.emptied_at >= self.empty_room_ttl
        ]
        for room_id in expired:
            self._discard(room_id)
        return expired

    def _discard(self, room_id: str) -> None:
        self._rooms.pop(room_id, None)
        # a holder or waiter removes the lock itself when it exits
        if room_id not in self._lock_users:
            self._locks.pop(room_id, None)
