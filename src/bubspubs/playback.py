"""Last-known shared playback state per room."""

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from bubspubs.protocol import PLAYBACK_SYNC
from bubspubs.rooms import RoomDirectory


class PlaybackKind(str, Enum):
    PLAY = "PLAY"
    PAUSE = "PAUSE"


@dataclass(frozen=True)
class PlaybackState:
    """
    A room's most recently reported video state.

    Attributes:
        kind: PLAY or PAUSE
        position: Playback position in seconds
        observed_at: Server timestamp (epoch seconds) of the report
    """

    kind: PlaybackKind
    position: float
    observed_at: float

    def as_sync(self) -> dict:
        """Broadcast form sent to the other members on every update."""
        return {"type": PLAYBACK_SYNC, "kind": self.kind.value, "position": self.position}

    def as_seed(self) -> dict:
        """Join-seed form; late joiners also get the report time."""
        message = self.as_sync()
        message["observedAt"] = self.observed_at
        return message


class PlaybackStore:
    """
    Holds the latest playback state of each room.

    No conflict resolution: concurrent reports are last-write-wins by
    arrival order. Members keep playing locally, so divergence heals on
    the next control event.
    """

    def __init__(self, rooms: RoomDirectory, clock: Callable[[], float] = time.time) -> None:
        self._rooms = rooms
        self._clock = clock

    def update(self, room_id: str, kind: PlaybackKind, position: float) -> float:
        """Replace a room's playback state, creating the room if needed.

        A fresh report restarts an empty room's expiry, so the new state
        lives at least one full TTL.

        Returns:
            The server timestamp assigned to the new state
        """
        observed_at = self._clock()
        room = self._rooms.ensure(room_id)
        room.playback = PlaybackState(
            kind=PlaybackKind(kind), position=float(position), observed_at=observed_at
        )
        if room.is_empty:
            room.emptied_at = observed_at
        return observed_at

    def get(self, room_id: str) -> PlaybackState | None:
        room = self._rooms.get(room_id)
        return room.playback if room is not None else None
