"""Pytest configuration and fixtures."""

import asyncio

import pytest

from bubspubs.outbox import Outbox
from bubspubs.playback import PlaybackStore
from bubspubs.rooms import RoomDirectory
from bubspubs.session import SessionController


class FakeClock:
    """Deterministic clock for timestamp and TTL tests."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def drain(outbox: Outbox) -> list[dict]:
    """Pop every queued message from an outbox."""
    messages = []
    while True:
        try:
            messages.append(outbox.get_nowait())
        except asyncio.QueueEmpty:
            return messages


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def controller(clock):
    """Controller with an injected directory that keeps empty rooms."""
    rooms = RoomDirectory(empty_room_ttl=None, clock=clock)
    return SessionController(rooms=rooms, playback=PlaybackStore(rooms, clock=clock))
