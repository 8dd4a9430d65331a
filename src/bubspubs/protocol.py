"""
Wire protocol for the /ws signaling channel.

Every frame is a JSON object with a "type" field.

Client → Server:
    - {"type": "join-room", "roomId": "movie-night"}
    - {"type": "signal-offer", "to": "<id>", "offer": {...}}
    - {"type": "signal-answer", "to": "<id>", "answer": {...}}
    - {"type": "signal-ice", "to": "<id>", "candidate": {...}}
    - {"type": "playback-update", "roomId": "...", "kind": "PLAY", "position": 12.5}

Server → Client:
    - {"type": "connected", "id": "<id>"}
    - {"type": "peer-joined", "from": "<id>"}
    - {"type": "peer-left", "from": "<id>"}
    - {"type": "signal-offer", "from": "<id>", "offer": {...}} (and answer / ice)
    - {"type": "playback-sync", "kind": "PLAY", "position": 12.5}
    - {"type": "ping"}

Signal payloads are opaque: they are forwarded exactly as received.
"""

from enum import Enum

JOIN_ROOM = "join-room"
SIGNAL_OFFER = "signal-offer"
SIGNAL_ANSWER = "signal-answer"
SIGNAL_ICE = "signal-ice"
PLAYBACK_UPDATE = "playback-update"

CONNECTED = "connected"
PEER_JOINED = "peer-joined"
PEER_LEFT = "peer-left"
PLAYBACK_SYNC = "playback-sync"
PING = "ping"


class SignalKind(str, Enum):
    """Handshake message kinds the relay forwards."""

    OFFER = "OFFER"
    ANSWER = "ANSWER"
    ICE_CANDIDATE = "ICE_CANDIDATE"

    @property
    def event(self) -> str:
        return _SIGNAL_EVENTS[self][0]

    @property
    def field(self) -> str:
        """Name of the payload field carrying the opaque blob."""
        return _SIGNAL_EVENTS[self][1]


_SIGNAL_EVENTS = {
    SignalKind.OFFER: (SIGNAL_OFFER, "offer"),
    SignalKind.ANSWER: (SIGNAL_ANSWER, "answer"),
    SignalKind.ICE_CANDIDATE: (SIGNAL_ICE, "candidate"),
}

SIGNAL_KINDS_BY_EVENT = {event: kind for kind, (event, _field) in _SIGNAL_EVENTS.items()}


def connected(identity: str) -> dict:
    return {"type": CONNECTED, "id": identity}


def peer_joined(identity: str) -> dict:
    return {"type": PEER_JOINED, "from": identity}


def peer_left(identity: str) -> dict:
    return {"type": PEER_LEFT, "from": identity}


def signal(kind: SignalKind, sender: str, payload) -> dict:
    return {"type": kind.event, "from": sender, kind.field: payload}


def ping() -> dict:
    return {"type": PING}
