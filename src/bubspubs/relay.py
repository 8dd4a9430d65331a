"""
Opaque forwarding of peer-negotiation messages.

The relay never looks inside a payload: offers, answers and ICE candidates
belong to the browsers' negotiation protocol, and the coordinator only
needs to get them from one identity to another. Delivery is best-effort.
"""

import logging

from bubspubs.connections import ConnectionRegistry
from bubspubs.protocol import SignalKind, signal

logger = logging.getLogger(__name__)


class SignalingRelay:
    """Routes addressed handshake messages between connection identities."""

    def __init__(self, connections: ConnectionRegistry) -> None:
        self._connections = connections

    async def relay(self, kind: SignalKind, sender: str, recipient: str, payload) -> bool:
        """
        Forward one handshake message.

        Args:
            kind: OFFER, ANSWER or ICE_CANDIDATE
            sender: Identity of the transport session the message came in on
            recipient: Client-supplied target identity
            payload: Opaque blob, forwarded unchanged

        Returns:
            True if the message was queued for the recipient, False if it
            was dropped. The sender is never told either way.
        """
        conn = await self._connections.get(recipient)
        if conn is None:
            logger.debug(
                "Dropping %s from %s: recipient %s not connected", kind.value, sender, recipient
            )
            return False

        conn.send(signal(kind, sender, payload))
        logger.debug("Relayed %s %s -> %s", kind.value, sender, recipient)
        return True
