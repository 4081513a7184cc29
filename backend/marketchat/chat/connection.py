"""Connection handle and per-connection lifecycle state machine.

States:
    CONNECTING -> AUTHENTICATED -> JOINED -> ACTIVE -> DISCONNECTED

CONNECTING moves straight to DISCONNECTED when the handshake is rejected.
Any state moves to DISCONNECTED on transport closure; ``close()`` reports
whether this call performed that move so presence cleanup runs exactly once.
"""
import logging
import uuid
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    """Lifecycle of one WebSocket session.

    Attributes:
        CONNECTING: Handshake received, credential not yet checked.
        AUTHENTICATED: Credential verified, user identity bound.
        JOINED: Registered in the presence registry.
        ACTIVE: Online snapshot delivered; inbound events are processed.
        DISCONNECTED: Terminal.
    """
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    JOINED = "joined"
    ACTIVE = "active"
    DISCONNECTED = "disconnected"


_TRANSITIONS = {
    ConnectionState.CONNECTING: {ConnectionState.AUTHENTICATED, ConnectionState.DISCONNECTED},
    ConnectionState.AUTHENTICATED: {ConnectionState.JOINED, ConnectionState.DISCONNECTED},
    ConnectionState.JOINED: {ConnectionState.ACTIVE, ConnectionState.DISCONNECTED},
    ConnectionState.ACTIVE: {ConnectionState.DISCONNECTED},
    ConnectionState.DISCONNECTED: set(),
}


class Connection:
    """One live transport session for one user.

    Handles are compared by identity, so the same user may hold any number
    of them (one per tab or device).
    """

    def __init__(self, websocket: Any, connection_id: Optional[str] = None) -> None:
        self.websocket = websocket
        self.id = connection_id or uuid.uuid4().hex
        self.user_id: Optional[str] = None
        self.state = ConnectionState.CONNECTING

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r}, user_id={self.user_id!r}, state={self.state.value})"

    @property
    def is_open(self) -> bool:
        return self.state is not ConnectionState.DISCONNECTED

    def transition(self, new_state: ConnectionState) -> None:
        """Move to ``new_state``.

        Raises:
            RuntimeError: If the move is not allowed from the current state.
        """
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Invalid connection transition {self.state.value} -> {new_state.value}"
            )
        logger.debug("[Connection] %s: %s -> %s", self.id, self.state.value, new_state.value)
        self.state = new_state

    def authenticate(self, user_id: str) -> None:
        """Bind the verified identity to this connection."""
        self.user_id = user_id
        self.transition(ConnectionState.AUTHENTICATED)

    def close(self) -> bool:
        """Mark the connection DISCONNECTED.

        Returns:
            True the first time, False if it was already closed.
        """
        if self.state is ConnectionState.DISCONNECTED:
            return False
        self.transition(ConnectionState.DISCONNECTED)
        return True

    async def send(self, event: str, payload: Dict[str, Any]) -> None:
        """Send one server event frame over the socket.

        Raises:
            RuntimeError: If the connection is already closed.
        """
        if not self.is_open:
            raise RuntimeError(f"Connection {self.id} is closed")
        await self.websocket.send_json({"type": event, **payload})
