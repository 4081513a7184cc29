"""Fan-out of server events to live connections.

Targets are re-resolved from the presence registry on every delivery, so a
user open in three tabs receives an event three times and a tab that closed
a moment ago receives nothing.

Performance Notes:
    - Sends to all targets run concurrently with asyncio.gather()
    - A failed send is logged and skipped; the failing connection's own
      disconnect path removes it from the registry
"""
import asyncio
import logging
from typing import Any, Dict, Iterable, Optional

from marketchat.conversations.schemas import Conversation

from .presence import PresenceRegistry, registry

logger = logging.getLogger(__name__)


class BroadcastRouter:
    """Delivers events to users (all their devices) and to conversation participants."""

    def __init__(self, presence: PresenceRegistry) -> None:
        self._presence = presence

    async def deliver_to_user(
        self,
        user_id: str,
        event: str,
        payload: Dict[str, Any],
        exclude: Optional[Any] = None,
    ) -> int:
        """Send an event to every live connection of ``user_id``.

        Args:
            user_id: Recipient identity.
            event: Server event name.
            payload: JSON-serializable event body.
            exclude: Optional handle to skip (e.g. the originating tab).

        Returns:
            Number of connections the event was delivered to.
        """
        targets = [h for h in self._presence.handles_for(user_id) if h is not exclude]
        return await self._deliver(targets, event, payload)

    async def deliver_to_participants(
        self,
        conversation: Conversation,
        exclude_user_id: str,
        event: str,
        payload: Dict[str, Any],
    ) -> int:
        """Send an event to every participant except ``exclude_user_id``."""
        delivered = 0
        for participant_id in conversation.others(exclude_user_id):
            delivered += await self.deliver_to_user(participant_id, event, payload)
        return delivered

    async def broadcast_all(self, event: str, payload: Dict[str, Any]) -> int:
        """Send an event to every live connection (presence changes)."""
        return await self._deliver(self._presence.all_handles(), event, payload)

    async def _deliver(self, targets: Iterable[Any], event: str, payload: Dict[str, Any]) -> int:
        targets = list(targets)
        if not targets:
            return 0
        results = await asyncio.gather(
            *[self._safe_send(handle, event, payload) for handle in targets],
            return_exceptions=True,
        )
        return sum(1 for success in results if success is True)

    async def _safe_send(self, handle: Any, event: str, payload: Dict[str, Any]) -> bool:
        """Send to one connection with error handling.

        Returns:
            True if successful, False if the connection failed.
        """
        try:
            await handle.send(event, payload)
            return True
        except Exception as e:
            logger.debug(f"[Broadcast] Failed to send {event} to {handle!r}: {e}")
            return False


# Global router bound to the global presence registry
broadcaster = BroadcastRouter(registry)
