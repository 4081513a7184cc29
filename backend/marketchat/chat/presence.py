"""Process-wide presence registry: user identity -> live connection handles.

A user is online while at least one handle is registered. The registry
reports the 0->1 and 1->0 edges as ONLINE / OFFLINE transitions, each exactly
once, even when tabs of the same user connect and disconnect concurrently.

Thread Safety:
    Every mutation runs under one ``threading.Lock``. The critical sections
    contain no awaits, so the lock is safe inside a single event loop and
    across the threads used by the test client.
"""
import logging
import threading
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Set

logger = logging.getLogger(__name__)


class PresenceTransition(str, Enum):
    """Presence edge produced by a register/remove call."""
    ONLINE = "online"
    OFFLINE = "offline"


class PresenceRegistry:
    """Encapsulated map of user id to the set of that user's connection handles.

    Callers never see the underlying sets; ``handles_for`` and
    ``list_online`` return snapshots.
    """

    def __init__(self) -> None:
        # user_id -> set of connection handles
        self._connections: Dict[str, Set[Any]] = {}
        # handle -> owning user_id; a handle belongs to exactly one user
        self._owners: Dict[Any, str] = {}
        self._lock = threading.Lock()

    def register_connection(self, user_id: str, handle: Any) -> Optional[PresenceTransition]:
        """Add ``handle`` for ``user_id``.

        Idempotent: registering a handle twice changes nothing.

        Returns:
            PresenceTransition.ONLINE if this was the user's first handle,
            None otherwise.

        Raises:
            ValueError: If the handle is already registered for another user.
        """
        with self._lock:
            owner = self._owners.get(handle)
            if owner is not None and owner != user_id:
                raise ValueError(f"Connection {handle!r} is already registered for user {owner}")
            handles = self._connections.setdefault(user_id, set())
            if handle in handles:
                return None
            handles.add(handle)
            self._owners[handle] = user_id
            went_online = len(handles) == 1
            count = len(handles)

        logger.info(f"[Presence] User {user_id} registered a connection ({count} open)")
        if went_online:
            return PresenceTransition.ONLINE
        return None

    def remove_connection(self, user_id: str, handle: Any) -> Optional[PresenceTransition]:
        """Remove ``handle`` for ``user_id``; safe to call repeatedly.

        Returns:
            PresenceTransition.OFFLINE if this removed the user's last handle,
            None otherwise (including when the handle was already gone).
        """
        with self._lock:
            handles = self._connections.get(user_id)
            if not handles or handle not in handles:
                return None
            handles.remove(handle)
            del self._owners[handle]
            went_offline = not handles
            if went_offline:
                del self._connections[user_id]
            count = len(handles)

        logger.info(f"[Presence] User {user_id} closed a connection ({count} open)")
        if went_offline:
            return PresenceTransition.OFFLINE
        return None

    def list_online(self) -> Set[str]:
        """Identities with at least one live connection."""
        with self._lock:
            return set(self._connections)

    def handles_for(self, user_id: str) -> FrozenSet[Any]:
        """Current handles of a user (empty when offline)."""
        with self._lock:
            return frozenset(self._connections.get(user_id, ()))

    def all_handles(self) -> FrozenSet[Any]:
        """Every live handle of every user."""
        with self._lock:
            return frozenset(h for handles in self._connections.values() for h in handles)

    def is_online(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._connections

    def connection_count(self, user_id: str) -> int:
        with self._lock:
            return len(self._connections.get(user_id, ()))

    def clear(self) -> None:
        """Forget every connection (used in tests)."""
        with self._lock:
            self._connections.clear()
            self._owners.clear()


# Global singleton instance shared by all WebSocket handlers
registry = PresenceRegistry()
