"""Membership gate in front of every conversation-scoped operation."""
import logging
from typing import Optional

from marketchat.conversations.schemas import Conversation
from marketchat.conversations.service import ConversationStore
from marketchat.errors import NotFoundError

logger = logging.getLogger(__name__)


class ConversationDirectory:
    """Resolves a conversation and confirms the acting user participates in it.

    A missing conversation and a conversation the user is not part of look
    the same to the caller, so membership of other conversations is not
    disclosed.
    """

    def __init__(self, store: ConversationStore) -> None:
        self._store = store

    def find_participant(self, conversation_id: str, user_id: str) -> Optional[Conversation]:
        """Return the conversation if ``user_id`` is a participant, else None."""
        if not conversation_id or not user_id:
            return None
        return self._store.find_conversation_for_participant(conversation_id, user_id)

    def require_participant(self, conversation_id: str, user_id: str) -> Conversation:
        """Return the conversation or raise.

        Raises:
            NotFoundError: If the conversation does not exist or ``user_id``
                is not a participant.
        """
        conversation = self.find_participant(conversation_id, user_id)
        if conversation is None:
            logger.info(
                f"[Directory] User {user_id} is not a participant of conversation {conversation_id}"
            )
            raise NotFoundError("Conversation not found")
        return conversation
