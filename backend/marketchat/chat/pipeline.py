"""Message pipeline: the write path behind sendMessage, typing and markRead.

sendMessage:
    1. Reject empty / whitespace-only content (no write)
    2. Confirm membership through the ConversationDirectory
    3. Persist the trimmed message with read=False
    4. Update the conversation summary (lastMessage, lastMessageAt)
    5. Fan out newMessage / messageSent and return the persisted message

Consistency:
    Steps 3 and 4 are separate store calls with no lock spanning them. If
    step 4 fails the message is durable but the summary lags; this is
    logged at ERROR and the send still succeeds. Concurrent sends to one
    conversation each insert their own row; the summary is last write wins.

Every validation runs before any write and any broadcast, so a rejected
command never causes partial fan-out.
"""
import logging
from typing import Any, Optional

from marketchat.config import get_config
from marketchat.conversations.schemas import Message
from marketchat.conversations.service import ConversationStore
from marketchat.errors import PersistenceError, ValidationError

from .broadcast import BroadcastRouter, broadcaster
from .directory import ConversationDirectory
from .events import ServerEvent, message_event

logger = logging.getLogger(__name__)


class MessagePipeline:
    """Validates, persists and fans out conversation events."""

    def __init__(
        self,
        store: ConversationStore,
        router: BroadcastRouter,
        max_content_length: int = 0,
    ) -> None:
        self._store = store
        self._router = router
        self._directory = ConversationDirectory(store)
        self._max_content_length = max_content_length

    @property
    def directory(self) -> ConversationDirectory:
        return self._directory

    async def send_message(
        self,
        conversation_id: str,
        sender_id: str,
        content: Any,
        origin: Optional[Any] = None,
    ) -> Message:
        """Persist a chat message and deliver it.

        Args:
            conversation_id: Target conversation.
            sender_id: Verified identity of the sender.
            content: Raw text from the client.
            origin: The sender's connection that issued the command; it gets
                the ack instead of a messageSent echo.

        Returns:
            The persisted message with the sender resolved for display.

        Raises:
            ValidationError: Missing conversation id, empty or oversized content.
            NotFoundError: Conversation missing or sender not a participant.
            PersistenceError: The message could not be stored.
        """
        text = content.strip() if isinstance(content, str) else ""
        if not conversation_id or not text:
            raise ValidationError("conversationId and content are required")
        if self._max_content_length and len(text) > self._max_content_length:
            raise ValidationError(
                f"Message is too long (max {self._max_content_length} characters)"
            )

        conversation = self._directory.require_participant(conversation_id, sender_id)

        message = self._store.create_message(conversation.id, sender_id, text)

        try:
            self._store.update_conversation_summary(conversation.id, text, message.createdAt)
        except PersistenceError as e:
            logger.error(
                f"[Pipeline] Message {message.id} stored but summary of conversation "
                f"{conversation.id} is lagging: {e.detail or e.message}"
            )

        logger.info(
            f"[Pipeline] Message {message.id} from {sender_id} in conversation {conversation.id}"
        )

        body = message_event(message)
        await self._router.deliver_to_participants(
            conversation, sender_id, ServerEvent.NEW_MESSAGE.value, body
        )
        await self._router.deliver_to_user(
            sender_id, ServerEvent.MESSAGE_SENT.value, body, exclude=origin
        )
        return message

    async def set_typing(self, conversation_id: str, user_id: str, is_typing: bool) -> bool:
        """Relay a typing indicator to the other participants.

        Best effort: dropped silently when the user is not a participant.

        Returns:
            True if the indicator was relayed.
        """
        conversation = self._directory.find_participant(conversation_id, user_id)
        if conversation is None:
            logger.debug(
                f"[Pipeline] Dropping typing from {user_id} for conversation {conversation_id}"
            )
            return False

        await self._router.deliver_to_participants(
            conversation,
            user_id,
            ServerEvent.USER_TYPING.value,
            {"conversationId": conversation.id, "userId": user_id, "isTyping": bool(is_typing)},
        )
        return True

    async def mark_read(self, conversation_id: str, user_id: str) -> int:
        """Mark every message from the other participants as read.

        Idempotent: a repeat call with no new messages changes nothing.
        The other participants are told that ``user_id`` has read up to now.

        Returns:
            Number of messages that transitioned to read.

        Raises:
            NotFoundError: Conversation missing or user not a participant.
            PersistenceError: The bulk update failed.
        """
        conversation = self._directory.require_participant(conversation_id, user_id)
        updated = self._store.mark_read(conversation.id, user_id)
        logger.info(
            f"[Pipeline] {user_id} read {updated} message(s) in conversation {conversation.id}"
        )

        await self._router.deliver_to_participants(
            conversation,
            user_id,
            ServerEvent.MESSAGES_READ.value,
            {"conversationId": conversation.id, "readBy": user_id},
        )
        return updated


def get_pipeline() -> MessagePipeline:
    """Pipeline bound to the current store singleton and the global broadcaster."""
    config = get_config()
    return MessagePipeline(
        ConversationStore.get_instance(config.database.path),
        broadcaster,
        max_content_length=config.messaging.max_content_length,
    )
