"""Pydantic schemas for conversations, messages and display profiles.

These schemas are used by:
    - ConversationStore: DuckDB storage layer
    - MessagePipeline: the socket write path
    - /messages HTTP routes
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class UserProfile(BaseModel):
    """Display data for a user, owned by the external auth service.

    Attributes:
        id: Stable user identity (the token subject).
        name: Full name.
        userName: Public handle.
        avatar: Avatar URL or path.
        email: Contact email (search results and participant lists).
    """
    id: str = Field(..., min_length=1, description="User identity")
    name: str = Field(default="", description="Full name")
    userName: str = Field(default="", description="Public handle")
    avatar: str = Field(default="", description="Avatar URL")
    email: str = Field(default="", description="Email address")


class SenderProfile(BaseModel):
    """Display data embedded in a message for its sender.

    Only ``id`` is guaranteed; the rest is absent when the store holds no
    profile for the sender.
    """
    id: str = Field(..., description="Sender user ID")
    name: Optional[str] = Field(default=None, description="Full name")
    userName: Optional[str] = Field(default=None, description="Public handle")
    avatar: Optional[str] = Field(default=None, description="Avatar URL")


class Conversation(BaseModel):
    """A fixed set of participants plus a rolling summary of the latest message.

    Attributes:
        id: Conversation identifier.
        participants: User identities, two or more, fixed for the lifetime.
        lastMessage: Text of the most recent message ("" before the first one).
        lastMessageAt: When the summary was last updated.
        createdAt: Creation time (UTC).
    """
    id: str = Field(..., description="Conversation ID")
    participants: List[str] = Field(..., min_length=2, description="Participant user IDs")
    lastMessage: str = Field(default="", description="Most recent message text")
    lastMessageAt: datetime = Field(..., description="Summary timestamp (UTC)")
    createdAt: datetime = Field(..., description="Creation timestamp (UTC)")

    def others(self, user_id: str) -> List[str]:
        """Participants other than ``user_id``."""
        return [p for p in self.participants if p != user_id]


class Message(BaseModel):
    """A persisted chat message.

    Attributes:
        id: Message identifier.
        conversationId: Owning conversation.
        senderId: Identity of the sender.
        sender: Sender display profile, resolved at read time.
        content: Trimmed, non-empty text.
        read: Whether a non-sender participant has read it.
        createdAt: Creation timestamp (UTC).
    """
    id: str = Field(..., description="Message ID")
    conversationId: str = Field(..., description="Conversation this message belongs to")
    senderId: str = Field(..., description="User ID of the sender")
    sender: Optional[SenderProfile] = Field(default=None, description="Sender display profile")
    content: str = Field(..., min_length=1, description="Message content")
    read: bool = Field(default=False, description="Read by the recipient")
    createdAt: datetime = Field(..., description="Creation timestamp (UTC)")


class CreateConversationRequest(BaseModel):
    """Request body for starting (or reopening) a two-party conversation."""
    participantId: Optional[str] = Field(default=None, description="The other user")
