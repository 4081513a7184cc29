"""Event protocol spoken over the messaging WebSocket.

Every frame is a JSON object with a ``type`` field.

Client → server:
    - sendMessage: {conversationId, content, requestId?}  → answered with an ack
    - typing:      {conversationId, isTyping}              (fire-and-forget)
    - markRead:    {conversationId}                        (fire-and-forget)

Server → client:
    - ack:          {event, requestId, success, message | error}
    - newMessage:   {message, conversationId}       to other participants
    - messageSent:  {message, conversationId}       to the sender's other tabs
    - userTyping:   {conversationId, userId, isTyping}
    - messagesRead: {conversationId, readBy}
    - userOnline / userOffline: {userId}            to every connection
    - onlineUsers:  {userIds}                       once, to a new connection
    - error:        {error, code?}                  bad frames; code only on a refused handshake
"""
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from marketchat.conversations.schemas import Message

INVALID_REQUEST_ID = "requestId must be a string or number"


class ClientEvent(str, Enum):
    SEND_MESSAGE = "sendMessage"
    TYPING = "typing"
    MARK_READ = "markRead"


class ServerEvent(str, Enum):
    ACK = "ack"
    NEW_MESSAGE = "newMessage"
    MESSAGE_SENT = "messageSent"
    USER_TYPING = "userTyping"
    MESSAGES_READ = "messagesRead"
    USER_ONLINE = "userOnline"
    USER_OFFLINE = "userOffline"
    ONLINE_USERS = "onlineUsers"
    ERROR = "error"


def coerce_request_id(value: Any) -> Optional[str]:
    """Normalise a client correlation id for echoing in the ack.

    Strings pass through and numbers are stringified.

    Raises:
        ValueError: For any other JSON type.
    """
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    raise ValueError(INVALID_REQUEST_ID)


class SendMessagePayload(BaseModel):
    """Inbound sendMessage frame."""
    conversationId: str = Field(..., min_length=1, description="Target conversation")
    content: str = Field(..., description="Message text (trimmed server-side)")
    requestId: Optional[str] = Field(default=None, description="Echoed in the ack")

    @field_validator("requestId", mode="before")
    @classmethod
    def _coerce_request_id(cls, value: Any) -> Optional[str]:
        return coerce_request_id(value)


class TypingPayload(BaseModel):
    """Inbound typing frame."""
    conversationId: str = Field(..., min_length=1)
    isTyping: bool = Field(default=True)


class MarkReadPayload(BaseModel):
    """Inbound markRead frame."""
    conversationId: str = Field(..., min_length=1)


class SendMessageAck(BaseModel):
    """Terminal reply to a sendMessage command.

    Exactly one of ``message`` (on success) or ``error`` is set.
    """
    event: str = ClientEvent.SEND_MESSAGE.value
    requestId: Optional[str] = None
    success: bool
    message: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, message: Message, request_id: Optional[str] = None) -> "SendMessageAck":
        return cls(requestId=request_id, success=True, message=message.model_dump(mode="json"))

    @classmethod
    def failed(cls, error: str, request_id: Optional[str] = None) -> "SendMessageAck":
        return cls(requestId=request_id, success=False, error=error)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


def message_event(message: Message) -> Dict[str, Any]:
    """Body of newMessage / messageSent events."""
    return {"message": message.model_dump(mode="json"), "conversationId": message.conversationId}
