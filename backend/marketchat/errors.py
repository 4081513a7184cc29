"""Error taxonomy shared by the messaging core.

Every error carries a human-readable ``message`` (what the client sees in an
ack or HTTP body), a machine-readable ``code`` and the HTTP status used when
the error crosses a REST boundary.
"""
from typing import Optional


class ChatError(Exception):
    """Base exception for messaging errors."""

    code = "chat_error"
    status_code = 500

    def __init__(self, message: str, code: Optional[str] = None, detail: str = ""):
        self.message = message
        self.detail = detail
        if code:
            self.code = code
        super().__init__(message)


class AuthenticationError(ChatError):
    """Raised when a handshake or request credential is rejected.

    Terminal for the connection attempt. ``code`` tells a missing token
    apart from an invalid or expired one.
    """

    TOKEN_MISSING = "token_missing"
    TOKEN_INVALID = "token_invalid"

    code = TOKEN_INVALID
    status_code = 401

    @classmethod
    def missing(cls) -> "AuthenticationError":
        return cls("Authentication token required", code=cls.TOKEN_MISSING)

    @classmethod
    def invalid(cls, detail: str = "") -> "AuthenticationError":
        return cls("Invalid token", code=cls.TOKEN_INVALID, detail=detail)


class ValidationError(ChatError):
    """Raised when an inbound command is malformed (empty content, missing ids)."""

    code = "validation_error"
    status_code = 400


class NotFoundError(ChatError):
    """Raised when a conversation does not exist or the user is not a participant."""

    code = "not_found"
    status_code = 404


class PersistenceError(ChatError):
    """Raised when a call to the durable store fails."""

    code = "persistence_error"
    status_code = 500
