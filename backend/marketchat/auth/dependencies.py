"""FastAPI dependency resolving the caller of an HTTP route.

Reads the bearer token from the Authorization header, verifies it with the
same TokenVerifier the WebSocket handshake uses and returns the user id.
Raises HTTP 401 when the token is missing or invalid.
"""
import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from marketchat.errors import AuthenticationError

from .service import get_verifier

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """Extract and validate the user identity from the bearer token."""
    token = credentials.credentials if credentials else None
    try:
        return get_verifier().verify(token)
    except AuthenticationError as e:
        logger.info("[auth] HTTP request rejected (%s): %s", e.code, e.detail or e.message)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        )
