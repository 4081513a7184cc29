"""Bearer token verification for the messaging core.

Tokens are issued by the external auth service. This module only verifies
them and reads the user identity:

1. Locate the token on the handshake (``token`` query parameter, or an
   ``Authorization: Bearer`` header)
2. Verify signature, expiry and, when configured, issuer/audience
3. Read the identity from the ``sub`` claim (``id`` for legacy tokens)
"""
import logging
from typing import Mapping, Optional

import jwt

from marketchat.config import AppSettings, get_config
from marketchat.errors import AuthenticationError

logger = logging.getLogger(__name__)


def bearer_from_header(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header value."""
    if not authorization:
        return None
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "bearer" or not credentials.strip():
        return None
    return credentials.strip()


def token_from_handshake(
    query_params: Mapping[str, str], headers: Mapping[str, str]
) -> Optional[str]:
    """Find the credential presented when a WebSocket connects.

    The query parameter wins because browsers cannot set headers on a
    WebSocket handshake.
    """
    token = query_params.get("token")
    if token:
        return token
    return bearer_from_header(headers.get("authorization"))


class TokenVerifier:
    """Verifies HS/RS-signed JWTs and returns the user identity they assert."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        issuer: Optional[str] = None,
        audience: Optional[str] = None,
        leeway_seconds: int = 0,
    ):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.issuer = issuer
        self.audience = audience
        self.leeway_seconds = leeway_seconds

    @classmethod
    def from_config(cls, config: AppSettings) -> "TokenVerifier":
        jwt_secrets = config.secrets.jwt
        return cls(
            secret_key=jwt_secrets.secret_key,
            algorithm=jwt_secrets.algorithm,
            issuer=jwt_secrets.issuer,
            audience=jwt_secrets.audience,
            leeway_seconds=jwt_secrets.leeway_seconds,
        )

    def verify(self, token: Optional[str]) -> str:
        """Verify a token and return the user identity.

        Raises:
            AuthenticationError: ``token_missing`` when no token was presented,
                ``token_invalid`` when it is malformed, expired, wrongly signed
                or carries no identity.
        """
        if not token:
            raise AuthenticationError.missing()

        try:
            claims = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                audience=self.audience,
                leeway=self.leeway_seconds,
            )
        except jwt.ExpiredSignatureError:
            raise AuthenticationError.invalid("Token has expired")
        except jwt.InvalidTokenError as e:
            raise AuthenticationError.invalid(str(e))

        user_id = claims.get("sub") or claims.get("id")
        if not user_id:
            raise AuthenticationError.invalid("Token carries no user identity")
        return str(user_id)


def get_verifier() -> TokenVerifier:
    """Build a verifier from the current configuration."""
    return TokenVerifier.from_config(get_config())
