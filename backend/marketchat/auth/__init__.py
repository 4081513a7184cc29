"""Authentication module (bearer JWT verification).

Token issuing lives in the external auth service; this package only checks
tokens presented on a WebSocket handshake or an HTTP request.

Services:
    - TokenVerifier: verifies a JWT and returns the user identity.
    - get_current_user_id: FastAPI dependency for HTTP routes.
"""
