"""Tests for bearer token verification (handshake and HTTP)."""
import pytest
from fastapi.testclient import TestClient

from marketchat.auth.service import (
    TokenVerifier,
    bearer_from_header,
    get_verifier,
    token_from_handshake,
)
from marketchat.errors import AuthenticationError
from marketchat.main import app


client = TestClient(app)


class TestBearerFromHeader:

    def test_extracts_token(self):
        assert bearer_from_header("Bearer abc.def.ghi") == "abc.def.ghi"

    def test_scheme_is_case_insensitive(self):
        assert bearer_from_header("bearer abc") == "abc"

    def test_missing_header(self):
        assert bearer_from_header(None) is None
        assert bearer_from_header("") is None

    def test_other_scheme(self):
        assert bearer_from_header("Basic dXNlcjpwYXNz") is None

    def test_empty_credentials(self):
        assert bearer_from_header("Bearer ") is None


class TestTokenFromHandshake:

    def test_query_parameter(self):
        assert token_from_handshake({"token": "q"}, {}) == "q"

    def test_authorization_header(self):
        assert token_from_handshake({}, {"authorization": "Bearer h"}) == "h"

    def test_query_parameter_wins(self):
        assert token_from_handshake({"token": "q"}, {"authorization": "Bearer h"}) == "q"

    def test_nothing_presented(self):
        assert token_from_handshake({}, {}) is None


class TestTokenVerifier:

    def test_valid_token_returns_subject(self, token_for):
        assert get_verifier().verify(token_for("alice")) == "alice"

    def test_legacy_id_claim(self, token_for):
        token = token_for(None, id="legacy-42")
        assert get_verifier().verify(token) == "legacy-42"

    def test_missing_token(self):
        with pytest.raises(AuthenticationError) as exc_info:
            get_verifier().verify(None)
        assert exc_info.value.code == AuthenticationError.TOKEN_MISSING
        assert exc_info.value.message == "Authentication token required"

    def test_garbage_token(self):
        with pytest.raises(AuthenticationError) as exc_info:
            get_verifier().verify("not-a-jwt")
        assert exc_info.value.code == AuthenticationError.TOKEN_INVALID
        assert exc_info.value.message == "Invalid token"

    def test_wrong_signature(self, token_for):
        token = token_for("alice", secret="another-secret-that-is-long-enough-too")
        with pytest.raises(AuthenticationError) as exc_info:
            get_verifier().verify(token)
        assert exc_info.value.code == AuthenticationError.TOKEN_INVALID

    def test_expired_token(self, token_for):
        token = token_for("alice", expires_in=-60)
        with pytest.raises(AuthenticationError) as exc_info:
            get_verifier().verify(token)
        assert exc_info.value.code == AuthenticationError.TOKEN_INVALID
        assert exc_info.value.detail == "Token has expired"

    def test_token_without_identity(self, token_for):
        with pytest.raises(AuthenticationError) as exc_info:
            get_verifier().verify(token_for(None))
        assert exc_info.value.code == AuthenticationError.TOKEN_INVALID

    def test_issuer_and_audience_are_enforced_when_configured(self, token_for, test_config):
        secret = test_config.secrets.jwt.secret_key
        verifier = TokenVerifier(secret, issuer="auth.market", audience="marketchat")

        good = token_for("alice", iss="auth.market", aud="marketchat")
        assert verifier.verify(good) == "alice"

        with pytest.raises(AuthenticationError):
            verifier.verify(token_for("alice", iss="someone-else", aud="marketchat"))
        with pytest.raises(AuthenticationError):
            verifier.verify(token_for("alice", iss="auth.market"))

    def test_from_config(self, test_config):
        verifier = TokenVerifier.from_config(test_config)
        assert verifier.secret_key == "marketchat-test-secret-0123456789abcdef"
        assert verifier.algorithm == "HS256"


class TestHTTPAuthentication:

    def test_missing_token_is_401(self):
        response = client.get("/messages/unread-count")
        assert response.status_code == 401
        assert response.json()["detail"] == "Authentication token required"
        assert response.headers["www-authenticate"] == "Bearer"

    def test_invalid_token_is_401(self):
        response = client.get(
            "/messages/unread-count", headers={"Authorization": "Bearer nope"}
        )
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid token"

    def test_valid_token(self, auth_headers):
        response = client.get("/messages/unread-count", headers=auth_headers("alice"))
        assert response.status_code == 200
        assert response.json() == {"unreadCount": 0}
