"""Shared test fixtures and configuration for backend tests."""
import time

import jwt
import pytest
from fastapi.testclient import TestClient

from marketchat.chat.presence import registry
from marketchat.config import get_config, reset_config
from marketchat.conversations.schemas import UserProfile
from marketchat.conversations.service import ConversationStore
from marketchat.main import app

TEST_SECRET = "marketchat-test-secret-0123456789abcdef"

SETTINGS_YAML = """
database:
  path: ":memory:"
messaging:
  max_content_length: 200
logging:
  level: debug
"""

SECRETS_YAML = f"""
jwt:
  secret_key: "{TEST_SECRET}"
  algorithm: HS256
"""


class FakeConnection:
    """Stand-in for a connection handle; records every event sent to it."""

    def __init__(self, user_id: str, fail: bool = False) -> None:
        self.user_id = user_id
        self.fail = fail
        self.sent = []

    def __repr__(self) -> str:
        return f"FakeConnection({self.user_id!r})"

    async def send(self, event: str, payload: dict) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append((event, payload))

    def events(self, name: str) -> list:
        return [payload for event, payload in self.sent if event == name]


@pytest.fixture(autouse=True)
def test_config(tmp_path, monkeypatch):
    """Point the config loader at throwaway YAML files for every test."""
    settings_file = tmp_path / "marketchat.settings.yaml"
    settings_file.write_text(SETTINGS_YAML)
    secrets_file = tmp_path / "marketchat.secrets.yaml"
    secrets_file.write_text(SECRETS_YAML)
    monkeypatch.setenv("MARKETCHAT_SETTINGS", str(settings_file))
    monkeypatch.setenv("MARKETCHAT_SECRETS", str(secrets_file))
    reset_config()
    yield get_config()
    reset_config()


@pytest.fixture(autouse=True)
def store():
    """Use an in-memory ConversationStore for each test."""
    ConversationStore.reset_instance()
    instance = ConversationStore.get_instance(db_path=":memory:")
    yield instance
    ConversationStore.reset_instance()


@pytest.fixture(autouse=True)
def clean_presence():
    """Start and end every test with nobody online."""
    registry.clear()
    yield
    registry.clear()


@pytest.fixture
def token_for():
    """Mint a signed access token the way the auth service would."""
    def _make(user_id, secret=TEST_SECRET, expires_in=3600, **claims):
        now = int(time.time())
        payload = {"iat": now, "exp": now + expires_in}
        if user_id is not None:
            payload["sub"] = user_id
        payload.update(claims)
        return jwt.encode(payload, secret, algorithm="HS256")
    return _make


@pytest.fixture
def auth_headers(token_for):
    def _headers(user_id):
        return {"Authorization": f"Bearer {token_for(user_id)}"}
    return _headers


@pytest.fixture
def api_client():
    """Provide a TestClient for the main FastAPI app."""
    return TestClient(app)


@pytest.fixture
def profiles(store):
    """Display profiles for the users most tests talk about."""
    users = [
        UserProfile(id="alice", name="Alice Seller", userName="alice", email="alice@example.com"),
        UserProfile(id="bob", name="Bob Buyer", userName="bobby", email="bob@example.com"),
        UserProfile(id="carol", name="Carol", userName="carol_c", email="carol@example.com"),
    ]
    for user in users:
        store.upsert_user_profile(user)
    return {user.id: user for user in users}


@pytest.fixture
def conversation(store, profiles):
    """Conversation C between alice and bob."""
    return store.create_conversation(["alice", "bob"])


@pytest.fixture
def fake_connection():
    return FakeConnection
