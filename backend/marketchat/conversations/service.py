"""DuckDB-backed store for conversations, messages and display profiles.

This is the durable record store the messaging core talks to. It offers
single-operation create / find / update-by-filter calls only; no
transaction is held open across calls.

Database Schema:
    conversations:
        - id, last_message, last_message_at, created_at
    conversation_participants:
        - conversation_id, user_id, position (membership is fixed)
    messages:
        - id, seq (insertion order), conversation_id, sender_id,
          content, is_read, created_at
    user_profiles:
        - id, name, user_name, avatar, email (read copy of auth data)

Thread Safety:
    A DuckDB connection must not be used concurrently, so every call runs
    under one ``threading.Lock``. Calls are short and synchronous.

Usage:
    store = ConversationStore.get_instance()
    conversation = store.create_conversation(["alice", "bob"])
    message = store.create_message(conversation.id, "alice", "Hi")
"""
import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterable, Iterator, List, Optional, Sequence

import duckdb

from marketchat.errors import PersistenceError

from .schemas import Conversation, Message, SenderProfile, UserProfile

logger = logging.getLogger(__name__)

_SCHEMA = [
    "CREATE SEQUENCE IF NOT EXISTS messages_seq START 1",
    """
    CREATE TABLE IF NOT EXISTS conversations (
        id              VARCHAR PRIMARY KEY,
        last_message    VARCHAR NOT NULL DEFAULT '',
        last_message_at TIMESTAMP NOT NULL,
        created_at      TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS conversation_participants (
        conversation_id VARCHAR NOT NULL,
        user_id         VARCHAR NOT NULL,
        position        INTEGER NOT NULL,
        PRIMARY KEY (conversation_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id              VARCHAR PRIMARY KEY,
        seq             BIGINT DEFAULT nextval('messages_seq'),
        conversation_id VARCHAR NOT NULL,
        sender_id       VARCHAR NOT NULL,
        content         VARCHAR NOT NULL,
        is_read         BOOLEAN NOT NULL DEFAULT FALSE,
        created_at      TIMESTAMP NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id)",
    "CREATE INDEX IF NOT EXISTS idx_participants_user ON conversation_participants(user_id)",
    """
    CREATE TABLE IF NOT EXISTS user_profiles (
        id        VARCHAR PRIMARY KEY,
        name      VARCHAR NOT NULL DEFAULT '',
        user_name VARCHAR NOT NULL DEFAULT '',
        avatar    VARCHAR NOT NULL DEFAULT '',
        email     VARCHAR NOT NULL DEFAULT ''
    )
    """,
]

_MESSAGE_SELECT = """
    SELECT m.id, m.conversation_id, m.sender_id, m.content, m.is_read, m.created_at,
           p.id, p.name, p.user_name, p.avatar
    FROM messages m
    LEFT JOIN user_profiles p ON p.id = m.sender_id
"""


def _utcnow() -> datetime:
    # DuckDB TIMESTAMP columns are naive; store UTC wall time.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _placeholders(values: Sequence) -> str:
    return ", ".join("?" for _ in values)


class ConversationStore:
    """Singleton service for conversations and messages in DuckDB.

    Attributes:
        _instance: Singleton instance of the service.
        _default_db_path: Path used when none is given.
    """

    _instance: Optional["ConversationStore"] = None
    _default_db_path: str = "marketchat.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        """Open (or create) the database and its schema.

        Args:
            db_path: Path to DuckDB file, or ":memory:". Defaults to
                "marketchat.duckdb".
        """
        self._db_path = db_path or self._default_db_path
        self._lock = threading.Lock()
        self._connection: Optional[duckdb.DuckDBPyConnection] = duckdb.connect(self._db_path)
        for statement in _SCHEMA:
            self._connection.execute(statement)
        logger.info("[ConversationStore] Initialized with db=%s", self._db_path)

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "ConversationStore":
        """Get or create the singleton instance.

        Args:
            db_path: Optional database path (only used on first call).
        """
        if cls._instance is None:
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Close and forget the singleton (used on shutdown and in tests)."""
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    @contextmanager
    def _session(self, operation: str) -> Iterator[duckdb.DuckDBPyConnection]:
        """Serialize access to the connection and translate store failures."""
        with self._lock:
            if self._connection is None:
                raise PersistenceError(f"{operation} failed: store is closed")
            try:
                yield self._connection
            except duckdb.Error as exc:
                logger.error("[ConversationStore] %s failed: %s", operation, exc)
                raise PersistenceError(f"{operation} failed", detail=str(exc)) from exc

    # -----------------------------------------------------------------------
    # Conversations
    # -----------------------------------------------------------------------

    def create_conversation(
        self,
        participants: Iterable[str],
        conversation_id: Optional[str] = None,
    ) -> Conversation:
        """Create a conversation with a fixed participant set.

        Raises:
            ValueError: If fewer than two distinct participants are given.
        """
        members = list(dict.fromkeys(p for p in participants if p))
        if len(members) < 2:
            raise ValueError("A conversation needs at least two distinct participants")

        conversation_id = conversation_id or str(uuid.uuid4())
        now = _utcnow()
        with self._session("create_conversation") as conn:
            conn.execute(
                "INSERT INTO conversations (id, last_message, last_message_at, created_at) "
                "VALUES (?, '', ?, ?)",
                [conversation_id, now, now],
            )
            conn.executemany(
                "INSERT INTO conversation_participants (conversation_id, user_id, position) "
                "VALUES (?, ?, ?)",
                [[conversation_id, user_id, index] for index, user_id in enumerate(members)],
            )
        logger.info(
            "[ConversationStore] Created conversation %s for %s", conversation_id, members
        )
        return Conversation(
            id=conversation_id,
            participants=members,
            lastMessage="",
            lastMessageAt=now,
            createdAt=now,
        )

    def find_conversation(self, conversation_id: str) -> Optional[Conversation]:
        with self._session("find_conversation") as conn:
            row = conn.execute(
                "SELECT id, last_message, last_message_at, created_at "
                "FROM conversations WHERE id = ?",
                [conversation_id],
            ).fetchone()
            if row is None:
                return None
            members = self._participants(conn, [conversation_id])
        return self._row_to_conversation(row, members.get(conversation_id, []))

    def find_conversation_for_participant(
        self, conversation_id: str, user_id: str
    ) -> Optional[Conversation]:
        """Find a conversation only if ``user_id`` is one of its participants."""
        with self._session("find_conversation_for_participant") as conn:
            row = conn.execute(
                """
                SELECT c.id, c.last_message, c.last_message_at, c.created_at
                FROM conversations c
                JOIN conversation_participants cp ON cp.conversation_id = c.id
                WHERE c.id = ? AND cp.user_id = ?
                """,
                [conversation_id, user_id],
            ).fetchone()
            if row is None:
                return None
            members = self._participants(conn, [conversation_id])
        return self._row_to_conversation(row, members.get(conversation_id, []))

    def find_direct_conversation(self, user_a: str, user_b: str) -> Optional[Conversation]:
        """Find the two-party conversation between exactly these two users."""
        with self._session("find_direct_conversation") as conn:
            row = conn.execute(
                """
                SELECT conversation_id
                FROM conversation_participants
                GROUP BY conversation_id
                HAVING count(*) = 2
                   AND sum(CASE WHEN user_id IN (?, ?) THEN 1 ELSE 0 END) = 2
                LIMIT 1
                """,
                [user_a, user_b],
            ).fetchone()
        if row is None:
            return None
        return self.find_conversation(row[0])

    def list_conversations_for_user(self, user_id: str) -> List[Conversation]:
        """All conversations of a user, most recently active first."""
        with self._session("list_conversations_for_user") as conn:
            rows = conn.execute(
                """
                SELECT c.id, c.last_message, c.last_message_at, c.created_at
                FROM conversations c
                JOIN conversation_participants cp ON cp.conversation_id = c.id
                WHERE cp.user_id = ?
                ORDER BY c.last_message_at DESC
                """,
                [user_id],
            ).fetchall()
            members = self._participants(conn, [row[0] for row in rows])
        return [self._row_to_conversation(row, members.get(row[0], [])) for row in rows]

    def update_conversation_summary(
        self, conversation_id: str, last_message: str, last_message_at: datetime
    ) -> bool:
        """Overwrite the summary fields (last write wins).

        Returns:
            True if the conversation existed and was updated.
        """
        with self._session("update_conversation_summary") as conn:
            updated = conn.execute(
                "UPDATE conversations SET last_message = ?, last_message_at = ? "
                "WHERE id = ? RETURNING id",
                [last_message, last_message_at, conversation_id],
            ).fetchall()
        return len(updated) > 0

    # -----------------------------------------------------------------------
    # Messages
    # -----------------------------------------------------------------------

    def create_message(self, conversation_id: str, sender_id: str, content: str) -> Message:
        """Insert a new unread message and return it with the sender resolved."""
        message_id = str(uuid.uuid4())
        now = _utcnow()
        with self._session("create_message") as conn:
            conn.execute(
                "INSERT INTO messages (id, conversation_id, sender_id, content, is_read, created_at) "
                "VALUES (?, ?, ?, ?, FALSE, ?)",
                [message_id, conversation_id, sender_id, content, now],
            )
            row = conn.execute(f"{_MESSAGE_SELECT} WHERE m.id = ?", [message_id]).fetchone()
        return self._row_to_message(row)

    def get_message(self, message_id: str) -> Optional[Message]:
        with self._session("get_message") as conn:
            row = conn.execute(f"{_MESSAGE_SELECT} WHERE m.id = ?", [message_id]).fetchone()
        return self._row_to_message(row) if row else None

    def list_messages(self, conversation_id: str) -> List[Message]:
        """Messages of a conversation in persistence order (oldest first)."""
        with self._session("list_messages") as conn:
            rows = conn.execute(
                f"{_MESSAGE_SELECT} WHERE m.conversation_id = ? ORDER BY m.seq",
                [conversation_id],
            ).fetchall()
        return [self._row_to_message(row) for row in rows]

    def count_messages(self, conversation_id: Optional[str] = None) -> int:
        with self._session("count_messages") as conn:
            if conversation_id is None:
                row = conn.execute("SELECT count(*) FROM messages").fetchone()
            else:
                row = conn.execute(
                    "SELECT count(*) FROM messages WHERE conversation_id = ?",
                    [conversation_id],
                ).fetchone()
        return row[0]

    def mark_read(self, conversation_id: str, reader_id: str) -> int:
        """Flag every unread message not sent by ``reader_id`` as read.

        Returns:
            Number of messages that changed state (0 on a repeat call).
        """
        with self._session("mark_read") as conn:
            updated = conn.execute(
                """
                UPDATE messages SET is_read = TRUE
                WHERE conversation_id = ? AND sender_id <> ? AND is_read = FALSE
                RETURNING id
                """,
                [conversation_id, reader_id],
            ).fetchall()
        return len(updated)

    def count_unread(self, conversation_id: str, user_id: str) -> int:
        """Unread messages in one conversation sent by someone other than ``user_id``."""
        with self._session("count_unread") as conn:
            row = conn.execute(
                "SELECT count(*) FROM messages "
                "WHERE conversation_id = ? AND sender_id <> ? AND is_read = FALSE",
                [conversation_id, user_id],
            ).fetchone()
        return row[0]

    def count_unread_total(self, user_id: str) -> int:
        """Unread messages across every conversation ``user_id`` takes part in."""
        with self._session("count_unread_total") as conn:
            row = conn.execute(
                """
                SELECT count(*)
                FROM messages m
                JOIN conversation_participants cp
                  ON cp.conversation_id = m.conversation_id AND cp.user_id = ?
                WHERE m.sender_id <> ? AND m.is_read = FALSE
                """,
                [user_id, user_id],
            ).fetchone()
        return row[0]

    # -----------------------------------------------------------------------
    # User profiles
    # -----------------------------------------------------------------------

    def upsert_user_profile(self, profile: UserProfile) -> UserProfile:
        with self._session("upsert_user_profile") as conn:
            conn.execute(
                "INSERT OR REPLACE INTO user_profiles (id, name, user_name, avatar, email) "
                "VALUES (?, ?, ?, ?, ?)",
                [profile.id, profile.name, profile.userName, profile.avatar, profile.email],
            )
        return profile

    def get_user_profile(self, user_id: str) -> Optional[UserProfile]:
        profiles = self.get_user_profiles([user_id])
        return profiles.get(user_id)

    def get_user_profiles(self, user_ids: Sequence[str]) -> Dict[str, UserProfile]:
        if not user_ids:
            return {}
        with self._session("get_user_profiles") as conn:
            rows = conn.execute(
                "SELECT id, name, user_name, avatar, email FROM user_profiles "
                f"WHERE id IN ({_placeholders(user_ids)})",
                list(user_ids),
            ).fetchall()
        return {row[0]: self._row_to_profile(row) for row in rows}

    def search_user_profiles(
        self, query: str, exclude_user_id: str, limit: int = 10
    ) -> List[UserProfile]:
        """Case-insensitive substring match on name, user name or email."""
        needle = query.strip().lower()
        with self._session("search_user_profiles") as conn:
            rows = conn.execute(
                """
                SELECT id, name, user_name, avatar, email FROM user_profiles
                WHERE id <> ?
                  AND (contains(lower(name), ?)
                       OR contains(lower(user_name), ?)
                       OR contains(lower(email), ?))
                ORDER BY user_name, id
                LIMIT ?
                """,
                [exclude_user_id, needle, needle, needle, limit],
            ).fetchall()
        return [self._row_to_profile(row) for row in rows]

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    @staticmethod
    def _participants(
        conn: duckdb.DuckDBPyConnection, conversation_ids: Sequence[str]
    ) -> Dict[str, List[str]]:
        if not conversation_ids:
            return {}
        rows = conn.execute(
            "SELECT conversation_id, user_id FROM conversation_participants "
            f"WHERE conversation_id IN ({_placeholders(conversation_ids)}) "
            "ORDER BY conversation_id, position",
            list(conversation_ids),
        ).fetchall()
        members: Dict[str, List[str]] = {}
        for conversation_id, user_id in rows:
            members.setdefault(conversation_id, []).append(user_id)
        return members

    @staticmethod
    def _row_to_conversation(row, participants: List[str]) -> Conversation:
        return Conversation(
            id=row[0],
            participants=participants,
            lastMessage=row[1],
            lastMessageAt=row[2],
            createdAt=row[3],
        )

    @staticmethod
    def _row_to_message(row) -> Message:
        sender = SenderProfile(id=row[2])
        if row[6] is not None:
            sender = SenderProfile(id=row[2], name=row[7], userName=row[8], avatar=row[9])
        return Message(
            id=row[0],
            conversationId=row[1],
            senderId=row[2],
            sender=sender,
            content=row[3],
            read=row[4],
            createdAt=row[5],
        )

    @staticmethod
    def _row_to_profile(row) -> UserProfile:
        return UserProfile(id=row[0], name=row[1], userName=row[2], avatar=row[3], email=row[4])
