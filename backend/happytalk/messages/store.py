"""Message persistence.

``MessageStore`` is the interface the rest of the backend talks to: a
room-partitioned CRUD + history query service. ``DuckDBMessageStore`` is the
embedded implementation used by default.

History is read newest-first (so a page is always the most recent slice
before the cursor) and returned oldest-first. Within a room, order is by
creation time with the insertion sequence as tie-breaker.

Continuation tokens are opaque to callers; here they encode the row offset
of the next (older) page.
"""
import logging
import time
from abc import ABC, abstractmethod
from typing import List, Optional

import duckdb

from .schemas import ChatMessage, MessageListResponse, parse_timestamp

logger = logging.getLogger(__name__)

_CREATE_SEQUENCE = "CREATE SEQUENCE IF NOT EXISTS message_seq START 1"

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS messages (
    seq           BIGINT  NOT NULL DEFAULT nextval('message_seq'),
    id            VARCHAR NOT NULL,
    roomid        VARCHAR NOT NULL,
    text          VARCHAR NOT NULL,
    sender_name   VARCHAR NOT NULL,
    sender_id     VARCHAR,
    created_at    VARCHAR NOT NULL,
    created_epoch DOUBLE  NOT NULL,
    edited_at     VARCHAR,
    is_edited     BOOLEAN,
    client_id     VARCHAR,
    ttl           INTEGER,
    type          VARCHAR,
    recipient_id  VARCHAR,
    PRIMARY KEY (roomid, id)
)
"""

_INDEX = "CREATE INDEX IF NOT EXISTS idx_messages_room ON messages(roomid)"

_COLUMNS = [
    "id", "roomid", "text", "sender_name", "sender_id", "created_at",
    "edited_at", "is_edited", "client_id", "ttl", "type", "recipient_id",
]

_NOT_EXPIRED = "(ttl IS NULL OR created_epoch + ttl > ?)"


class MessageStore(ABC):
    """Room-partitioned message persistence."""

    @abstractmethod
    async def save_message(self, message: ChatMessage) -> ChatMessage:
        """Persist a new message and return the stored document."""

    @abstractmethod
    async def list_messages(
        self,
        roomid: str,
        limit: int = 50,
        continuation_token: Optional[str] = None,
    ) -> MessageListResponse:
        """Return up to ``limit`` recent messages, oldest first."""

    @abstractmethod
    async def get_message(self, message_id: str, roomid: str) -> Optional[ChatMessage]:
        """Return a single message or None."""

    @abstractmethod
    async def update_message(self, message: ChatMessage) -> Optional[ChatMessage]:
        """Replace a stored message; None if it does not exist."""

    @abstractmethod
    async def delete_message(self, message_id: str, roomid: str) -> bool:
        """Delete a message; False if it did not exist."""


class DuckDBMessageStore(MessageStore):
    """DuckDB-backed message store.

    The async methods call DuckDB synchronously, so each query blocks the
    event loop while it runs. The async signatures keep the interface
    interchangeable with a networked document store.

    Attributes:
        _instance: Process-wide instance used by the HTTP routes.
        _default_db_path: File used when no path is configured.
    """

    _instance: Optional["DuckDBMessageStore"] = None
    _default_db_path: str = "happytalk_messages.duckdb"

    def __init__(self, db_path: Optional[str] = None, default_ttl: Optional[int] = None) -> None:
        self._db_path = db_path or self._default_db_path
        self._default_ttl = default_ttl
        self._conn = duckdb.connect(self._db_path)
        self._conn.execute(_CREATE_SEQUENCE)
        self._conn.execute(_CREATE_TABLE)
        self._conn.execute(_INDEX)
        logger.info("[MessageStore] Initialized with db=%s", self._db_path)

    @classmethod
    def get_instance(
        cls, db_path: Optional[str] = None, default_ttl: Optional[int] = None
    ) -> "DuckDBMessageStore":
        if cls._instance is None:
            cls._instance = cls(db_path, default_ttl)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        if cls._instance is not None:
            cls._instance.close()
        cls._instance = None

    def close(self) -> None:
        self._conn.close()

    # -----------------------------------------------------------------------
    # MessageStore
    # -----------------------------------------------------------------------

    async def save_message(self, message: ChatMessage) -> ChatMessage:
        if message.ttl is None and self._default_ttl is not None:
            message = message.model_copy(update={"ttl": self._default_ttl})
        self._conn.execute(
            """
            INSERT INTO messages
              (id, roomid, text, sender_name, sender_id, created_at,
               created_epoch, edited_at, is_edited, client_id, ttl, type,
               recipient_id)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                message.id, message.roomid, message.text, message.senderName,
                message.senderId, message.createdAt,
                parse_timestamp(message.createdAt).timestamp(),
                message.editedAt, message.isEdited, message.clientId,
                message.ttl, message.type, message.recipientId,
            ],
        )
        return message

    async def list_messages(
        self,
        roomid: str,
        limit: int = 50,
        continuation_token: Optional[str] = None,
    ) -> MessageListResponse:
        offset = _decode_token(continuation_token)
        rows = self._conn.execute(
            f"""
            SELECT {", ".join(_COLUMNS)} FROM messages
            WHERE roomid = ? AND {_NOT_EXPIRED}
            ORDER BY created_epoch DESC, seq DESC
            LIMIT ? OFFSET ?
            """,
            [roomid, time.time(), limit + 1, offset],
        ).fetchall()

        next_token = None
        if len(rows) > limit:
            rows = rows[:limit]
            next_token = str(offset + limit)

        messages = [self._row_to_message(r) for r in rows]
        messages.reverse()  # chronological order
        return MessageListResponse(messages=messages, continuationToken=next_token)

    async def get_message(self, message_id: str, roomid: str) -> Optional[ChatMessage]:
        row = self._conn.execute(
            f"""
            SELECT {", ".join(_COLUMNS)} FROM messages
            WHERE roomid = ? AND id = ? AND {_NOT_EXPIRED}
            """,
            [roomid, message_id, time.time()],
        ).fetchone()
        return self._row_to_message(row) if row else None

    async def update_message(self, message: ChatMessage) -> Optional[ChatMessage]:
        if await self.get_message(message.id, message.roomid) is None:
            return None
        self._conn.execute(
            """
            UPDATE messages
            SET text = ?, edited_at = ?, is_edited = ?
            WHERE roomid = ? AND id = ?
            """,
            [message.text, message.editedAt, message.isEdited, message.roomid, message.id],
        )
        return await self.get_message(message.id, message.roomid)

    async def delete_message(self, message_id: str, roomid: str) -> bool:
        result = self._conn.execute(
            "DELETE FROM messages WHERE roomid = ? AND id = ? RETURNING id",
            [roomid, message_id],
        ).fetchone()
        return result is not None

    # -----------------------------------------------------------------------
    # Maintenance
    # -----------------------------------------------------------------------

    def purge_expired(self, now: Optional[float] = None) -> int:
        """Physically delete messages whose TTL has elapsed."""
        result = self._conn.execute(
            """
            DELETE FROM messages
            WHERE ttl IS NOT NULL AND created_epoch + ttl <= ?
            RETURNING id
            """,
            [now if now is not None else time.time()],
        ).fetchall()
        if result:
            logger.info("[MessageStore] Purged %d expired messages", len(result))
        return len(result)

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    def _row_to_message(self, row) -> ChatMessage:
        d = dict(zip(_COLUMNS, row))
        return ChatMessage(
            id=d["id"],
            roomid=d["roomid"],
            text=d["text"],
            senderName=d["sender_name"],
            senderId=d["sender_id"],
            createdAt=d["created_at"],
            editedAt=d["edited_at"],
            isEdited=d["is_edited"],
            clientId=d["client_id"],
            ttl=d["ttl"],
            type=d["type"],
            recipientId=d["recipient_id"],
        )


def _decode_token(token: Optional[str]) -> int:
    if not token:
        return 0
    try:
        offset = int(token)
    except ValueError:
        raise ValueError(f"Invalid continuation token: {token!r}") from None
    if offset < 0:
        raise ValueError(f"Invalid continuation token: {token!r}")
    return offset
