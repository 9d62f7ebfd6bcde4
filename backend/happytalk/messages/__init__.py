"""Chat message schemas, persistence and routes."""
from .schemas import (
    ChatMessage,
    EditMessageRequest,
    MessageDeletedPayload,
    MessageListResponse,
    SendMessageRequest,
)
from .store import DuckDBMessageStore, MessageStore

__all__ = [
    "ChatMessage",
    "DuckDBMessageStore",
    "EditMessageRequest",
    "MessageDeletedPayload",
    "MessageListResponse",
    "MessageStore",
    "SendMessageRequest",
]
