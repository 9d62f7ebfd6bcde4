"""Pydantic schemas for chat messages.

Field names follow the camelCase wire format shared by the HTTP API, the
broker payloads and the persisted documents.
"""
import uuid
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

MessageType = Literal["public", "dm", "group", "named"]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 timestamp, accepting a trailing ``Z``."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ChatMessage(BaseModel):
    """A persisted chat message.

    Attributes:
        id: Server-assigned unique ID (authoritative once persisted).
        roomid: Room the message belongs to (partition key).
        text: Message body.
        senderName: Display name of the sender.
        senderId: Optional sender identity reference.
        createdAt: ISO 8601 timestamp assigned at persistence.
        editedAt: ISO 8601 timestamp of the last privileged edit.
        isEdited: True once the message has been edited.
        clientId: Correlation ID generated by the sending client.
        ttl: Retention in seconds, if any.
        type: Room kind the message was posted to.
        recipientId: For DMs, the other participant.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    roomid: str
    text: str
    senderName: str
    senderId: Optional[str] = None
    createdAt: str = Field(default_factory=utc_now_iso)
    editedAt: Optional[str] = None
    isEdited: Optional[bool] = None
    clientId: Optional[str] = None
    ttl: Optional[int] = None
    type: Optional[MessageType] = None
    recipientId: Optional[str] = None

    def created_at(self) -> datetime:
        return parse_timestamp(self.createdAt)

    def to_wire(self) -> dict:
        return self.model_dump(exclude_none=True)


class SendMessageRequest(BaseModel):
    """Body of ``POST /api/messages``."""
    text: str
    senderName: str
    senderId: Optional[str] = None
    roomid: Optional[str] = None
    clientId: Optional[str] = None
    recipientId: Optional[str] = None


class EditMessageRequest(BaseModel):
    """Body of ``PATCH /api/messages/{messageId}``."""
    text: str = Field(..., min_length=1)
    roomid: str = Field(..., min_length=1)


class MessageListResponse(BaseModel):
    """A page of history, oldest message first."""
    messages: List[ChatMessage] = Field(default_factory=list)
    continuationToken: Optional[str] = None


class MessageDeletedPayload(BaseModel):
    messageId: str
    roomid: str
