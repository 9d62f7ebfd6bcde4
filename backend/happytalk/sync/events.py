"""Typed events delivered by the broker.

The broker addresses every event as ``{"target": <name>, "arguments": [...]}``.
``EventKind`` closes the set of targets the client understands; anything
else parses to ``EventKind.UNKNOWN`` so dispatch can take an explicit
fallback branch instead of silently dropping it.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import ValidationError

from happytalk.messages.schemas import ChatMessage, MessageDeletedPayload

logger = logging.getLogger(__name__)

EventScope = Literal["group", "server"]


class EventKind(str, Enum):
    """Broker event targets.

    Room-scoped:
        RECEIVE_MESSAGE, MESSAGE_EDITED, MESSAGE_DELETED
    Connection/user-scoped:
        presence, contact, group-management and avatar notifications
    """
    RECEIVE_MESSAGE = "ReceiveMessage"
    MESSAGE_EDITED = "MessageEdited"
    MESSAGE_DELETED = "MessageDeleted"
    USER_ONLINE = "UserOnline"
    USER_OFFLINE = "UserOffline"
    CONTACT_ADDED = "ContactAdded"
    CONTACT_REMOVED = "ContactRemoved"
    GROUP_CREATED = "GroupCreated"
    GROUP_UPDATED = "GroupUpdated"
    GROUP_MEMBERS_ADDED = "GroupMembersAdded"
    GROUP_MEMBER_REMOVED = "GroupMemberRemoved"
    GROUP_DELETED = "GroupDeleted"
    AVATAR_UPDATED = "AvatarUpdated"
    UNKNOWN = "__unknown__"

    @classmethod
    def from_target(cls, target: Optional[str]) -> "EventKind":
        try:
            kind = cls(target)
        except ValueError:
            return cls.UNKNOWN
        return kind


MESSAGE_EVENT_KINDS = frozenset({
    EventKind.RECEIVE_MESSAGE,
    EventKind.MESSAGE_EDITED,
    EventKind.MESSAGE_DELETED,
})


@dataclass
class InboundEvent:
    """One event from the broker.

    Attributes:
        kind: Parsed event kind (UNKNOWN for unrecognised targets).
        target: Raw target string as received.
        arguments: Raw positional arguments.
        scope: "group" for room broadcasts, "server" for events addressed
            to this connection or user.
    """
    kind: EventKind
    target: str
    arguments: List[Any] = field(default_factory=list)
    scope: EventScope = "group"

    @property
    def first_argument(self) -> Any:
        return self.arguments[0] if self.arguments else None


def parse_event(payload: dict, scope: Optional[EventScope] = None) -> InboundEvent:
    """Build an ``InboundEvent`` from a broker payload.

    Accepts both the REST shape ``{target, arguments}`` and the websocket
    invocation frame ``{type: 1, target, arguments}``. Never raises on an
    unknown target. When ``scope`` is not given, message events are treated
    as room-scoped and everything else as connection-scoped.
    """
    target = payload.get("target") or ""
    arguments = payload.get("arguments") or []
    if not isinstance(arguments, list):
        arguments = [arguments]
    kind = EventKind.from_target(target)
    if scope is None:
        scope = "group" if kind in MESSAGE_EVENT_KINDS else "server"
    return InboundEvent(kind=kind, target=target, arguments=arguments, scope=scope)


def message_from_event(event: InboundEvent) -> Optional[ChatMessage]:
    """Extract the message carried by ReceiveMessage / MessageEdited."""
    raw = event.first_argument
    if isinstance(raw, ChatMessage):
        return raw
    if not isinstance(raw, dict):
        return None
    try:
        return ChatMessage.model_validate(raw)
    except ValidationError as exc:
        logger.warning("[Events] Malformed %s payload: %s", event.target, exc)
        return None


def deleted_id_from_event(event: InboundEvent) -> Optional[str]:
    """Extract the message ID carried by MessageDeleted."""
    raw = event.first_argument
    if isinstance(raw, str):
        return raw
    if not isinstance(raw, dict):
        return None
    try:
        return MessageDeletedPayload.model_validate(raw).messageId
    except ValidationError as exc:
        logger.warning("[Events] Malformed %s payload: %s", event.target, exc)
        return None
