"""Client-side message synchronization engine.

Owns the local, ordered, de-duplicated view of one room's messages and
merges three independent sources into it: the history baseline, the
sender's own acknowledged sends, and live arrivals from whichever transport
is active (push or poll).

One engine per session. Identity and collaborators are injected; there is
no module-level singleton.

Usage:
    engine = MessageSyncEngine(api, lambda e: PollTransport(e, api))
    await engine.connect("public")
    await engine.load_history()
    await engine.send_message("hello", "alice")
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

from happytalk.messages.schemas import ChatMessage, SendMessageRequest
from happytalk.rooms import public_room_id

from .api_client import ChatApiClient
from .errors import SyncError
from .events import EventKind, InboundEvent, deleted_id_from_event, message_from_event
from .transports.base import Transport

logger = logging.getLogger(__name__)

_LATEST = datetime.max.replace(tzinfo=timezone.utc)

TransportFactory = Callable[["MessageSyncEngine"], Transport]
ViewListener = Callable[[Tuple[ChatMessage, ...]], None]
EventListener = Callable[[InboundEvent], None]


@dataclass(frozen=True)
class Identity:
    """Who this session speaks as."""
    user_id: str
    display_name: str


class MergeResult(str, Enum):
    MERGED = "merged"
    SKIPPED = "skipped"


def _sort_key(message: ChatMessage) -> datetime:
    # Unparseable timestamps sort last rather than breaking the merge.
    try:
        return message.created_at()
    except ValueError:
        return _LATEST


class MessageSyncEngine:
    """Keeps one room's local view consistent with the server.

    Args:
        api: Backend client used for history reads and sends.
        transport_factory: Builds a fresh transport bound to this engine on
            every ``connect()``.
        identity: Default sender identity and negotiate hint.
        history_limit: Default page size for ``load_history()``.
    """

    def __init__(
        self,
        api: ChatApiClient,
        transport_factory: TransportFactory,
        *,
        identity: Optional[Identity] = None,
        history_limit: int = 50,
    ) -> None:
        self._api = api
        self._transport_factory = transport_factory
        self.identity = identity
        self.history_limit = history_limit

        self._room_id: Optional[str] = None
        self._connected = False
        self._last_error: Optional[SyncError] = None
        self._transport: Optional[Transport] = None

        self._messages: List[ChatMessage] = []
        self._known_ids: set = set()
        self._known_client_ids: set = set()

        self._view_listeners: List[ViewListener] = []
        self._event_listeners: Dict[EventKind, List[EventListener]] = {}
        self.unknown_event_count = 0

    # -----------------------------------------------------------------------
    # State
    # -----------------------------------------------------------------------

    @property
    def room_id(self) -> Optional[str]:
        return self._room_id

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def last_error(self) -> Optional[SyncError]:
        return self._last_error

    @property
    def transport(self) -> Optional[Transport]:
        return self._transport

    @property
    def messages(self) -> Tuple[ChatMessage, ...]:
        """Chronological snapshot of the local view."""
        return tuple(self._messages)

    @property
    def known_ids(self) -> FrozenSet[str]:
        return frozenset(self._known_ids)

    @property
    def known_client_ids(self) -> FrozenSet[str]:
        return frozenset(self._known_client_ids)

    def is_known(self, message_id: str) -> bool:
        return message_id in self._known_ids

    # -----------------------------------------------------------------------
    # Listeners
    # -----------------------------------------------------------------------

    def add_listener(self, callback: ViewListener) -> None:
        """Register a callback invoked with the new view after every change."""
        self._view_listeners.append(callback)

    def on(self, kind: EventKind, callback: EventListener) -> None:
        """Register a callback for a non-message event kind."""
        self._event_listeners.setdefault(kind, []).append(callback)

    def _notify(self) -> None:
        snapshot = self.messages
        for callback in list(self._view_listeners):
            callback(snapshot)

    # -----------------------------------------------------------------------
    # Connection lifecycle
    # -----------------------------------------------------------------------

    async def connect(self, room_id: str, identity_hint: Optional[str] = None) -> None:
        """Switch to ``room_id`` and start receiving its messages.

        Always tears down first, even when reconnecting to the same room,
        so no event from the previous subscription can reach the new view.

        Raises:
            NegotiateFailed: Push credentials could not be obtained.
            SubscribeFailed: The transport could not attach to the room.
        """
        await self.disconnect()
        self._room_id = room_id
        if identity_hint is None and self.identity is not None:
            identity_hint = self.identity.user_id

        transport = self._transport_factory(self)
        self._transport = transport
        try:
            await transport.start(room_id, identity_hint)
        except Exception as exc:
            if isinstance(exc, SyncError):
                error = exc
            else:
                error = SyncError(f"Connect to {room_id} failed", exc)
            logger.error("[Sync] Connect to %s failed: %s", room_id, error)
            self._last_error = error
            self._transport = None
            await transport.stop()
            raise

        self._connected = True
        self._last_error = None
        logger.info("[Sync] Connected to %s", room_id)

    async def disconnect(self) -> None:
        """Stop the transport and clear all accumulated state. Idempotent."""
        transport, self._transport = self._transport, None
        if transport is not None:
            await transport.stop()
            logger.info("[Sync] Disconnected from %s", self._room_id)
        had_state = bool(self._messages)
        self._connected = False
        self._known_ids.clear()
        self._known_client_ids.clear()
        self._messages = []
        if had_state:
            self._notify()

    # -----------------------------------------------------------------------
    # History and sending
    # -----------------------------------------------------------------------

    async def load_history(
        self, room_id: Optional[str] = None, limit: Optional[int] = None
    ) -> List[ChatMessage]:
        """Replace the local view with the latest server history.

        Messages merged while the fetch was in flight are kept when the
        snapshot does not contain them. Both de-dup sets are rebuilt from
        the resulting view.

        Raises:
            HistoryLoadFailed: The store could not be read.
        """
        room = room_id or self._room_id or public_room_id()
        before = {message.id for message in self._messages}
        response = await self._api.list_messages(room, limit or self.history_limit)
        history = list(response.messages)

        in_history = {message.id for message in history}
        arrived = [
            message
            for message in self._messages
            if message.id not in before
            and message.id not in in_history
            and message.roomid == room
        ]
        self._messages = sorted(history + arrived, key=_sort_key)
        self._known_ids = set()
        self._known_client_ids = set()
        for message in self._messages:
            self._remember(message)
        logger.info("[Sync] Loaded %d messages for %s", len(history), room)
        self._notify()
        return history

    async def send_message(
        self,
        text: str,
        sender_name: Optional[str] = None,
        sender_id: Optional[str] = None,
        room_id: Optional[str] = None,
    ) -> ChatMessage:
        """Persist a message and merge the acknowledged copy locally.

        The later echo from the transport carries the same server ID and
        correlation ID, so it is discarded by the de-dup rule.

        Raises:
            SendFailed: The server did not persist the message. No retry.
        """
        if sender_name is None and self.identity is not None:
            sender_name = self.identity.display_name
        if sender_id is None and self.identity is not None:
            sender_id = self.identity.user_id
        request = SendMessageRequest(
            text=text,
            senderName=sender_name or "",
            senderId=sender_id,
            roomid=room_id or self._room_id or public_room_id(),
            clientId=str(uuid.uuid4()),
        )
        saved = await self._api.send_message(request)
        self.handle_inbound_event(saved)
        return saved

    # -----------------------------------------------------------------------
    # Merge
    # -----------------------------------------------------------------------

    def _remember(self, message: ChatMessage) -> None:
        self._known_ids.add(message.id)
        if message.clientId:
            self._known_client_ids.add(message.clientId)

    def _forget(self, message: ChatMessage) -> None:
        self._known_ids.discard(message.id)
        if message.clientId:
            self._known_client_ids.discard(message.clientId)

    def _is_duplicate(self, message: ChatMessage) -> bool:
        if message.id in self._known_ids:
            return True
        return bool(message.clientId) and message.clientId in self._known_client_ids

    def handle_inbound_event(self, message: ChatMessage) -> MergeResult:
        """Merge one message from any source into the local view."""
        if self._room_id is not None and message.roomid != self._room_id:
            logger.debug(
                "[Sync] Skipping %s for room %s (active: %s)",
                message.id, message.roomid, self._room_id,
            )
            return MergeResult.SKIPPED
        if self._is_duplicate(message):
            return MergeResult.SKIPPED

        self._remember(message)
        self._messages.append(message)
        # sorted() is stable, so equal timestamps keep arrival order.
        self._messages = sorted(self._messages, key=_sort_key)
        self._notify()
        return MergeResult.MERGED

    def handle_message_edited(self, message: ChatMessage) -> bool:
        """Replace a message in place by server ID. Returns False if absent."""
        for index, existing in enumerate(self._messages):
            if existing.id == message.id:
                self._forget(existing)
                self._messages[index] = message
                self._remember(message)
                self._notify()
                return True
        logger.debug("[Sync] Edit for unknown message %s ignored", message.id)
        return False

    def handle_message_deleted(self, message_id: str) -> bool:
        """Remove a message by server ID. Returns False if absent."""
        removed = [m for m in self._messages if m.id == message_id]
        if not removed:
            self._known_ids.discard(message_id)
            return False
        self._messages = [m for m in self._messages if m.id != message_id]
        for message in removed:
            self._forget(message)
        self._notify()
        return True

    def dispatch(self, event: InboundEvent) -> Optional[MergeResult]:
        """Route a broker event to its handler.

        Returns the merge outcome for ReceiveMessage, otherwise None.
        """
        if event.kind == EventKind.RECEIVE_MESSAGE:
            message = message_from_event(event)
            if message is None:
                return MergeResult.SKIPPED
            return self.handle_inbound_event(message)

        if event.kind == EventKind.MESSAGE_EDITED:
            message = message_from_event(event)
            if message is not None:
                self.handle_message_edited(message)
            return None

        if event.kind == EventKind.MESSAGE_DELETED:
            message_id = deleted_id_from_event(event)
            if message_id is not None:
                self.handle_message_deleted(message_id)
            return None

        if event.kind == EventKind.UNKNOWN:
            self.unknown_event_count += 1
            logger.warning("[Sync] Unhandled event target %r", event.target)
            return None

        for callback in list(self._event_listeners.get(event.kind, [])):
            callback(event)
        return None

    # -----------------------------------------------------------------------
    # Degraded states
    # -----------------------------------------------------------------------

    def handle_transport_dropped(self, error: Optional[SyncError] = None) -> None:
        """The transport lost its connection. Local state is kept."""
        self._connected = False
        self._last_error = error
        logger.warning("[Sync] Transport for %s dropped: %s", self._room_id, error)

    def mark_stale(self, error: SyncError) -> None:
        """Polling has failed repeatedly; the view may be out of date."""
        self._connected = False
        self._last_error = error
        logger.warning("[Sync] Room %s marked stale: %s", self._room_id, error)

    def mark_recovered(self) -> None:
        """A stale transport delivered again."""
        if self._transport is None:
            return
        self._connected = True
        self._last_error = None
        logger.info("[Sync] Room %s recovered", self._room_id)
