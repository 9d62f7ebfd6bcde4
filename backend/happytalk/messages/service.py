"""MessageService: persist-then-broadcast for chat messages.

Persistence is the single ordering authority: the server assigns the
message ID and ``createdAt`` before the store write, and the broadcast goes
out only after the write succeeded. A broadcast failure is logged by the
gateway and does not fail the request; polling clients still see the
message on their next cycle.
"""
import logging
import uuid
from typing import Optional

from happytalk.broadcast.gateway import BroadcastGateway, get_gateway
from happytalk.config import get_config
from happytalk.rooms import extract_dm_participants, public_room_id, room_kind

from .schemas import ChatMessage, MessageListResponse, SendMessageRequest, utc_now_iso
from .store import DuckDBMessageStore, MessageStore

logger = logging.getLogger(__name__)


class MessageValidationError(ValueError):
    """A send/edit request is missing required content."""


class MessageService:
    """Room-scoped message operations over a store and an optional broker."""

    def __init__(
        self,
        store: MessageStore,
        gateway: Optional[BroadcastGateway] = None,
        default_page_size: int = 50,
        max_page_size: int = 100,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size

    def _clamp_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.default_page_size
        return max(1, min(limit, self.max_page_size))

    async def list_messages(
        self,
        roomid: str,
        limit: Optional[int] = None,
        continuation_token: Optional[str] = None,
    ) -> MessageListResponse:
        return await self.store.list_messages(roomid, self._clamp_limit(limit), continuation_token)

    async def send_message(self, request: SendMessageRequest) -> ChatMessage:
        """Validate, persist and broadcast a new message.

        Raises:
            MessageValidationError: If text or sender name is blank.
        """
        if not request.text or not request.text.strip():
            raise MessageValidationError("Message text is required")
        if not request.senderName or not request.senderName.strip():
            raise MessageValidationError("Sender name is required")

        roomid = request.roomid or public_room_id()
        kind = room_kind(roomid)
        recipient_id = request.recipientId
        if kind == "dm" and recipient_id is None and request.senderId:
            participants = extract_dm_participants(roomid)
            if participants and request.senderId in participants:
                a, b = participants
                recipient_id = b if request.senderId == a else a

        message = ChatMessage(
            id=str(uuid.uuid4()),
            roomid=roomid,
            text=request.text.strip(),
            senderName=request.senderName.strip(),
            senderId=request.senderId,
            createdAt=utc_now_iso(),
            clientId=request.clientId,
            type=kind,
            recipientId=recipient_id,
        )
        saved = await self.store.save_message(message)
        logger.info("[Messages] Saved %s in room %s (clientId=%s)", saved.id, roomid, saved.clientId)

        if self.gateway is not None:
            await self.gateway.broadcast_message(saved)
        return saved

    async def edit_message(self, message_id: str, roomid: str, text: str) -> Optional[ChatMessage]:
        """Replace a message's text and mark it edited. None if not found."""
        if not text or not text.strip():
            raise MessageValidationError("Message text is required")
        existing = await self.store.get_message(message_id, roomid)
        if existing is None:
            return None
        edited = existing.model_copy(
            update={"text": text.strip(), "isEdited": True, "editedAt": utc_now_iso()}
        )
        updated = await self.store.update_message(edited)
        if updated is None:
            return None
        logger.info("[Messages] Edited %s in room %s", message_id, roomid)
        if self.gateway is not None:
            await self.gateway.broadcast_message_edited(updated)
        return updated

    async def delete_message(self, message_id: str, roomid: str) -> bool:
        deleted = await self.store.delete_message(message_id, roomid)
        if not deleted:
            return False
        logger.info("[Messages] Deleted %s from room %s", message_id, roomid)
        if self.gateway is not None:
            await self.gateway.broadcast_message_deleted(message_id, roomid)
        return True


def get_message_service() -> MessageService:
    """Build a MessageService over the process-wide store and gateway."""
    config = get_config()
    store = DuckDBMessageStore.get_instance(
        config.store.db_path, config.store.default_ttl_seconds
    )
    return MessageService(
        store=store,
        gateway=get_gateway(),
        default_page_size=config.store.default_page_size,
        max_page_size=config.store.max_page_size,
    )
