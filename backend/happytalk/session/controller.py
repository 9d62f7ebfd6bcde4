"""Room session controller.

Thin orchestration over one ``MessageSyncEngine``: resolves room IDs and
enforces the connect-then-baseline order on every room switch and
reconnect.
"""
import logging
from typing import List, Optional

from happytalk.messages.schemas import ChatMessage
from happytalk.rooms import dm_room_id, group_room_id, public_room_id, room_id_from_name
from happytalk.sync.engine import MessageSyncEngine

logger = logging.getLogger(__name__)


class RoomSessionController:
    def __init__(self, engine: MessageSyncEngine, history_limit: Optional[int] = None) -> None:
        self.engine = engine
        self.history_limit = history_limit

    @property
    def room_id(self) -> Optional[str]:
        return self.engine.room_id

    async def switch_room(self, room_id: str) -> List[ChatMessage]:
        """Connect to ``room_id`` and load its history baseline.

        Connect failures propagate; the baseline is only loaded once the
        transport is attached.
        """
        logger.info("[Session] Switching to %s", room_id)
        await self.engine.connect(room_id)
        return await self.engine.load_history(room_id, self.history_limit)

    async def open_public(self) -> List[ChatMessage]:
        return await self.switch_room(public_room_id())

    async def open_named(self, name: str) -> List[ChatMessage]:
        room_id = room_id_from_name(name)
        if not room_id:
            raise ValueError(f"Room name {name!r} has no usable characters")
        return await self.switch_room(room_id)

    async def open_dm(self, me: str, other: str) -> List[ChatMessage]:
        return await self.switch_room(dm_room_id(me, other))

    async def open_group(self, group_id: str) -> List[ChatMessage]:
        return await self.switch_room(group_room_id(group_id))

    async def reconnect(self) -> List[ChatMessage]:
        """Re-attach to the current room and reload its baseline.

        Raises:
            RuntimeError: No room has been opened yet.
        """
        if self.engine.room_id is None:
            raise RuntimeError("No active room to reconnect to")
        return await self.switch_room(self.engine.room_id)

    async def send(self, text: str) -> ChatMessage:
        return await self.engine.send_message(text)

    async def close(self) -> None:
        await self.engine.disconnect()
