"""Transport interface shared by the push and poll implementations."""
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional


class TransportState(str, Enum):
    DISCONNECTED = "disconnected"
    NEGOTIATING = "negotiating"
    SUBSCRIBING = "subscribing"
    CONNECTED = "connected"


class Transport(ABC):
    """Delivers live messages for one room into its engine.

    A transport is single-use: the engine builds a new one on every
    ``connect()`` and stops the old one first.
    """

    state: TransportState = TransportState.DISCONNECTED

    @abstractmethod
    async def start(self, room_id: str, identity_hint: Optional[str] = None) -> None:
        """Attach to ``room_id``. Raises a ``SyncError`` on failure."""

    @abstractmethod
    async def stop(self) -> None:
        """Detach and release resources. Must be safe to call repeatedly."""
