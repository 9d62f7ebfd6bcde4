"""Polling transport.

Fetches the latest page of a room on a fixed interval and merges anything
the engine has not seen yet. Used when the broker is not configured.
"""
import asyncio
import logging
from typing import Optional

from ..api_client import ChatApiClient
from ..engine import MergeResult, MessageSyncEngine
from ..errors import PollCycleFailed
from .base import Transport, TransportState

logger = logging.getLogger(__name__)


class PollTransport(Transport):
    """Periodic history reads merged through the engine's de-dup path.

    Args:
        engine: Engine that owns the local view.
        api: Backend client.
        interval: Seconds between cycles.
        limit: Messages fetched per cycle.
        failure_threshold: Consecutive failures after which the engine is
            marked stale. ``None`` never escalates.
    """

    def __init__(
        self,
        engine: MessageSyncEngine,
        api: ChatApiClient,
        interval: float = 2.0,
        limit: int = 50,
        failure_threshold: Optional[int] = None,
    ) -> None:
        self._engine = engine
        self._api = api
        self.interval = interval
        self.limit = limit
        self.failure_threshold = failure_threshold
        self.state = TransportState.DISCONNECTED
        self.consecutive_failures = 0
        self._stale = False
        self._room_id: Optional[str] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def room_id(self) -> Optional[str]:
        return self._room_id

    async def start(self, room_id: str, identity_hint: Optional[str] = None) -> None:
        await self.stop()
        self._room_id = room_id
        self.consecutive_failures = 0
        self._stale = False
        self._task = asyncio.create_task(self._poll_loop(), name=f"poll:{room_id}")
        self.state = TransportState.CONNECTED
        logger.info("[Poll] Polling %s every %.1fs", room_id, self.interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            if task is not asyncio.current_task():
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            logger.info("[Poll] Stopped polling %s", self._room_id)
        self.state = TransportState.DISCONNECTED

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.run_cycle()

    async def run_cycle(self) -> int:
        """One poll cycle with the failure policy applied. Never raises."""
        try:
            merged = await self.poll_once()
        except Exception as exc:
            self._record_failure(exc)
            return 0
        self._record_success()
        return merged

    async def poll_once(self) -> int:
        """Fetch the latest page and merge unseen messages.

        Returns:
            Number of messages merged; 0 means the view was not touched.
        """
        if self._room_id is None:
            return 0
        response = await self._api.list_messages(self._room_id, self.limit)
        fresh = [m for m in response.messages if not self._engine.is_known(m.id)]
        merged = 0
        for message in fresh:
            if self._engine.handle_inbound_event(message) is MergeResult.MERGED:
                merged += 1
        if merged:
            logger.debug("[Poll] Merged %d new messages for %s", merged, self._room_id)
        return merged

    def _record_failure(self, exc: Exception) -> None:
        self.consecutive_failures += 1
        error = PollCycleFailed(f"Poll of {self._room_id} failed", exc)
        logger.error("[Poll] %s (streak %d)", error, self.consecutive_failures)
        if (
            self.failure_threshold is not None
            and not self._stale
            and self.consecutive_failures >= self.failure_threshold
        ):
            self._stale = True
            self._engine.mark_stale(error)

    def _record_success(self) -> None:
        self.consecutive_failures = 0
        if self._stale:
            self._stale = False
            self._engine.mark_recovered()
