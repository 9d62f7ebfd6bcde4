"""Client-side message synchronization.

Builds engines wired to the configured transport:

    engine = create_engine(identity=Identity("alice", "Alice"))
    await engine.connect("public")
    await engine.load_history()
"""
from typing import Optional

from happytalk.config import SyncSettings, get_config

from .api_client import ChatApiClient
from .engine import Identity, MergeResult, MessageSyncEngine, TransportFactory
from .errors import (
    ConnectionLost,
    HistoryLoadFailed,
    NegotiateFailed,
    PollCycleFailed,
    SendFailed,
    SubscribeFailed,
    SyncError,
)
from .events import EventKind, InboundEvent, parse_event
from .transports.poll import PollTransport
from .transports.push import PushTransport


def transport_factory_for(api: ChatApiClient, settings: SyncSettings) -> TransportFactory:
    """Return a factory building the transport named in ``settings``."""
    if settings.transport == "push":
        return lambda engine: PushTransport(engine, api)
    return lambda engine: PollTransport(
        engine,
        api,
        interval=settings.poll_interval_seconds,
        limit=settings.poll_limit,
        failure_threshold=settings.poll_failure_threshold,
    )


def create_engine(
    settings: Optional[SyncSettings] = None,
    api: Optional[ChatApiClient] = None,
    identity: Optional[Identity] = None,
) -> MessageSyncEngine:
    settings = settings or get_config().sync
    api = api or ChatApiClient(settings.api_base_url)
    return MessageSyncEngine(
        api,
        transport_factory_for(api, settings),
        identity=identity,
        history_limit=settings.history_limit,
    )


__all__ = [
    "ChatApiClient",
    "ConnectionLost",
    "EventKind",
    "HistoryLoadFailed",
    "Identity",
    "InboundEvent",
    "MergeResult",
    "MessageSyncEngine",
    "NegotiateFailed",
    "PollCycleFailed",
    "PollTransport",
    "PushTransport",
    "SendFailed",
    "SubscribeFailed",
    "SyncError",
    "create_engine",
    "parse_event",
    "transport_factory_for",
]
