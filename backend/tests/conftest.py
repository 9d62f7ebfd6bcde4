"""Shared test fixtures and fakes for backend and sync tests."""
import itertools
import uuid
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from happytalk.broadcast.schemas import NegotiateResponse
from happytalk.config import AppSettings, AdminSecrets, Secrets, reset_config, set_config
from happytalk.messages.schemas import ChatMessage, MessageListResponse, SendMessageRequest
from happytalk.messages.store import DuckDBMessageStore
from happytalk.sync.transports.base import Transport, TransportState

ADMIN_TOKEN = "admin-token-123"
BASE_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def ts(seconds: float) -> str:
    """ISO timestamp ``seconds`` after a fixed base time."""
    return (BASE_TIME + timedelta(seconds=seconds)).isoformat()


def make_message(
    message_id: str,
    roomid: str = "public",
    at: float = 0,
    text: Optional[str] = None,
    client_id: Optional[str] = None,
    sender: str = "alice",
) -> ChatMessage:
    return ChatMessage(
        id=message_id,
        roomid=roomid,
        text=text or f"message {message_id}",
        senderName=sender,
        senderId=sender,
        createdAt=ts(at),
        clientId=client_id,
    )


class FakeChatApi:
    """In-memory stand-in for ``ChatApiClient`` modelling one backend.

    Several engines may share one instance to simulate several clients
    talking to the same server.
    """

    def __init__(self) -> None:
        self.rooms: Dict[str, List[ChatMessage]] = defaultdict(list)
        self._clock = itertools.count(1)
        self.list_error: Optional[Exception] = None
        self.send_error: Optional[Exception] = None
        self.negotiate_error: Optional[Exception] = None
        self.join_error: Optional[Exception] = None
        self.leave_error: Optional[Exception] = None
        self.list_calls: List[str] = []
        self.joined: List[tuple] = []
        self.left: List[tuple] = []

    def seed(self, *messages: ChatMessage) -> None:
        for message in messages:
            self.rooms[message.roomid].append(message)

    async def list_messages(self, roomid, limit=None, continuation_token=None):
        self.list_calls.append(roomid)
        if self.list_error is not None:
            raise self.list_error
        stored = sorted(self.rooms[roomid], key=lambda m: m.created_at())
        if limit is not None:
            stored = stored[-limit:]
        return MessageListResponse(messages=list(stored))

    async def send_message(self, request: SendMessageRequest) -> ChatMessage:
        if self.send_error is not None:
            raise self.send_error
        message = ChatMessage(
            id=str(uuid.uuid4()),
            roomid=request.roomid,
            text=request.text,
            senderName=request.senderName,
            senderId=request.senderId,
            createdAt=ts(1000 + next(self._clock)),
            clientId=request.clientId,
        )
        self.rooms[message.roomid].append(message)
        return message

    async def negotiate(self, user_id=None) -> NegotiateResponse:
        if self.negotiate_error is not None:
            raise self.negotiate_error
        return NegotiateResponse(
            url="https://broker.example.com/client/?hub=chat", accessToken="client-token"
        )

    async def join_room(self, roomid, connection_id):
        if self.join_error is not None:
            raise self.join_error
        self.joined.append((roomid, connection_id))

    async def leave_room(self, roomid, connection_id):
        if self.leave_error is not None:
            raise self.leave_error
        self.left.append((roomid, connection_id))


class FakeTransport(Transport):
    """Transport that records its lifecycle and never delivers on its own."""

    def __init__(self, engine, start_error: Optional[Exception] = None) -> None:
        self.engine = engine
        self.start_error = start_error
        self.started_with: Optional[str] = None
        self.stop_calls = 0

    async def start(self, room_id, identity_hint=None):
        self.started_with = room_id
        if self.start_error is not None:
            raise self.start_error
        self.state = TransportState.CONNECTED

    async def stop(self):
        self.stop_calls += 1
        self.state = TransportState.DISCONNECTED


@pytest.fixture
def fake_api():
    return FakeChatApi()


@pytest.fixture
def transports():
    """Every FakeTransport built by the ``transport_factory`` fixture."""
    return []


@pytest.fixture
def transport_factory(transports):
    def factory(engine):
        transport = FakeTransport(engine)
        transports.append(transport)
        return transport
    return factory


@pytest.fixture
def memory_store():
    store = DuckDBMessageStore(db_path=":memory:")
    yield store
    store.close()


@pytest.fixture
def admin_config():
    """Install settings with a known admin token for the request scope."""
    settings = AppSettings(secrets=Secrets(admin=AdminSecrets(tokens=[ADMIN_TOKEN])))
    set_config(settings)
    yield settings
    reset_config()
