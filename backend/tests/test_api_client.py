"""Tests for ChatApiClient error translation."""
import json

import httpx
import pytest

from happytalk.messages.schemas import SendMessageRequest
from happytalk.sync.api_client import ChatApiClient
from happytalk.sync.errors import HistoryLoadFailed, NegotiateFailed, SendFailed, SubscribeFailed

from conftest import make_message


def _client(handler) -> ChatApiClient:
    http = httpx.AsyncClient(
        base_url="http://backend.test", transport=httpx.MockTransport(handler)
    )
    return ChatApiClient(client=http)


class TestListMessages:
    @pytest.mark.asyncio
    async def test_parses_page(self):
        def handler(request):
            assert request.url.path == "/api/messages/public"
            assert request.url.params["limit"] == "20"
            return httpx.Response(200, json={"messages": [make_message("m1").to_wire()]})

        async with _client(handler) as api:
            page = await api.list_messages("public", limit=20)

        assert [m.id for m in page.messages] == ["m1"]

    @pytest.mark.asyncio
    async def test_status_error(self):
        async with _client(lambda request: httpx.Response(500)) as api:
            with pytest.raises(HistoryLoadFailed) as exc_info:
                await api.list_messages("public")
        assert "500" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with _client(handler) as api:
            with pytest.raises(HistoryLoadFailed) as exc_info:
                await api.list_messages("public")
        assert isinstance(exc_info.value.cause, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_malformed_body(self):
        async with _client(lambda request: httpx.Response(200, text="not json")) as api:
            with pytest.raises(HistoryLoadFailed):
                await api.list_messages("public")


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_posts_body(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            body = make_message("srv-1", client_id="c-1").to_wire()
            return httpx.Response(201, json=body)

        async with _client(handler) as api:
            saved = await api.send_message(
                SendMessageRequest(text="hi", senderName="alice", roomid="public", clientId="c-1")
            )

        assert saved.id == "srv-1"
        assert seen[0] == {"text": "hi", "senderName": "alice", "roomid": "public", "clientId": "c-1"}

    @pytest.mark.asyncio
    async def test_failure(self):
        async with _client(lambda request: httpx.Response(400, json={"error": "bad"})) as api:
            with pytest.raises(SendFailed):
                await api.send_message(SendMessageRequest(text="", senderName="a"))


class TestBrokerCalls:
    @pytest.mark.asyncio
    async def test_negotiate(self):
        def handler(request):
            assert request.url.params["userId"] == "u1"
            return httpx.Response(200, json={"url": "https://b/client/?hub=chat", "accessToken": "t"})

        async with _client(handler) as api:
            result = await api.negotiate("u1")
        assert result.accessToken == "t"

    @pytest.mark.asyncio
    async def test_negotiate_missing_token(self):
        async with _client(lambda request: httpx.Response(200, json={"url": "x"})) as api:
            with pytest.raises(NegotiateFailed):
                await api.negotiate()

    @pytest.mark.asyncio
    async def test_negotiate_unconfigured(self):
        async with _client(lambda request: httpx.Response(503)) as api:
            with pytest.raises(NegotiateFailed):
                await api.negotiate()

    @pytest.mark.asyncio
    async def test_join_failure(self):
        async with _client(lambda request: httpx.Response(502)) as api:
            with pytest.raises(SubscribeFailed):
                await api.join_room("public", "conn-1")

    @pytest.mark.asyncio
    async def test_join_sends_connection_id(self):
        seen = []

        def handler(request):
            seen.append((request.url.path, json.loads(request.content)))
            return httpx.Response(200, json={"success": True, "roomid": "public"})

        async with _client(handler) as api:
            await api.join_room("public", "conn-1")
            await api.leave_room("public", "conn-1")

        assert seen == [
            ("/api/rooms/public/join", {"connectionId": "conn-1"}),
            ("/api/rooms/public/leave", {"connectionId": "conn-1"}),
        ]
