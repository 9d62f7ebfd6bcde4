"""Tests for the message HTTP routes and MessageService."""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from happytalk.main import app
from happytalk.messages.schemas import SendMessageRequest
from happytalk.messages.service import MessageService, MessageValidationError, get_message_service

from conftest import ADMIN_TOKEN, make_message


def _mock_gateway():
    gateway = MagicMock()
    gateway.broadcast_message = AsyncMock(return_value=True)
    gateway.broadcast_message_edited = AsyncMock(return_value=True)
    gateway.broadcast_message_deleted = AsyncMock(return_value=True)
    return gateway


@pytest.fixture
def gateway():
    return _mock_gateway()


@pytest.fixture
def service(memory_store, gateway):
    return MessageService(memory_store, gateway, default_page_size=50, max_page_size=100)


@pytest.fixture
def client(service, admin_config):
    app.dependency_overrides[get_message_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


def _admin():
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}


class TestMessageService:
    @pytest.mark.asyncio
    async def test_send_assigns_id_and_timestamp(self, service, gateway):
        saved = await service.send_message(
            SendMessageRequest(text="hi", senderName="alice", clientId="c-1")
        )

        assert saved.id
        assert saved.createdAt
        assert saved.roomid == "public"
        assert saved.type == "public"
        assert saved.clientId == "c-1"
        gateway.broadcast_message.assert_awaited_once_with(saved)

    @pytest.mark.asyncio
    async def test_named_room_type(self, service):
        saved = await service.send_message(
            SendMessageRequest(text="hi", senderName="alice", roomid="team")
        )
        assert saved.type == "named"

    @pytest.mark.asyncio
    async def test_dm_recipient_is_derived(self, service):
        saved = await service.send_message(
            SendMessageRequest(text="hi", senderName="U1", senderId="u1", roomid="dm-u1-u2")
        )
        assert saved.type == "dm"
        assert saved.recipientId == "u2"

    @pytest.mark.asyncio
    async def test_blank_text_rejected(self, service, gateway):
        with pytest.raises(MessageValidationError):
            await service.send_message(SendMessageRequest(text="   ", senderName="alice"))
        gateway.broadcast_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_send_without_gateway(self, memory_store):
        svc = MessageService(memory_store, gateway=None)
        saved = await svc.send_message(SendMessageRequest(text="hi", senderName="alice"))
        listed = await svc.list_messages("public")
        assert [m.id for m in listed.messages] == [saved.id]

    @pytest.mark.asyncio
    async def test_limit_is_clamped(self, memory_store):
        svc = MessageService(memory_store, max_page_size=2)
        for i in range(4):
            await memory_store.save_message(make_message(f"m{i}", at=i))

        page = await svc.list_messages("public", limit=500)

        assert len(page.messages) == 2

    @pytest.mark.asyncio
    async def test_edit_marks_edited_and_broadcasts(self, service, gateway):
        saved = await service.send_message(SendMessageRequest(text="old", senderName="alice"))

        edited = await service.edit_message(saved.id, "public", "new")

        assert edited.text == "new"
        assert edited.isEdited is True
        assert edited.editedAt is not None
        gateway.broadcast_message_edited.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_delete_broadcasts(self, service, gateway):
        saved = await service.send_message(SendMessageRequest(text="bye", senderName="alice"))

        assert await service.delete_message(saved.id, "public") is True
        gateway.broadcast_message_deleted.assert_awaited_once_with(saved.id, "public")
        assert await service.delete_message(saved.id, "public") is False


class TestGetMessages:
    def test_empty_room(self, client):
        response = client.get("/api/messages/public")
        assert response.status_code == 200
        assert response.json() == {"messages": []}

    def test_history_order(self, client, memory_store):
        asyncio.run(memory_store.save_message(make_message("m2", at=2)))
        asyncio.run(memory_store.save_message(make_message("m1", at=1)))

        response = client.get("/api/messages/public", params={"limit": 10})

        assert [m["id"] for m in response.json()["messages"]] == ["m1", "m2"]

    def test_bad_token_is_400(self, client):
        response = client.get("/api/messages/public", params={"continuationToken": "abc"})
        assert response.status_code == 400


class TestPostMessage:
    def test_created(self, client, gateway):
        response = client.post(
            "/api/messages",
            json={"text": "hello", "senderName": "alice", "roomid": "public", "clientId": "c-9"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["text"] == "hello"
        assert body["clientId"] == "c-9"
        assert body["id"]
        gateway.broadcast_message.assert_awaited_once()

    def test_missing_sender_is_400(self, client):
        response = client.post("/api/messages", json={"text": "hello", "senderName": ""})
        assert response.status_code == 400

    def test_sent_message_is_listed(self, client):
        sent = client.post("/api/messages", json={"text": "x", "senderName": "a"}).json()
        listed = client.get("/api/messages/public").json()["messages"]
        assert [m["id"] for m in listed] == [sent["id"]]


class TestPrivilegedRoutes:
    def _send(self, client):
        return client.post("/api/messages", json={"text": "x", "senderName": "a"}).json()

    def test_edit_requires_token(self, client):
        sent = self._send(client)
        response = client.patch(
            f"/api/messages/{sent['id']}", json={"text": "y", "roomid": "public"}
        )
        assert response.status_code == 401

    def test_edit_rejects_non_admin(self, client):
        sent = self._send(client)
        response = client.patch(
            f"/api/messages/{sent['id']}",
            json={"text": "y", "roomid": "public"},
            headers={"Authorization": "Bearer someone-else"},
        )
        assert response.status_code == 403

    def test_edit_as_admin(self, client):
        sent = self._send(client)
        response = client.patch(
            f"/api/messages/{sent['id']}",
            json={"text": "y", "roomid": "public"},
            headers=_admin(),
        )
        assert response.status_code == 200
        assert response.json()["text"] == "y"
        assert response.json()["isEdited"] is True

    def test_edit_missing_is_404(self, client):
        response = client.patch(
            "/api/messages/ghost", json={"text": "y", "roomid": "public"}, headers=_admin()
        )
        assert response.status_code == 404

    def test_delete_as_admin(self, client):
        sent = self._send(client)
        response = client.delete(
            f"/api/messages/{sent['id']}", params={"roomid": "public"}, headers=_admin()
        )
        assert response.status_code == 204
        assert client.get("/api/messages/public").json()["messages"] == []

    def test_delete_missing_is_404(self, client):
        response = client.delete(
            "/api/messages/ghost", params={"roomid": "public"}, headers=_admin()
        )
        assert response.status_code == 404

    def test_delete_requires_token(self, client):
        response = client.delete("/api/messages/x", params={"roomid": "public"})
        assert response.status_code == 401
