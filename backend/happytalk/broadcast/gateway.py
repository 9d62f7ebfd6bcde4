"""Broadcast gateway for the managed pub/sub broker.

The broker runs in serverless mode: the backend never holds client
connections itself. It mints client access tokens ("negotiate") and pushes
events through the broker's REST API:

    POST   {endpoint}/api/v1/hubs/{hub}                                  all clients
    POST   {endpoint}/api/v1/hubs/{hub}/groups/{group}                   one room
    POST   {endpoint}/api/v1/hubs/{hub}/users/{user}                     one user
    PUT    {endpoint}/api/v1/hubs/{hub}/groups/{group}/connections/{id}  join
    DELETE {endpoint}/api/v1/hubs/{hub}/groups/{group}/connections/{id}  leave

Every body is ``{"target": <event name>, "arguments": [...]}``.

Fan-out failures are logged and reported as False; a message that has
already been persisted must not fail because a broadcast did. Group
membership failures raise ``GroupMembershipError`` because the joining
client cannot receive room events without it.
"""
import logging
import re
import time
from typing import Any, Dict, List, Optional

import httpx

from happytalk.messages.schemas import ChatMessage
from happytalk.sync.events import EventKind

from .schemas import NegotiateResponse
from .tokens import mint_token

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


class BroadcastConfigError(ValueError):
    """The broker connection string is missing or malformed."""


class GroupMembershipError(RuntimeError):
    """The broker rejected a group join/leave."""


def parse_connection_string(connection_string: str) -> Dict[str, str]:
    """Split ``Endpoint=...;AccessKey=...;`` into its parts.

    Whitespace anywhere in the string is dropped and keys match
    case-insensitively. Values may themselves contain ``=``.

    Raises:
        BroadcastConfigError: If Endpoint or AccessKey is missing.
    """
    cleaned = _WHITESPACE.sub("", connection_string or "")
    parts: Dict[str, str] = {}
    for part in cleaned.split(";"):
        if not part:
            continue
        key, _, value = part.partition("=")
        parts[key.lower()] = value

    endpoint = parts.get("endpoint", "").rstrip("/")
    access_key = parts.get("accesskey", "")
    if not endpoint or not access_key:
        raise BroadcastConfigError("Invalid connection string: missing Endpoint or AccessKey")
    return {"endpoint": endpoint, "access_key": access_key}


class BroadcastGateway:
    """REST client for the pub/sub broker.

    Args:
        connection_string: Broker connection string.
        hub_name: Hub all events are published to.
        token_ttl_minutes: Lifetime of minted tokens.
        timeout: Per-request timeout for REST calls.
        client: Optional pre-built ``httpx.AsyncClient`` (tests inject one
            backed by ``httpx.MockTransport``).
    """

    def __init__(
        self,
        connection_string: str,
        hub_name: str = "chat",
        token_ttl_minutes: int = 60,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        parsed = parse_connection_string(connection_string)
        self.endpoint = parsed["endpoint"]
        self._access_key = parsed["access_key"]
        self.hub_name = hub_name
        self.token_ttl_minutes = token_ttl_minutes
        self._client = client or httpx.AsyncClient(timeout=timeout)
        logger.info("[Broadcast] Gateway initialized: %s, hub: %s", self.endpoint, self.hub_name)

    async def aclose(self) -> None:
        await self._client.aclose()

    # -----------------------------------------------------------------------
    # URLs and tokens
    # -----------------------------------------------------------------------

    @property
    def client_url(self) -> str:
        return f"{self.endpoint}/client/?hub={self.hub_name}"

    @property
    def _hub_api(self) -> str:
        return f"{self.endpoint}/api/v1/hubs/{self.hub_name}"

    def client_token(self, user_id: str) -> str:
        return mint_token(self._access_key, self.client_url, self.token_ttl_minutes, subject=user_id)

    def server_token(self) -> str:
        return mint_token(self._access_key, self._hub_api, self.token_ttl_minutes)

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.server_token()}"}

    # -----------------------------------------------------------------------
    # Negotiate
    # -----------------------------------------------------------------------

    def negotiate(self, user_id: Optional[str] = None) -> NegotiateResponse:
        """Issue a client endpoint and access token.

        Anonymous callers get a generated ``user-{millis}`` identity.
        """
        client_user_id = user_id or f"user-{int(time.time() * 1000)}"
        logger.info("[Broadcast] Negotiate for user %s: %s", client_user_id, self.client_url)
        return NegotiateResponse(url=self.client_url, accessToken=self.client_token(client_user_id))

    # -----------------------------------------------------------------------
    # Fan-out
    # -----------------------------------------------------------------------

    async def _send(self, url: str, target: str, arguments: List[Any]) -> bool:
        try:
            response = await self._client.post(
                url,
                json={"target": target, "arguments": arguments},
                headers=self._headers(),
            )
        except httpx.HTTPError as exc:
            logger.error("[Broadcast] Error sending %s to %s: %s", target, url, exc)
            return False
        if response.is_error:
            logger.error(
                "[Broadcast] Failed to send %s to %s: %s %s",
                target, url, response.status_code, response.text,
            )
            return False
        return True

    async def send_to_group(self, group: str, target: str, arguments: List[Any]) -> bool:
        return await self._send(f"{self._hub_api}/groups/{group}", target, arguments)

    async def send_to_user(self, user_id: str, target: str, arguments: List[Any]) -> bool:
        return await self._send(f"{self._hub_api}/users/{user_id}", target, arguments)

    async def send_to_all(self, target: str, arguments: List[Any]) -> bool:
        return await self._send(self._hub_api, target, arguments)

    async def broadcast_message(self, message: ChatMessage) -> bool:
        ok = await self.send_to_group(
            message.roomid, EventKind.RECEIVE_MESSAGE.value, [message.to_wire()]
        )
        if ok:
            logger.info("[Broadcast] Message %s broadcast to room %s", message.id, message.roomid)
        return ok

    async def broadcast_message_edited(self, message: ChatMessage) -> bool:
        return await self.send_to_group(
            message.roomid, EventKind.MESSAGE_EDITED.value, [message.to_wire()]
        )

    async def broadcast_message_deleted(self, message_id: str, roomid: str) -> bool:
        return await self.send_to_group(
            roomid,
            EventKind.MESSAGE_DELETED.value,
            [{"messageId": message_id, "roomid": roomid}],
        )

    async def broadcast_user_online(self, user_id: str, user_profile: Optional[dict] = None) -> bool:
        return await self.send_to_all(
            EventKind.USER_ONLINE.value, [{"userId": user_id, "userProfile": user_profile}]
        )

    async def broadcast_user_offline(self, user_id: str) -> bool:
        return await self.send_to_all(EventKind.USER_OFFLINE.value, [{"userId": user_id}])

    # -----------------------------------------------------------------------
    # Group membership
    # -----------------------------------------------------------------------

    async def _membership(self, method: str, connection_id: str, group: str) -> None:
        url = f"{self._hub_api}/groups/{group}/connections/{connection_id}"
        try:
            response = await self._client.request(method, url, headers=self._headers())
        except httpx.HTTPError as exc:
            raise GroupMembershipError(f"{method} {url} failed: {exc}") from exc
        if response.is_error:
            raise GroupMembershipError(
                f"{method} {url} failed: {response.status_code} {response.text}"
            )

    async def add_to_group(self, connection_id: str, group: str) -> None:
        await self._membership("PUT", connection_id, group)
        logger.info("[Broadcast] Connection %s joined group %s", connection_id, group)

    async def remove_from_group(self, connection_id: str, group: str) -> None:
        await self._membership("DELETE", connection_id, group)
        logger.info("[Broadcast] Connection %s left group %s", connection_id, group)


# Module-level gateway, set during app startup when a connection string exists.
_gateway: Optional[BroadcastGateway] = None


def get_gateway() -> Optional[BroadcastGateway]:
    return _gateway


def set_gateway(gateway: Optional[BroadcastGateway]) -> None:
    global _gateway
    _gateway = gateway
