"""HTTP client for the HappyTalk backend.

The synchronization engine sees the backend only through this class:
history reads, message sends, negotiate and room group join/leave.
Transport and status errors from httpx are translated into the sync error
taxonomy so callers never handle httpx exceptions directly.
"""
import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from happytalk.broadcast.schemas import NegotiateResponse
from happytalk.messages.schemas import ChatMessage, MessageListResponse, SendMessageRequest

from .errors import HistoryLoadFailed, NegotiateFailed, SendFailed, SubscribeFailed, SyncError

logger = logging.getLogger(__name__)


class ChatApiClient:
    """Async client for the message and broker endpoints.

    Args:
        base_url: Backend root, e.g. ``http://localhost:3000``.
        client: Optional pre-built ``httpx.AsyncClient``. When given, its
            own base URL and transport are used as-is.
        timeout: Request timeout when the client is built here.
    """

    def __init__(
        self,
        base_url: str = "",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ChatApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _request(
        self, error_cls: type, what: str, method: str, url: str, **kwargs
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise error_cls(f"{what} failed with HTTP {exc.response.status_code}", exc) from exc
        except httpx.HTTPError as exc:
            raise error_cls(f"{what} failed", exc) from exc
        return response

    # -----------------------------------------------------------------------
    # Messages
    # -----------------------------------------------------------------------

    async def list_messages(
        self,
        roomid: str,
        limit: Optional[int] = None,
        continuation_token: Optional[str] = None,
    ) -> MessageListResponse:
        """Fetch the most recent messages for a room, oldest first.

        Raises:
            HistoryLoadFailed: On transport, status or payload errors.
        """
        params = {}
        if limit is not None:
            params["limit"] = limit
        if continuation_token:
            params["continuationToken"] = continuation_token
        response = await self._request(
            HistoryLoadFailed, f"History fetch for {roomid}", "GET",
            f"/api/messages/{roomid}", params=params,
        )
        try:
            return MessageListResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise HistoryLoadFailed(f"Malformed history for {roomid}", exc) from exc

    async def send_message(self, request: SendMessageRequest) -> ChatMessage:
        """POST a message and return the persisted copy.

        Raises:
            SendFailed: If the request fails or the response is unusable.
        """
        response = await self._request(
            SendFailed, "Send", "POST", "/api/messages",
            json=request.model_dump(exclude_none=True),
        )
        try:
            message = ChatMessage.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise SendFailed("Malformed send response", exc) from exc
        if not message.id:
            raise SendFailed("Send response carried no message ID")
        return message

    # -----------------------------------------------------------------------
    # Broker
    # -----------------------------------------------------------------------

    async def negotiate(self, user_id: Optional[str] = None) -> NegotiateResponse:
        """Obtain a broker endpoint and access token.

        Raises:
            NegotiateFailed: If the backend is unreachable or the response
                lacks an endpoint or token.
        """
        params = {"userId": user_id} if user_id else {}
        response = await self._request(
            NegotiateFailed, "Negotiate", "POST", "/api/chat/negotiate", params=params
        )
        try:
            result = NegotiateResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise NegotiateFailed("Negotiate response missing endpoint or token", exc) from exc
        if not result.url or not result.accessToken:
            raise NegotiateFailed("Negotiate response missing endpoint or token")
        return result

    async def join_room(self, roomid: str, connection_id: str) -> None:
        """Add a broker connection to a room group.

        Raises:
            SubscribeFailed: If the backend or broker rejects the join.
        """
        await self._request(
            SubscribeFailed, f"Join {roomid}", "POST",
            f"/api/rooms/{roomid}/join", json={"connectionId": connection_id},
        )

    async def leave_room(self, roomid: str, connection_id: str) -> None:
        await self._request(
            SyncError, f"Leave {roomid}", "POST",
            f"/api/rooms/{roomid}/leave", json={"connectionId": connection_id},
        )
