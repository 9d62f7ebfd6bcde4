"""Push transport over the broker's client WebSocket.

Connection sequence:
    1. NEGOTIATING: ask the backend for a broker URL and access token.
    2. SUBSCRIBING: negotiate a connection with the broker itself, open
       the WebSocket, exchange the JSON protocol handshake, then ask the
       backend to add this connection to the room's group.
    3. CONNECTED: a reader task turns invocation frames into typed events
       and hands them to the engine.

Frames are JSON objects terminated by the 0x1E record separator. Only
invocations (type 1), pings (type 6) and close (type 7) matter here.
"""
import asyncio
import json
import logging
from typing import Any, Callable, List, Optional, Union

import httpx
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..api_client import ChatApiClient
from ..engine import MessageSyncEngine
from ..errors import ConnectionLost, SubscribeFailed, SyncError
from ..events import parse_event
from .base import Transport, TransportState

logger = logging.getLogger(__name__)

RECORD_SEPARATOR = "\x1e"
HANDSHAKE = {"protocol": "json", "version": 1}

FRAME_INVOCATION = 1
FRAME_PING = 6
FRAME_CLOSE = 7


def encode_frame(payload: dict) -> str:
    return json.dumps(payload, separators=(",", ":")) + RECORD_SEPARATOR


def decode_frames(raw: Union[str, bytes]) -> List[dict]:
    """Split one WebSocket message into its JSON frames.

    Frames that are not valid JSON objects are logged and dropped.
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            logger.warning("[Push] Dropping undecodable message: %s", exc)
            return []
    frames = []
    for chunk in raw.split(RECORD_SEPARATOR):
        if not chunk.strip():
            continue
        try:
            frame = json.loads(chunk)
        except ValueError:
            logger.warning("[Push] Dropping malformed frame: %.100s", chunk)
            continue
        if isinstance(frame, dict):
            frames.append(frame)
    return frames


def broker_negotiate_url(client_url: str) -> str:
    """``https://host/client/?hub=chat`` -> ``https://host/client/negotiate?hub=chat&negotiateVersion=1``."""
    url = httpx.URL(client_url)
    url = url.copy_with(path=url.path.rstrip("/") + "/negotiate")
    return str(url.copy_merge_params({"negotiateVersion": "1"}))


def websocket_url(client_url: str, connection_token: str, access_token: str) -> str:
    url = httpx.URL(client_url)
    scheme = "wss" if url.scheme == "https" else "ws"
    url = url.copy_with(scheme=scheme)
    return str(url.copy_merge_params({"id": connection_token, "access_token": access_token}))


class PushTransport(Transport):
    """Live delivery through the managed broker.

    Args:
        engine: Engine receiving dispatched events.
        api: Backend client (negotiate, join, leave).
        connect: WebSocket opener, ``websockets.connect`` by default.
        http_client: Client for the broker's negotiate endpoint. One is
            created (and closed on stop) when not given.
        timeout: Seconds allowed for the broker negotiate, the socket open
            and the handshake ack.
    """

    def __init__(
        self,
        engine: MessageSyncEngine,
        api: ChatApiClient,
        connect: Callable[..., Any] = websockets.connect,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ) -> None:
        self._engine = engine
        self._api = api
        self._connect = connect
        self._http = http_client
        self._owns_http = http_client is None
        self.timeout = timeout
        self.state = TransportState.DISCONNECTED
        self.connection_id: Optional[str] = None
        self._room_id: Optional[str] = None
        self._ws = None
        self._reader: Optional[asyncio.Task] = None
        self._joined = False
        self._stopping = False
        self._backlog: List[dict] = []

    @property
    def room_id(self) -> Optional[str]:
        return self._room_id

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    async def start(self, room_id: str, identity_hint: Optional[str] = None) -> None:
        """Negotiate, connect and join ``room_id``.

        Raises:
            NegotiateFailed: The backend would not issue broker credentials.
            SubscribeFailed: The broker connection or group join failed.
        """
        self._room_id = room_id
        self._stopping = False

        self.state = TransportState.NEGOTIATING
        try:
            credentials = await self._api.negotiate(identity_hint)
        except SyncError:
            self.state = TransportState.DISCONNECTED
            raise

        self.state = TransportState.SUBSCRIBING
        try:
            await self._open(credentials.url, credentials.accessToken)
            await self._api.join_room(room_id, self.connection_id)
        except SubscribeFailed:
            await self._teardown()
            raise
        except (
            httpx.HTTPError,
            OSError,
            WebSocketException,
            asyncio.TimeoutError,
            KeyError,
            TypeError,
            ValueError,
        ) as exc:
            await self._teardown()
            raise SubscribeFailed(f"Could not subscribe to {room_id}", exc) from exc

        self._joined = True
        self.state = TransportState.CONNECTED
        self._reader = asyncio.create_task(self._read_loop(), name=f"push:{room_id}")
        logger.info("[Push] Connected to %s as %s", room_id, self.connection_id)

    async def stop(self) -> None:
        """Leave the room group and close the socket. Never raises."""
        self._stopping = True
        reader, self._reader = self._reader, None
        if reader is not None:
            reader.cancel()
            if reader is not asyncio.current_task():
                try:
                    await reader
                except asyncio.CancelledError:
                    pass
                except Exception as exc:
                    logger.warning("[Push] Reader for %s ended with %r", self._room_id, exc)

        if self._joined and self.connection_id and self._room_id:
            try:
                await self._api.leave_room(self._room_id, self.connection_id)
            except SyncError as exc:
                logger.warning("[Push] Leave %s failed: %s", self._room_id, exc)
        self._joined = False
        await self._teardown()

    async def _teardown(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except (WebSocketException, OSError) as exc:
                logger.warning("[Push] Error closing socket: %s", exc)
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None
        self.state = TransportState.DISCONNECTED

    # -----------------------------------------------------------------------
    # Connection setup
    # -----------------------------------------------------------------------

    async def _open(self, client_url: str, access_token: str) -> None:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.timeout)
        response = await self._http.post(
            broker_negotiate_url(client_url),
            headers={"Authorization": f"Bearer {access_token}"},
        )
        response.raise_for_status()
        body = response.json()
        self.connection_id = body["connectionId"]
        connection_token = body.get("connectionToken") or self.connection_id

        self._ws = await asyncio.wait_for(
            self._connect(websocket_url(client_url, connection_token, access_token)),
            timeout=self.timeout,
        )
        await self._ws.send(encode_frame(HANDSHAKE))
        ack = await asyncio.wait_for(self._ws.recv(), timeout=self.timeout)
        frames = decode_frames(ack)
        if not frames:
            raise ValueError("Empty handshake response")
        if frames[0].get("error"):
            raise ValueError(f"Handshake rejected: {frames[0]['error']}")
        self._backlog = frames[1:]

    # -----------------------------------------------------------------------
    # Receiving
    # -----------------------------------------------------------------------

    async def _read_loop(self) -> None:
        cause: Optional[BaseException] = None
        try:
            alive = self._handle_frames(self._backlog)
            self._backlog = []
            if alive:
                async for raw in self._ws:
                    if not self._handle_frames(decode_frames(raw)):
                        break
        except ConnectionClosed as exc:
            cause = exc
        except Exception as exc:
            logger.exception("[Push] Reader for %s failed", self._room_id)
            cause = exc
        self._dropped(cause)

    def _dropped(self, cause: Optional[BaseException]) -> None:
        if self._stopping:
            return
        self.state = TransportState.DISCONNECTED
        self._engine.handle_transport_dropped(
            ConnectionLost(f"Push connection to {self._room_id} lost", cause)
        )

    def _handle_frames(self, frames: List[dict]) -> bool:
        """Dispatch frames in order. Returns False once the server closes."""
        for frame in frames:
            frame_type = frame.get("type")
            if frame_type == FRAME_INVOCATION:
                self._dispatch(frame)
            elif frame_type == FRAME_PING:
                continue
            elif frame_type == FRAME_CLOSE:
                logger.warning("[Push] Server closed connection: %s", frame.get("error"))
                return False
            else:
                logger.debug("[Push] Ignoring frame type %s", frame_type)
        return True

    def _dispatch(self, frame: dict) -> None:
        event = parse_event(frame)
        try:
            self._engine.dispatch(event)
        except Exception:
            logger.exception("[Push] Handler for %s failed", event.target)
