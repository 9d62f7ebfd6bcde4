"""Broker routes: negotiate and room group membership.

Endpoints:
    - POST|GET /api/chat/negotiate: Client endpoint + access token
    - POST /api/rooms/{roomid}/join: Add a broker connection to a room group
    - POST /api/rooms/{roomid}/leave: Remove it again
"""
import logging
from typing import Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from .gateway import BroadcastGateway, GroupMembershipError, get_gateway
from .schemas import RoomMembershipRequest, RoomMembershipResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["broadcast"])


def _unavailable() -> JSONResponse:
    return JSONResponse({"error": "Real-time broadcast is not configured"}, status_code=503)


def _negotiate(user_id: Optional[str]) -> JSONResponse:
    gateway = get_gateway()
    if gateway is None:
        return _unavailable()
    try:
        result = gateway.negotiate(user_id)
    except Exception as e:
        logger.error(f"[Broadcast] Negotiate failed: {e}")
        return JSONResponse({"error": "Failed to negotiate connection"}, status_code=500)
    return JSONResponse(result.model_dump())


@router.post("/chat/negotiate")
async def negotiate_post(
    userId: Optional[str] = Query(None, description="Identity hint for the access token")
) -> JSONResponse:
    """Issue a broker endpoint and access token.

    Returns:
        JSON ``{url, accessToken}``; 503 if no broker is configured.
    """
    return _negotiate(userId)


@router.get("/chat/negotiate")
async def negotiate_get(
    userId: Optional[str] = Query(None, description="Identity hint for the access token"),
    negotiateVersion: Optional[str] = Query(None),
) -> JSONResponse:
    """GET variant of negotiate; some clients call it with GET."""
    return _negotiate(userId)


async def _membership(roomid: str, body: RoomMembershipRequest, join: bool) -> JSONResponse:
    if not body.connectionId:
        return JSONResponse({"error": "Connection ID is required"}, status_code=400)
    gateway: Optional[BroadcastGateway] = get_gateway()
    if gateway is None:
        return _unavailable()
    try:
        if join:
            await gateway.add_to_group(body.connectionId, roomid)
        else:
            await gateway.remove_from_group(body.connectionId, roomid)
    except GroupMembershipError as e:
        action = "join" if join else "leave"
        logger.error(f"[Broadcast] Failed to {action} room {roomid}: {e}")
        return JSONResponse({"error": f"Failed to {action} room"}, status_code=502)
    return JSONResponse(RoomMembershipResponse(roomid=roomid).model_dump())


@router.post("/rooms/{roomid}/join")
async def join_room(roomid: str, body: RoomMembershipRequest) -> JSONResponse:
    """Register a broker connection with a room group."""
    return await _membership(roomid, body, join=True)


@router.post("/rooms/{roomid}/leave")
async def leave_room(roomid: str, body: RoomMembershipRequest) -> JSONResponse:
    """Deregister a broker connection from a room group."""
    return await _membership(roomid, body, join=False)
