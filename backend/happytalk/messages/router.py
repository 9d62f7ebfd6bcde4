"""Message routes.

Endpoints:
    - GET /api/messages/{roomid}: Paginated history, oldest first
    - POST /api/messages: Persist and broadcast a new message
    - PATCH /api/messages/{messageId}: Edit a message (admin)
    - DELETE /api/messages/{messageId}?roomid=: Delete a message (admin)

Authorization is checked here; everything else is delegated to
MessageService.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import JSONResponse

from happytalk.auth import require_admin

from .schemas import EditMessageRequest, SendMessageRequest
from .service import MessageService, MessageValidationError, get_message_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/messages", tags=["messages"])


@router.get("/{roomid}")
async def get_messages(
    roomid: str,
    limit: Optional[int] = Query(None, ge=1, description="Number of messages to return"),
    continuationToken: Optional[str] = Query(None, description="Cursor for older messages"),
    svc: MessageService = Depends(get_message_service),
) -> JSONResponse:
    """Get a page of message history for a room.

    Returns:
        JSON ``{messages: [...], continuationToken?}``, messages oldest first.
    """
    try:
        result = await svc.list_messages(roomid, limit, continuationToken)
    except ValueError as e:
        return JSONResponse({"error": str(e)}, status_code=400)
    except Exception as e:
        logger.error(f"[Messages] Failed to get messages for {roomid}: {e}")
        return JSONResponse({"error": "Failed to get messages"}, status_code=500)
    return JSONResponse(result.model_dump(exclude_none=True))


@router.post("", status_code=201)
async def send_message(
    body: SendMessageRequest,
    svc: MessageService = Depends(get_message_service),
) -> JSONResponse:
    """Persist a message and broadcast it to the room.

    Returns:
        The persisted message with server ID and timestamp (201 Created).
    """
    try:
        saved = await svc.send_message(body)
    except MessageValidationError as e:
        return JSONResponse({"error": str(e)}, status_code=400)
    except Exception as e:
        logger.error(f"[Messages] Failed to send message: {e}")
        return JSONResponse({"error": "Failed to send message"}, status_code=500)
    return JSONResponse(saved.to_wire(), status_code=201)


@router.patch("/{message_id}")
async def edit_message(
    message_id: str,
    body: EditMessageRequest,
    _token: str = Depends(require_admin),
    svc: MessageService = Depends(get_message_service),
) -> JSONResponse:
    """Replace a message's text (admin only)."""
    try:
        updated = await svc.edit_message(message_id, body.roomid, body.text)
    except MessageValidationError as e:
        return JSONResponse({"error": str(e)}, status_code=400)
    if updated is None:
        return JSONResponse({"error": "Message not found"}, status_code=404)
    return JSONResponse(updated.to_wire())


@router.delete("/{message_id}", status_code=204)
async def delete_message(
    message_id: str,
    roomid: str = Query(..., description="Room the message belongs to"),
    _token: str = Depends(require_admin),
    svc: MessageService = Depends(get_message_service),
) -> Response:
    """Delete a message (admin only)."""
    if not await svc.delete_message(message_id, roomid):
        return JSONResponse({"error": "Message not found"}, status_code=404)
    return Response(status_code=204)
