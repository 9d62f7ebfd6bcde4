"""Pydantic schemas for the broadcast module."""
from typing import Optional

from pydantic import BaseModel, Field


class NegotiateResponse(BaseModel):
    """Broker endpoint plus a time-limited client access token."""
    url: str
    accessToken: str


class RoomMembershipRequest(BaseModel):
    """Body of ``POST /api/rooms/{roomid}/join`` and ``/leave``."""
    connectionId: Optional[str] = Field(default=None)


class RoomMembershipResponse(BaseModel):
    success: bool = True
    roomid: str
