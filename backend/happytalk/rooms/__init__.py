"""Room identity helpers."""
from .identity import (
    PUBLIC_ROOM_ID,
    dm_room_id,
    extract_dm_participants,
    group_room_id,
    is_dm_room,
    is_group_room,
    is_public_room,
    public_room_id,
    room_id_from_name,
    room_kind,
)

__all__ = [
    "PUBLIC_ROOM_ID",
    "dm_room_id",
    "extract_dm_participants",
    "group_room_id",
    "is_dm_room",
    "is_group_room",
    "is_public_room",
    "public_room_id",
    "room_id_from_name",
    "room_kind",
]
