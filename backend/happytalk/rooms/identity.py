"""Canonical room identifiers.

Every message is partitioned by a room identifier. Identifiers come from
four derivation rules:

    - the constant public room ("public")
    - a slug derived from a human room name ("Team Chat!" -> "team-chat")
    - a direct-message room for two users ("dm-{smaller}-{larger}")
    - a private group room ("group-{groupId}")

The DM rule sorts the participants first, so both users derive the same
room no matter who opens the conversation.
"""
import re
from typing import Literal, Optional, Tuple

PUBLIC_ROOM_ID = "public"
DM_PREFIX = "dm"
GROUP_PREFIX = "group"
SEPARATOR = "-"

RoomKind = Literal["public", "dm", "group", "named"]

_NON_SLUG_RUN = re.compile(r"[^a-z0-9]+")


def public_room_id() -> str:
    return PUBLIC_ROOM_ID


def room_id_from_name(name: str) -> str:
    """Convert a display name to a room ID.

    Lowercases, trims, collapses every run of characters outside
    ``[a-z0-9]`` into a single ``-`` and strips separators from both ends.
    Returns ``""`` when nothing usable is left; callers must reject that.
    """
    slug = _NON_SLUG_RUN.sub(SEPARATOR, name.lower().strip())
    return slug.strip(SEPARATOR)


def dm_room_id(user_a: str, user_b: str) -> str:
    """Build the direct-message room shared by two users.

    Commutative: ``dm_room_id(a, b) == dm_room_id(b, a)``.
    """
    lo, hi = sorted((user_a, user_b))
    return f"{DM_PREFIX}{SEPARATOR}{lo}{SEPARATOR}{hi}"


def group_room_id(group_id: str) -> str:
    return f"{GROUP_PREFIX}{SEPARATOR}{group_id}"


def is_public_room(room_id: str) -> bool:
    return room_id == PUBLIC_ROOM_ID


def is_dm_room(room_id: str) -> bool:
    return room_id.startswith(DM_PREFIX + SEPARATOR)


def is_group_room(room_id: str) -> bool:
    return room_id.startswith(GROUP_PREFIX + SEPARATOR)


def extract_dm_participants(room_id: str) -> Optional[Tuple[str, str]]:
    """Return the two user IDs encoded in a DM room, or None.

    Only identifiers of the exact form ``dm-{a}-{b}`` qualify; user IDs
    that themselves contain ``-`` cannot be recovered and yield None.
    """
    if not is_dm_room(room_id):
        return None
    parts = room_id.split(SEPARATOR)
    if len(parts) != 3:
        return None
    return parts[1], parts[2]


def room_kind(room_id: str) -> RoomKind:
    if is_public_room(room_id):
        return "public"
    if is_dm_room(room_id):
        return "dm"
    if is_group_room(room_id):
        return "group"
    return "named"
