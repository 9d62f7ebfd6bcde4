"""Broadcast gateway: negotiate tokens and REST fan-out to the broker."""
from .gateway import (
    BroadcastConfigError,
    BroadcastGateway,
    GroupMembershipError,
    get_gateway,
    parse_connection_string,
    set_gateway,
)

__all__ = [
    "BroadcastConfigError",
    "BroadcastGateway",
    "GroupMembershipError",
    "get_gateway",
    "parse_connection_string",
    "set_gateway",
]
