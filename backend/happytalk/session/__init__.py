"""Session-level room switching."""
from .controller import RoomSessionController

__all__ = ["RoomSessionController"]
