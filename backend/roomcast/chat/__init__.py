"""Realtime chat rooms: membership coordination and room-scoped fan-out."""

from .broadcast import BroadcastRouter
from .coordinator import RoomCoordinator
from .state import DEFAULT_ROOM, RoomState, Session

__all__ = [
    "BroadcastRouter",
    "DEFAULT_ROOM",
    "RoomCoordinator",
    "RoomState",
    "Session",
]
