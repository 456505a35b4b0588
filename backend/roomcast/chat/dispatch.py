"""Inbound event dispatch table.

Maps each validated inbound event type to the coordinator or broadcast
router operation that handles it.
"""
from typing import Awaitable, Callable, Dict, Type

from .broadcast import BroadcastRouter
from .coordinator import RoomCoordinator
from .events import DeleteRoom, JoinRoom, ListRooms, SendFeedback, SendMessage

Handler = Callable[[RoomCoordinator, BroadcastRouter, str, object], Awaitable[bool]]


async def _send_message(coordinator, broadcaster, connection_id, event: SendMessage) -> bool:
    return await broadcaster.chat(connection_id, event.data.content)


async def _send_feedback(coordinator, broadcaster, connection_id, event: SendFeedback) -> bool:
    return await broadcaster.feedback(connection_id, event.data.payload)


async def _list_rooms(coordinator, broadcaster, connection_id, event: ListRooms) -> bool:
    return await coordinator.send_room_list(connection_id)


async def _join_room(coordinator, broadcaster, connection_id, event: JoinRoom) -> bool:
    return await coordinator.join(connection_id, event.data.name)


async def _delete_room(coordinator, broadcaster, connection_id, event: DeleteRoom) -> bool:
    return await coordinator.delete_room(connection_id, event.data.name)


HANDLERS: Dict[Type, Handler] = {
    SendMessage: _send_message,
    SendFeedback: _send_feedback,
    ListRooms: _list_rooms,
    JoinRoom: _join_room,
    DeleteRoom: _delete_room,
}


async def dispatch(
    coordinator: RoomCoordinator,
    broadcaster: BroadcastRouter,
    connection_id: str,
    event: object,
) -> bool:
    """Run the handler registered for ``event``'s type."""
    handler = HANDLERS[type(event)]
    return await handler(coordinator, broadcaster, connection_id, event)
