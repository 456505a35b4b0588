"""Room-scoped fan-out of chat messages and feedback.

Chat messages go to every member of the sender's current room (sender
included) and are then archived in the background. Feedback (e.g. typing
indicators) goes to every member except the sender and is never archived.

Events from a connection that is not placed in any room are dropped.
"""
import asyncio
import logging
from typing import Any

from roomcast.archive import ArchivedMessageCreate, utcnow

from . import events
from .coordinator import RoomCoordinator

logger = logging.getLogger(__name__)


class BroadcastRouter:
    """Delivers chat and feedback events within the sender's room.

    Shares the coordinator's state and lock, so a message is never fanned
    out in the middle of a membership transition.
    """

    def __init__(self, coordinator: RoomCoordinator) -> None:
        self.coordinator = coordinator
        self.state = coordinator.state

    async def chat(self, connection_id: str, content: str) -> bool:
        """Broadcast a chat message to the sender's room and archive it.

        Returns:
            True if the message was delivered to the room.
        """
        async with self.coordinator.lock:
            session = self.state.get_session(connection_id)
            if session is None:
                logger.warning(f"[Broadcast] chat ignored: no session {connection_id}")
                return False
            room = self.state.memberships.room_of(connection_id)
            if room is None:
                logger.warning(
                    f"[Broadcast] Protocol violation: {session.username} sent a message "
                    "without being in a room"
                )
                return False

            logger.info(f"[Broadcast] Message in room {room} from {session.username}: {content[:50]}")
            sent_at = utcnow()
            self.state.post_room(room, events.chat_message(session.username, content))

        self.coordinator.spawn(self._archive(room, session.username, content, sent_at))
        return True

    async def feedback(self, connection_id: str, payload: Any) -> bool:
        """Relay feedback to everyone else in the sender's room.

        Returns:
            True if the feedback was relayed.
        """
        async with self.coordinator.lock:
            session = self.state.get_session(connection_id)
            if session is None:
                logger.warning(f"[Broadcast] feedback ignored: no session {connection_id}")
                return False
            room = self.state.memberships.room_of(connection_id)
            if room is None:
                logger.warning(
                    f"[Broadcast] Protocol violation: {session.username} sent feedback "
                    "without being in a room"
                )
                return False

            self.state.post_room(room, events.feedback(session.username, payload), exclude=connection_id)
            return True

    async def _archive(self, room: str, sender: str, content: str, sent_at) -> None:
        archive = self.coordinator.archive
        if archive is None:
            return
        entry = ArchivedMessageCreate(room=room, sender=sender, content=content, timestamp=sent_at)
        try:
            await asyncio.to_thread(archive.insert, entry)
        except Exception as e:
            logger.error(f"[Broadcast] Error saving message for room {room}: {e}")
