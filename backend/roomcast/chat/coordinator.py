"""Room membership coordinator.

The coordinator owns the room state machine for every connected client:

    Unauthenticated -> Authenticated (unplaced) -> Placed(room) -> ... -> Terminated

Key guarantees:
    - A connection is a member of exactly one room while it is live
    - The default room ("general") always exists, even when empty
    - Any other room is created on first join and destroyed when its last
      member leaves
    - Roster and room-list broadcasts follow every membership change

Atomicity:
    Each operation runs under a single asyncio.Lock. Inside it, registry
    mutations happen first and are recorded in an outbox; the outbox is then
    posted to the recipients' mailboxes, still under the lock. Posting never
    waits on a socket, so the lock is only ever held for in-memory work, and
    every recipient sees events in mutation order.

    History replay runs outside the lock. The archive query runs in a worker
    thread as a background task. Its result is posted after the join's own
    events (the task cannot run before they were queued), and only if the
    connection is still placed by that same join.
"""
import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, Dict, List, Optional, Set, Tuple

from roomcast.archive import MessageArchive, utcnow

from . import events
from .state import DEFAULT_ROOM, SEND_TIMEOUT, Channel, RoomState, Session

logger = logging.getLogger(__name__)

HISTORY_WINDOW = timedelta(hours=24)

# (recipient connection ids, frame)
Outbox = List[Tuple[List[str], dict]]


class RoomCoordinator:
    """Orchestrates connect, join, disconnect and room deletion.

    Attributes:
        state: Registries shared with the BroadcastRouter.
        archive: Message archive used for history replay (optional).
        history_window: How far back history replay reaches.
        lock: Serialises every state transition and its fan-out.
    """

    def __init__(
        self,
        archive: Optional[MessageArchive] = None,
        *,
        default_room: str = DEFAULT_ROOM,
        history_window: timedelta = HISTORY_WINDOW,
        send_timeout: float = SEND_TIMEOUT,
        state: Optional[RoomState] = None,
    ) -> None:
        self.state = state or RoomState(default_room, send_timeout=send_timeout)
        self.archive = archive
        self.history_window = history_window
        self.lock = asyncio.Lock()

        # connection_id -> sequence number of its latest placement; stale
        # history fetches compare against it before delivering.
        self._placements: Dict[str, int] = {}
        self._placement_seq = 0

        self._background: Set[asyncio.Task] = set()

    @property
    def default_room(self) -> str:
        return self.state.default_room

    # =========================================================================
    # Queries
    # =========================================================================

    def list_rooms(self) -> List[str]:
        """Current room names, default room first then creation order."""
        return self.state.rooms.names()

    def roster(self, room: str) -> List[str]:
        """Usernames currently in ``room``, in join order."""
        return self.state.roster(room)

    def room_of(self, connection_id: str) -> Optional[str]:
        return self.state.memberships.room_of(connection_id)

    @property
    def client_count(self) -> int:
        return len(self.state.sessions)

    # =========================================================================
    # Operations
    # =========================================================================

    async def connect(self, connection_id: str, username: str, channel: Channel) -> Session:
        """Register an authenticated connection and place it in the default room.

        Broadcasts the new total connection count to everyone afterwards.
        """
        async with self.lock:
            existing = self.state.get_session(connection_id)
            if existing is not None:
                logger.warning(f"[Coordinator] Connection {connection_id} is already registered")
                return existing

            session = Session(connection_id=connection_id, username=username, channel=channel)
            self.state.register(session)
            logger.info(f"[Coordinator] {username} connected as {connection_id}")

            outbox: Outbox = []
            self._join(connection_id, self.default_room, outbox)
            outbox.append((self._everyone(), events.client_total(self.client_count)))
            self._post(outbox)
            return session

    async def join(self, connection_id: str, room: str) -> bool:
        """Move a connection into ``room``, creating the room if needed.

        Joining the current room again re-sends the join acknowledgement,
        roster, clear-messages and history without changing membership.

        Returns:
            False if the connection has no live session.
        """
        async with self.lock:
            if not self.state.is_live(connection_id):
                logger.warning(f"[Coordinator] join({room}) ignored: no session {connection_id}")
                return False
            outbox: Outbox = []
            self._join(connection_id, room, outbox)
            self._post(outbox)
            return True

    async def disconnect(self, connection_id: str) -> bool:
        """Tear down a connection and its membership.

        The teardown runs as its own task: cancelling the caller (usually the
        closing socket's handler) does not interrupt it or its fan-out.

        Returns:
            False if the connection had no live session.
        """
        return await asyncio.shield(self.spawn(self._disconnect(connection_id)))

    async def delete_room(self, requester_id: str, room: str) -> bool:
        """Delete a room, moving its members into the default room first.

        Requests for the default room, an unknown room, or from a connection
        without a session are ignored.

        Returns:
            True if the room was deleted.
        """
        async with self.lock:
            if not self.state.is_live(requester_id):
                logger.warning(f"[Coordinator] delete-room({room}) ignored: no session {requester_id}")
                return False
            if room == self.default_room:
                logger.info(f"[Coordinator] Refusing to delete default room {room}")
                return False
            if not self.state.rooms.exists(room):
                logger.info(f"[Coordinator] delete-room({room}) ignored: no such room")
                return False

            outbox: Outbox = []
            for member_id in self.state.rooms.members(room):
                self._join(member_id, self.default_room, outbox)

            # The last member leaving normally destroyed it already.
            self.state.rooms.destroy(room)
            logger.info(f"[Coordinator] Room {room} deleted by {requester_id}")

            everyone = self._everyone()
            outbox.append((everyone, events.room_deleted(room)))
            outbox.append((everyone, events.available_rooms(self.list_rooms())))
            self._post(outbox)
            return True

    async def send_room_list(self, connection_id: str) -> bool:
        """Send the current room list to one connection."""
        async with self.lock:
            return self.state.post(connection_id, events.available_rooms(self.list_rooms()))

    def send_error(self, connection_id: str, message: str) -> bool:
        """Tell one connection that its last frame was rejected."""
        return self.state.post(connection_id, events.error(message))

    # =========================================================================
    # Background work
    # =========================================================================

    def spawn(self, coro: Awaitable) -> asyncio.Task:
        """Run a fire-and-forget coroutine, keeping a reference until it ends."""
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def drain(self) -> None:
        """Wait for pending background work, then for every queued event to be written."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        await self.state.flush()

    def close(self) -> None:
        """Stop all outbound writers (application shutdown)."""
        self.state.close()

    # =========================================================================
    # Transition internals (caller holds the lock)
    # =========================================================================

    def _everyone(self) -> List[str]:
        return list(self.state.sessions)

    def _post(self, outbox: Outbox) -> None:
        for recipients, message in outbox:
            self.state.post_many(recipients, message)

    async def _disconnect(self, connection_id: str) -> bool:
        async with self.lock:
            session = self.state.unregister(connection_id)
            if session is None:
                logger.debug(f"[Coordinator] disconnect ignored: no session {connection_id}")
                return False

            self._placements.pop(connection_id, None)
            outbox: Outbox = []
            room = self.state.memberships.detach(connection_id)
            if room is not None:
                self._vacate(connection_id, room, session.username, outbox)
            outbox.append((self._everyone(), events.client_total(self.client_count)))
            logger.info(f"[Coordinator] {session.username} disconnected from {room}")

            self._post(outbox)
            return True

    def _vacate(self, connection_id: str, room: str, username: str, outbox: Outbox) -> None:
        """Remove a member from ``room`` and queue the resulting events."""
        rooms = self.state.rooms
        rooms.remove_member(room, connection_id)

        if rooms.is_empty(room) and room != self.default_room:
            rooms.destroy(room)
            logger.info(f"[Coordinator] Room {room} destroyed (empty)")
            outbox.append((self._everyone(), events.available_rooms(self.list_rooms())))
            return

        remaining = rooms.members(room)
        if remaining:
            outbox.append((remaining, events.room_users(self.roster(room))))
            outbox.append((remaining, events.user_left(username)))

    def _join(self, connection_id: str, room: str, outbox: Outbox) -> None:
        session = self.state.sessions[connection_id]
        rooms = self.state.rooms
        memberships = self.state.memberships

        previous = memberships.room_of(connection_id)
        if previous != room:
            if previous is not None:
                memberships.detach(connection_id)
                self._vacate(connection_id, previous, session.username, outbox)

            if rooms.create(room):
                logger.info(f"[Coordinator] Room {room} created")
                outbox.append((self._everyone(), events.available_rooms(self.list_rooms())))

            rooms.add_member(room, connection_id)
            memberships.assign(connection_id, room)

        outbox.append(([connection_id], events.joined_room(room)))
        outbox.append((rooms.members(room), events.room_users(self.roster(room))))
        outbox.append(([connection_id], events.clear_messages()))

        self._placement_seq += 1
        self._placements[connection_id] = self._placement_seq
        self.spawn(self._replay_history(connection_id, room, self._placement_seq))
        logger.info(f"[Coordinator] {session.username} joined room {room}")

    async def _replay_history(self, connection_id: str, room: str, placement: int) -> None:
        """Fetch recent archived messages for ``room`` and send them to the joiner."""
        since = utcnow() - self.history_window
        records = []
        if self.archive is not None:
            try:
                records = await asyncio.to_thread(self.archive.fetch, room, since)
            except Exception as e:
                logger.error(f"[Coordinator] History fetch for room {room} failed: {e}")
                return

        if self._placements.get(connection_id) != placement:
            logger.debug(f"[Coordinator] Dropping stale history of {room} for {connection_id}")
            return

        self.state.post(
            connection_id,
            events.room_history([record.to_history_item() for record in records]),
        )
