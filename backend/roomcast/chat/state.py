"""In-memory room state shared by the coordinator and the broadcast router.

This module holds the registries behind every realtime operation:
    - RoomRegistry: room name -> member connection ids (join order)
    - MembershipTracker: connection id -> current room name
    - sessions: connection id -> Session (username + channel)
    - mailboxes: connection id -> Mailbox (ordered outbound frames)

RoomState bundles them together with the fan-out helpers used to deliver
events. It is an explicit object (one per coordinator) rather than module
state, so tests can build isolated instances.

Delivery:
    Posting a frame never waits on the network. Each connection has its own
    Mailbox whose writer task sends frames in the order they were posted, so
    a client that stops reading only ever delays itself.

Thread Safety:
    Designed for a single asyncio event loop. Mutations are synchronous;
    callers serialise whole transitions with the coordinator lock.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Protocol

logger = logging.getLogger(__name__)

DEFAULT_ROOM = "general"
SEND_TIMEOUT = 10.0


class Channel(Protocol):
    """Per-connection outbound event channel (a WebSocket in production)."""

    async def send_json(self, data: Any) -> None:
        ...


@dataclass(frozen=True)
class Session:
    """One authenticated, live connection.

    The username is fixed at authentication time. The current room is not
    stored here; it comes from the MembershipTracker.
    """
    connection_id: str
    username: str
    channel: Channel


class RoomRegistry:
    """Room name -> ordered set of member connection ids.

    The default room is created up front and is never destroyed.
    """

    def __init__(self, default_room: str = DEFAULT_ROOM) -> None:
        self.default_room = default_room
        self._rooms: Dict[str, Dict[str, None]] = {default_room: {}}

    def exists(self, room: str) -> bool:
        return room in self._rooms

    def create(self, room: str) -> bool:
        """Create an empty room. Returns False if it already existed."""
        if room in self._rooms:
            return False
        self._rooms[room] = {}
        return True

    def destroy(self, room: str) -> bool:
        """Destroy a room. The default room is protected.

        Returns:
            True if the room was removed.
        """
        if room == self.default_room or room not in self._rooms:
            return False
        del self._rooms[room]
        return True

    def add_member(self, room: str, connection_id: str) -> None:
        self._rooms[room][connection_id] = None

    def remove_member(self, room: str, connection_id: str) -> bool:
        members = self._rooms.get(room)
        if members is None or connection_id not in members:
            return False
        del members[connection_id]
        return True

    def members(self, room: str) -> List[str]:
        return list(self._rooms.get(room, {}))

    def is_empty(self, room: str) -> bool:
        return not self._rooms.get(room)

    def names(self) -> List[str]:
        return list(self._rooms)


class MembershipTracker:
    """Connection id -> the single room it currently belongs to."""

    def __init__(self) -> None:
        self._edges: Dict[str, str] = {}

    def room_of(self, connection_id: str) -> Optional[str]:
        return self._edges.get(connection_id)

    def assign(self, connection_id: str, room: str) -> None:
        self._edges[connection_id] = room

    def detach(self, connection_id: str) -> Optional[str]:
        """Remove the edge and return the room it pointed to."""
        return self._edges.pop(connection_id, None)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._edges

    def __len__(self) -> int:
        return len(self._edges)


class Mailbox:
    """Ordered outbound frames for one connection.

    Frames are queued without waiting and written by a dedicated task. A
    write that does not finish within ``send_timeout`` seconds marks the
    mailbox stalled; frames posted after that are discarded.
    """

    def __init__(self, connection_id: str, channel: Channel, send_timeout: float = SEND_TIMEOUT) -> None:
        self.connection_id = connection_id
        self.channel = channel
        self.send_timeout = send_timeout
        self.stalled = False
        self._queue: asyncio.Queue = asyncio.Queue()
        self._writer: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._writer is None:
            self._writer = asyncio.ensure_future(self._run())

    def post(self, message: dict) -> None:
        self._queue.put_nowait(message)

    async def flush(self) -> None:
        """Wait until every posted frame was written or discarded."""
        await self._queue.join()

    def close(self) -> None:
        """Stop the writer and discard unsent frames, releasing any flush() waiters."""
        if self._writer is not None:
            self._writer.cancel()
            self._writer = None
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()

    async def _run(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                if not self.stalled:
                    await asyncio.wait_for(self.channel.send_json(message), self.send_timeout)
            except asyncio.TimeoutError:
                self.stalled = True
                logger.warning(
                    f"Connection {self.connection_id} stopped reading; dropping its outbound events"
                )
            except Exception as e:
                logger.debug(f"Failed to send to connection {self.connection_id}: {e}")
            finally:
                self._queue.task_done()


class RoomState:
    """Registries plus the fan-out primitives that read them.

    Attributes:
        rooms: Room membership sets.
        memberships: Current room per connection.
        sessions: Live sessions keyed by connection id.
        mailboxes: Outbound queues keyed by connection id.
    """

    def __init__(self, default_room: str = DEFAULT_ROOM, send_timeout: float = SEND_TIMEOUT) -> None:
        self.rooms = RoomRegistry(default_room)
        self.memberships = MembershipTracker()
        self.sessions: Dict[str, Session] = {}
        self.mailboxes: Dict[str, Mailbox] = {}
        self.send_timeout = send_timeout

    @property
    def default_room(self) -> str:
        return self.rooms.default_room

    def get_session(self, connection_id: str) -> Optional[Session]:
        return self.sessions.get(connection_id)

    def is_live(self, connection_id: str) -> bool:
        return connection_id in self.sessions

    def register(self, session: Session) -> None:
        """Add a live session and start writing to its channel."""
        self.sessions[session.connection_id] = session
        mailbox = Mailbox(session.connection_id, session.channel, self.send_timeout)
        self.mailboxes[session.connection_id] = mailbox
        mailbox.start()

    def unregister(self, connection_id: str) -> Optional[Session]:
        """Remove a session; frames still queued for it are abandoned."""
        mailbox = self.mailboxes.pop(connection_id, None)
        if mailbox is not None:
            mailbox.close()
        return self.sessions.pop(connection_id, None)

    def roster(self, room: str) -> List[str]:
        """Usernames of the room's members, in join order."""
        return [
            self.sessions[cid].username
            for cid in self.rooms.members(room)
            if cid in self.sessions
        ]

    # -------------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------------

    def post(self, connection_id: str, message: dict) -> bool:
        """Queue one event for one connection. No-op for dead connections."""
        mailbox = self.mailboxes.get(connection_id)
        if mailbox is None:
            logger.debug("Dropping %s for closed connection %s", message.get("event"), connection_id)
            return False
        mailbox.post(message)
        return True

    def post_many(self, connection_ids: Iterable[str], message: dict) -> None:
        for cid in connection_ids:
            self.post(cid, message)

    def post_room(self, room: str, message: dict, exclude: Optional[str] = None) -> None:
        """Queue an event for every member of ``room`` (optionally minus one)."""
        self.post_many([cid for cid in self.rooms.members(room) if cid != exclude], message)

    def post_all(self, message: dict) -> None:
        """Queue an event for every live connection."""
        self.post_many(list(self.sessions), message)

    async def flush(self) -> None:
        """Wait until every live mailbox has written what was posted so far."""
        await asyncio.gather(*[mailbox.flush() for mailbox in list(self.mailboxes.values())])

    def close(self) -> None:
        """Stop every writer task (application shutdown)."""
        for mailbox in self.mailboxes.values():
            mailbox.close()
