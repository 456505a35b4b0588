"""Realtime event protocol.

Every frame on the realtime channel is a JSON object of the form
``{"event": <name>, "data": <payload>}``.

Inbound events (client -> server):
    - send-message:  {"content": str}
    - send-feedback: {"payload": any}  (e.g. a typing indicator)
    - list-rooms:    no payload
    - join-room:     {"name": str} or the bare room name
    - delete-room:   {"name": str} or the bare room name

Outbound events (server -> client):
    client-total, chat-message, feedback, available-rooms, room-users,
    joined-room, room-deleted, user-left, room-history, clear-messages, error

Inbound frames are validated into one pydantic model per event name before
they are dispatched, so handlers never see missing or mistyped fields.
"""
from enum import Enum
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

MAX_ROOM_NAME_LENGTH = 64


class ProtocolViolation(Exception):
    """An inbound frame could not be understood."""


# =============================================================================
# Inbound payloads
# =============================================================================


class ChatContent(BaseModel):
    content: str = Field(..., description="Message text")

    @field_validator("content")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("content is required")
        return value


class FeedbackPayload(BaseModel):
    payload: Any = Field(None, description="Opaque feedback data relayed to the room")


class RoomName(BaseModel):
    name: str = Field(..., description="Room name")

    @field_validator("name")
    @classmethod
    def _clean_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("room name is required")
        if len(value) > MAX_ROOM_NAME_LENGTH:
            raise ValueError(f"room name is longer than {MAX_ROOM_NAME_LENGTH} characters")
        return value


class SendMessage(BaseModel):
    event: Literal["send-message"]
    data: ChatContent


class SendFeedback(BaseModel):
    event: Literal["send-feedback"]
    data: FeedbackPayload = Field(default_factory=FeedbackPayload)

    @field_validator("data", mode="before")
    @classmethod
    def _wrap_payload(cls, value: Any) -> Any:
        if isinstance(value, dict) and "payload" in value:
            return value
        return {"payload": value}


class ListRooms(BaseModel):
    event: Literal["list-rooms"]
    data: Optional[Any] = None


class JoinRoom(BaseModel):
    event: Literal["join-room"]
    data: RoomName

    @field_validator("data", mode="before")
    @classmethod
    def _bare_name(cls, value: Any) -> Any:
        # Clients may send the room name directly as the payload.
        if isinstance(value, str):
            return {"name": value}
        return value


class DeleteRoom(BaseModel):
    event: Literal["delete-room"]
    data: RoomName

    @field_validator("data", mode="before")
    @classmethod
    def _bare_name(cls, value: Any) -> Any:
        # Clients may send the room name directly as the payload.
        if isinstance(value, str):
            return {"name": value}
        return value


InboundEvent = Annotated[
    Union[SendMessage, SendFeedback, ListRooms, JoinRoom, DeleteRoom],
    Field(discriminator="event"),
]

_inbound_adapter: TypeAdapter = TypeAdapter(InboundEvent)


def parse_inbound(raw: Any) -> Union[SendMessage, SendFeedback, ListRooms, JoinRoom, DeleteRoom]:
    """Validate a decoded JSON frame into its typed event.

    Raises:
        ProtocolViolation: If the frame is not an object, names an unknown
            event, or carries an invalid payload.
    """
    if not isinstance(raw, dict):
        raise ProtocolViolation("Invalid frame: expected a JSON object")
    try:
        return _inbound_adapter.validate_python(raw)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        where = f" ({location})" if location else ""
        raise ProtocolViolation(f"Invalid frame{where}: {first.get('msg')}") from e


# =============================================================================
# Outbound events
# =============================================================================


class OutboundEvent(str, Enum):
    """Names of server -> client events."""
    CLIENT_TOTAL = "client-total"
    CHAT_MESSAGE = "chat-message"
    FEEDBACK = "feedback"
    AVAILABLE_ROOMS = "available-rooms"
    ROOM_USERS = "room-users"
    JOINED_ROOM = "joined-room"
    ROOM_DELETED = "room-deleted"
    USER_LEFT = "user-left"
    ROOM_HISTORY = "room-history"
    CLEAR_MESSAGES = "clear-messages"
    ERROR = "error"


def frame(event: OutboundEvent, data: Any = None) -> dict:
    """Build an outbound frame."""
    return {"event": event.value, "data": data}


def client_total(count: int) -> dict:
    return frame(OutboundEvent.CLIENT_TOTAL, count)


def chat_message(sender: str, content: str) -> dict:
    return frame(OutboundEvent.CHAT_MESSAGE, {"sender": sender, "content": content})


def feedback(sender: str, payload: Any) -> dict:
    return frame(OutboundEvent.FEEDBACK, {"sender": sender, "payload": payload})


def available_rooms(names: List[str]) -> dict:
    return frame(OutboundEvent.AVAILABLE_ROOMS, list(names))


def room_users(usernames: List[str]) -> dict:
    return frame(OutboundEvent.ROOM_USERS, list(usernames))


def joined_room(name: str) -> dict:
    return frame(OutboundEvent.JOINED_ROOM, name)


def room_deleted(name: str) -> dict:
    return frame(OutboundEvent.ROOM_DELETED, name)


def user_left(username: str) -> dict:
    return frame(OutboundEvent.USER_LEFT, username)


def room_history(items: List[dict]) -> dict:
    return frame(OutboundEvent.ROOM_HISTORY, items)


def clear_messages() -> dict:
    return frame(OutboundEvent.CLEAR_MESSAGES)


def error(message: str) -> dict:
    return frame(OutboundEvent.ERROR, {"error": message})
