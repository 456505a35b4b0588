"""Pydantic schemas for the message archive.

Every chat message sent into a room is archived so that clients joining the
room later can be shown what was said recently.

These schemas are used by:
    - BroadcastRouter: archives each chat message after fan-out
    - RoomCoordinator: replays archived messages as room history on join
    - MessageArchive: DuckDB storage layer
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ArchivedMessage(BaseModel):
    """A single archived chat message.

    Attributes:
        room: Name of the room the message was sent in.
        sender: Verified username of the sender.
        content: Message text.
        timestamp: When the message was sent (naive UTC).
    """
    room: str = Field(..., description="Room name")
    sender: str = Field(..., description="Sender username")
    content: str = Field(..., description="Message text")
    timestamp: datetime = Field(..., description="When sent (UTC)")

    def to_history_item(self) -> dict:
        """Shape used in the room-history event."""
        return {
            "sender": self.sender,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }


class ArchivedMessageCreate(BaseModel):
    """Input schema for archiving a message.

    The timestamp defaults to the insertion time when omitted.
    """
    room: str = Field(..., min_length=1, description="Room name")
    sender: str = Field(..., min_length=1, description="Sender username")
    content: str = Field(..., description="Message text")
    timestamp: Optional[datetime] = Field(None, description="When sent (UTC)")
