"""Message archive module for replaying recent room history."""

from .schemas import ArchivedMessage, ArchivedMessageCreate
from .service import MessageArchive, utcnow

__all__ = [
    "ArchivedMessage",
    "ArchivedMessageCreate",
    "MessageArchive",
    "utcnow",
]
