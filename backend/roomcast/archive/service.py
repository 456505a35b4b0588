"""DuckDB-based message archive.

This module provides persistent storage for chat messages using DuckDB,
a fast embedded analytical database. The service implements the singleton
pattern to ensure only one database connection exists at a time.

Database Schema:
    messages table:
        - id: Auto-incrementing primary key
        - room: Room name the message was sent in
        - sender: Verified username of the sender
        - content: Message text
        - timestamp: When the message was sent (UTC)

Retention:
    Messages older than the retention horizon (24 hours by default) are never
    returned by fetch() and are deleted by purge_expired().

Thread Safety:
    Callers run archive operations in worker threads (asyncio.to_thread), so
    every operation holds an internal lock around the shared connection.

Usage:
    archive = MessageArchive.get_instance()
    archive.insert(ArchivedMessageCreate(room="general", sender="ann", content="hi"))
    records = archive.fetch("general", since)
"""
import threading
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import duckdb

from .schemas import ArchivedMessage, ArchivedMessageCreate

DEFAULT_RETENTION = timedelta(hours=24)


def utcnow() -> datetime:
    """Current time as a naive UTC datetime (the form stored in DuckDB)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class MessageArchive:
    """Singleton service for archiving chat messages in DuckDB.

    Attributes:
        _instance: Singleton instance of the service.
        _db_path: Path to the DuckDB database file.
        retention: How long archived messages remain readable.
    """

    _instance: Optional["MessageArchive"] = None
    _db_path: str = "messages.duckdb"

    def __init__(
        self,
        db_path: Optional[str] = None,
        retention: timedelta = DEFAULT_RETENTION,
    ) -> None:
        """Initialize the archive.

        Creates the database file and schema if they don't exist.

        Args:
            db_path: Path to DuckDB file. Defaults to "messages.duckdb".
            retention: Retention horizon for archived messages.
        """
        if db_path:
            self._db_path = db_path
        self.retention = retention
        self._lock = threading.Lock()
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialize_db()

    @classmethod
    def get_instance(
        cls,
        db_path: Optional[str] = None,
        retention: timedelta = DEFAULT_RETENTION,
    ) -> "MessageArchive":
        """Get or create the singleton instance.

        Args:
            db_path: Optional database path (only used on first call).
            retention: Retention horizon (only used on first call).

        Returns:
            The singleton MessageArchive instance.
        """
        if cls._instance is None:
            cls._instance = cls(db_path, retention)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance.

        Closes the database connection and clears the instance.
        Primarily used for testing to ensure a clean state.
        """
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        """Create the messages table and sequence if they don't exist."""
        with self._lock:
            conn = self._get_connection()
            conn.execute("""
                CREATE SEQUENCE IF NOT EXISTS messages_seq START 1;
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS messages (
                    id INTEGER DEFAULT nextval('messages_seq') PRIMARY KEY,
                    room VARCHAR NOT NULL,
                    sender VARCHAR NOT NULL,
                    content VARCHAR NOT NULL,
                    timestamp TIMESTAMP NOT NULL
                )
            """)

    def horizon(self) -> datetime:
        """Oldest timestamp that is still readable."""
        return utcnow() - self.retention

    def insert(self, entry: ArchivedMessageCreate) -> ArchivedMessage:
        """Archive a message.

        Args:
            entry: The message to archive.

        Returns:
            The archived message with its timestamp.
        """
        timestamp = entry.timestamp or utcnow()
        with self._lock:
            self._get_connection().execute(
                """
                INSERT INTO messages (room, sender, content, timestamp)
                VALUES (?, ?, ?, ?)
                """,
                [entry.room, entry.sender, entry.content, timestamp]
            )

        return ArchivedMessage(
            room=entry.room,
            sender=entry.sender,
            content=entry.content,
            timestamp=timestamp
        )

    def fetch(self, room: str, since: datetime) -> List[ArchivedMessage]:
        """Get a room's messages sent at or after ``since``, oldest first.

        The lower bound is clamped to the retention horizon, so expired
        messages are never returned even if they have not been purged yet.

        Args:
            room: Room name to query.
            since: Inclusive lower bound (naive UTC).

        Returns:
            List of archived messages in ascending timestamp order.
        """
        lower = max(since, self.horizon())
        with self._lock:
            result = self._get_connection().execute(
                """
                SELECT room, sender, content, timestamp
                FROM messages
                WHERE room = ? AND timestamp >= ?
                ORDER BY timestamp ASC, id ASC
                """,
                [room, lower]
            ).fetchall()

        return [
            ArchivedMessage(
                room=row[0],
                sender=row[1],
                content=row[2],
                timestamp=row[3]
            )
            for row in result
        ]

    def purge_expired(self) -> int:
        """Delete messages older than the retention horizon.

        Returns:
            Number of deleted messages.
        """
        cutoff = self.horizon()
        with self._lock:
            conn = self._get_connection()
            expired = conn.execute(
                "SELECT COUNT(*) FROM messages WHERE timestamp < ?",
                [cutoff]
            ).fetchone()[0]
            if expired:
                conn.execute("DELETE FROM messages WHERE timestamp < ?", [cutoff])
        return expired

    def count(self, room: Optional[str] = None) -> int:
        """Number of stored messages, optionally for one room."""
        with self._lock:
            conn = self._get_connection()
            if room:
                row = conn.execute(
                    "SELECT COUNT(*) FROM messages WHERE room = ?", [room]
                ).fetchone()
            else:
                row = conn.execute("SELECT COUNT(*) FROM messages").fetchone()
        return row[0]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
