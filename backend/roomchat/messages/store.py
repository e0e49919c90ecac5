"""DuckDB-backed message log.

The store exposes the three operations the chat core depends on:

    - insert: append a message and return it with its generated id/timestamps
    - fetch_page: a page of a room's messages, newest first
    - purge_older_than: delete every message created before a cutoff

Database Schema:
    messages table:
        - seq: Insertion sequence, used to break createdAt ties
        - id: UUID string primary key
        - content: Message text
        - sender_nick: Client-asserted nickname
        - room_id: Room identifier
        - is_global: Whether room_id is the global room
        - created_at / updated_at: Naive UTC timestamps

Concurrency:
    Every call runs in a worker thread (asyncio.to_thread) on its own cursor,
    so storage calls are the only points where a chat handler suspends.
    DuckDB cursors are independent connections to the same database and may
    be used from different threads.

Usage:
    store = MessageStore.get_instance("messages.duckdb")
    message = await store.insert("hi", "alice", "global", True)
    page = await store.fetch_page("global", limit=51, offset=0)
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

import duckdb

from .schemas import Message, utcnow

logger = logging.getLogger(__name__)

_CREATE_SEQUENCE = "CREATE SEQUENCE IF NOT EXISTS messages_seq START 1"

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS messages (
    seq         BIGINT DEFAULT nextval('messages_seq'),
    id          VARCHAR PRIMARY KEY,
    content     VARCHAR NOT NULL,
    sender_nick VARCHAR NOT NULL,
    room_id     VARCHAR NOT NULL,
    is_global   BOOLEAN NOT NULL DEFAULT FALSE,
    created_at  TIMESTAMP NOT NULL,
    updated_at  TIMESTAMP NOT NULL
)
"""

_INDEX = "CREATE INDEX IF NOT EXISTS idx_messages_room_created ON messages(room_id, created_at)"

_COLUMNS = "id, content, sender_nick, room_id, is_global, created_at, updated_at"

# Largest value DuckDB accepts for LIMIT/OFFSET
_MAX_BIGINT = 2 ** 63 - 1


class MessageStoreError(Exception):
    """Raised when the underlying database rejects an operation."""


def _to_db_timestamp(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_db_timestamp(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc)


def _row_to_message(row) -> Message:
    return Message(
        id=row[0],
        content=row[1],
        senderNick=row[2],
        roomId=row[3],
        isGlobal=row[4],
        createdAt=_from_db_timestamp(row[5]),
        updatedAt=_from_db_timestamp(row[6]),
    )


class MessageStore:
    """Persistent message log with page fetch and age-based purge.

    Attributes:
        _instance: Process-wide instance used by the application.
        _default_db_path: Database file used when no path is given.
    """

    _instance: Optional["MessageStore"] = None
    _default_db_path: str = "messages.duckdb"

    def __init__(
        self,
        db_path: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Open (or create) the database and its schema.

        Args:
            db_path: Path to the DuckDB file, or ":memory:".
            clock: Source of creation timestamps. Tests inject a fixed clock.
        """
        self._db_path = db_path or self._default_db_path
        self._clock = clock
        self._conn: Optional[duckdb.DuckDBPyConnection] = duckdb.connect(self._db_path)
        self._conn.execute(_CREATE_SEQUENCE)
        self._conn.execute(_CREATE_TABLE)
        self._conn.execute(_INDEX)
        logger.info("[MessageStore] Initialized with db=%s", self._db_path)

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "MessageStore":
        """Get or create the process-wide store.

        Args:
            db_path: Optional database path (only used on first call).
        """
        if cls._instance is None:
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Close and forget the process-wide store."""
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    async def insert(
        self,
        content: str,
        sender_nick: str,
        room_id: str,
        is_global: bool,
    ) -> Message:
        """Append a message and return the stored record."""
        now = self._clock()
        message = Message(
            content=content,
            senderNick=sender_nick,
            roomId=room_id,
            isGlobal=is_global,
            createdAt=now,
            updatedAt=now,
        )
        await self._run(self._insert_sync, message)
        return message

    async def fetch_page(self, room_id: str, limit: int, offset: int = 0) -> List[Message]:
        """Return up to *limit* messages of *room_id*, newest first.

        *offset* counts records from the newest one. Messages sharing a
        createdAt are ordered by insertion, newest first.
        """
        if offset > _MAX_BIGINT:
            return []
        return await self._run(self._fetch_page_sync, room_id, limit, offset)

    async def purge_older_than(self, cutoff: datetime) -> int:
        """Delete all messages created strictly before *cutoff*.

        Returns:
            Number of deleted messages.
        """
        return await self._run(self._purge_sync, _to_db_timestamp(cutoff))

    async def count(self, room_id: Optional[str] = None) -> int:
        """Number of stored messages, optionally restricted to one room."""
        return await self._run(self._count_sync, room_id)

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    async def _run(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except duckdb.Error as exc:
            logger.error("[MessageStore] %s failed: %s", fn.__name__, exc)
            raise MessageStoreError(str(exc)) from exc

    def _cursor(self) -> duckdb.DuckDBPyConnection:
        if self._conn is None:
            raise MessageStoreError("message store is closed")
        return self._conn.cursor()

    def _insert_sync(self, message: Message) -> None:
        cur = self._cursor()
        try:
            cur.execute(
                f"INSERT INTO messages ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                [
                    message.id,
                    message.content,
                    message.senderNick,
                    message.roomId,
                    message.isGlobal,
                    _to_db_timestamp(message.createdAt),
                    _to_db_timestamp(message.updatedAt),
                ],
            )
        finally:
            cur.close()

    def _fetch_page_sync(self, room_id: str, limit: int, offset: int) -> List[Message]:
        cur = self._cursor()
        try:
            rows = cur.execute(
                f"""
                SELECT {_COLUMNS}
                FROM messages
                WHERE room_id = ?
                ORDER BY created_at DESC, seq DESC
                LIMIT ? OFFSET ?
                """,
                [room_id, limit, offset],
            ).fetchall()
        finally:
            cur.close()
        return [_row_to_message(row) for row in rows]

    def _purge_sync(self, cutoff: datetime) -> int:
        cur = self._cursor()
        try:
            deleted = cur.execute(
                "DELETE FROM messages WHERE created_at < ? RETURNING id", [cutoff]
            ).fetchall()
        finally:
            cur.close()
        return len(deleted)

    def _count_sync(self, room_id: Optional[str]) -> int:
        cur = self._cursor()
        try:
            if room_id is None:
                row = cur.execute("SELECT COUNT(*) FROM messages").fetchone()
            else:
                row = cur.execute(
                    "SELECT COUNT(*) FROM messages WHERE room_id = ?", [room_id]
                ).fetchone()
        finally:
            cur.close()
        return row[0]
