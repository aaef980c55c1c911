"""Message store contract and its SQLite-backed implementation.

Both ingestion pipelines (live subscription and backfill) write through
:meth:`MessageStore.save_message`.  Saving is idempotent per message id, so
the same message arriving twice -- in two wraps, or from both pipelines --
is stored and counted once.
"""

from __future__ import annotations

import abc
import asyncio
import json
import logging
from pathlib import Path

import aiosqlite

from privdm.protocol.conversation import participants_of
from privdm.protocol.errors import StoreError
from privdm.protocol.readstate import ReadStateMap
from privdm.protocol.rumor import Rumor
from privdm.protocol.types import ONE_DAY, THREE_DAYS, now_seconds
from privdm.sdk.message import BackfillStatus, Conversation, DecryptedMessage

logger = logging.getLogger(__name__)


class MessageStore(abc.ABC):
    """Durable storage the pipelines and the UI layer share."""

    @abc.abstractmethod
    async def save_message(self, message: DecryptedMessage, wrap_created_at: int) -> bool:
        """Persist *message* and update its conversation.

        Returns ``False`` without changing anything if a message with the same
        id is already stored.
        """

    @abc.abstractmethod
    async def load_conversations(self) -> list[Conversation]:
        """All conversations, most recent message first."""

    @abc.abstractmethod
    async def load_messages(self, conversation_id: str) -> list[DecryptedMessage]:
        """Messages of one conversation, oldest first."""

    @abc.abstractmethod
    async def get_wrap_ids(self) -> set[str]:
        """Ids of every wrap a stored message arrived in."""

    @abc.abstractmethod
    async def get_since_timestamp(self) -> int | None:
        """Newest wrap timestamp seen minus three days, or ``None`` if empty."""

    @abc.abstractmethod
    async def get_backfill_status(self) -> BackfillStatus:
        """Whether, and when, a backfill last ran to completion."""

    @abc.abstractmethod
    async def set_backfill_complete(self, completed_at: int | None = None) -> None:
        """Record a completed backfill (defaults to now)."""

    @abc.abstractmethod
    async def get_read_state(self) -> ReadStateMap:
        """Map of conversation id -> last read timestamp."""

    @abc.abstractmethod
    async def mark_read(self, conversation_id: str, timestamp: int) -> bool:
        """Advance the read mark; returns ``False`` if *timestamp* is not newer."""

    @abc.abstractmethod
    async def bulk_merge_read_state(self, remote: ReadStateMap) -> ReadStateMap:
        """Merge *remote* into local state taking the max per key; return the result."""

    @abc.abstractmethod
    async def clear(self) -> None:
        """Erase every message, conversation, sync marker, and read mark."""

    async def is_backfill_fresh(self, max_age: int = ONE_DAY, now: int | None = None) -> bool:
        """Return True if a complete backfill finished within *max_age* seconds."""
        status = await self.get_backfill_status()
        if not status.complete or status.completed_at is None:
            return False
        if now is None:
            now = now_seconds()
        return now - status.completed_at <= max_age


_SCHEMA = """
CREATE TABLE IF NOT EXISTS messages (
    id              TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL,
    sender_pubkey   TEXT NOT NULL,
    content         TEXT NOT NULL,
    created_at      INTEGER NOT NULL,
    rumor_json      TEXT NOT NULL,
    wrap_id         TEXT NOT NULL,
    wrap_created_at INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_conversation
    ON messages (conversation_id, created_at);

CREATE INDEX IF NOT EXISTS idx_messages_wrap ON messages (wrap_id);

CREATE TABLE IF NOT EXISTS conversations (
    id              TEXT PRIMARY KEY,
    participants    TEXT NOT NULL,
    last_message_id TEXT NOT NULL,
    last_created_at INTEGER NOT NULL,
    message_count   INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS sync_meta (
    key   TEXT PRIMARY KEY,
    value INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS read_state (
    conversation_id TEXT PRIMARY KEY,
    last_read_at    INTEGER NOT NULL
);
"""

_SCHEMA_VERSION = 2

_MESSAGE_COLUMNS = (
    "m.id, m.conversation_id, m.sender_pubkey, m.content, m.created_at, "
    "m.rumor_json, m.wrap_id"
)


def _row_to_message(row) -> DecryptedMessage:
    return DecryptedMessage(
        id=row[0],
        conversation_id=row[1],
        sender_pubkey=row[2],
        content=row[3],
        created_at=row[4],
        rumor=Rumor(**json.loads(row[5])),
        wrap_id=row[6],
    )


class SQLiteMessageStore(MessageStore):
    """SQLite-backed :class:`MessageStore`.

    A single ``asyncio.Lock`` serialises write transactions so that the
    dedup check-and-set and the conversation update happen atomically with
    respect to every other writer on the same store.

    Usage::

        store = SQLiteMessageStore(data_dir)
        await store.open()
        saved = await store.save_message(message, wrap.created_at)
        await store.close()
    """

    def __init__(self, data_dir: Path | str, *, filename: str = "messages.db") -> None:
        self._db_path = Path(data_dir) / "messages" / filename
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._db_path

    async def open(self) -> None:
        """Open the database, create tables, run migrations."""
        if self._db is not None:
            return
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self._db_path))
        await self._migrate()
        await self._db.executescript(_SCHEMA)
        await self._db.commit()

    async def _migrate(self) -> None:
        """Run schema migrations using PRAGMA user_version."""
        async with self._db.execute("PRAGMA user_version") as cur:
            version = (await cur.fetchone())[0]

        if version == 0:
            # Fresh database: _SCHEMA creates everything at the current version
            await self._db.execute(f"PRAGMA user_version = {_SCHEMA_VERSION}")
            await self._db.commit()
            return

        if version < 2:
            logger.info("Migrating message store schema to version 2 (read_state)")
            await self._db.execute(
                """
                CREATE TABLE IF NOT EXISTS read_state (
                    conversation_id TEXT PRIMARY KEY,
                    last_read_at    INTEGER NOT NULL
                )
                """
            )
            await self._db.execute("PRAGMA user_version = 2")
            await self._db.commit()

    async def close(self) -> None:
        """Close the database connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> SQLiteMessageStore:
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StoreError("Message store not open. Call open() first.")
        return self._db

    # -- Messages ------------------------------------------------------------

    async def save_message(self, message: DecryptedMessage, wrap_created_at: int) -> bool:
        db = self._conn()
        async with self._lock:
            try:
                cursor = await db.execute(
                    """
                    INSERT OR IGNORE INTO messages
                        (id, conversation_id, sender_pubkey, content, created_at,
                         rumor_json, wrap_id, wrap_created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        message.id,
                        message.conversation_id,
                        message.sender_pubkey,
                        message.content,
                        message.created_at,
                        json.dumps(message.rumor.to_dict()),
                        message.wrap_id,
                        wrap_created_at,
                    ),
                )
                if cursor.rowcount == 0:
                    await db.rollback()
                    logger.debug("Message %s already stored", message.id)
                    return False

                # Preview only moves forward in message time, never in arrival order
                await db.execute(
                    """
                    INSERT INTO conversations
                        (id, participants, last_message_id, last_created_at, message_count)
                    VALUES (?, ?, ?, ?, 1)
                    ON CONFLICT(id) DO UPDATE SET
                        message_count = conversations.message_count + 1,
                        last_message_id = CASE
                            WHEN excluded.last_created_at >= conversations.last_created_at
                            THEN excluded.last_message_id
                            ELSE conversations.last_message_id
                        END,
                        last_created_at = MAX(conversations.last_created_at,
                                              excluded.last_created_at)
                    """,
                    (
                        message.conversation_id,
                        json.dumps(participants_of(message.conversation_id)),
                        message.id,
                        message.created_at,
                    ),
                )

                await db.execute(
                    """
                    INSERT INTO sync_meta (key, value) VALUES ('last_wrap_created_at', ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = MAX(sync_meta.value, excluded.value)
                    """,
                    (wrap_created_at,),
                )
                await db.commit()
            except BaseException:
                await db.rollback()
                raise
        return True

    async def load_conversations(self) -> list[Conversation]:
        db = self._conn()
        async with db.execute(
            f"""
            SELECT c.id, c.participants, c.message_count, {_MESSAGE_COLUMNS}
            FROM conversations c
            JOIN messages m ON m.id = c.last_message_id
            ORDER BY c.last_created_at DESC, c.id
            """
        ) as cursor:
            rows = await cursor.fetchall()
        return [
            Conversation(
                id=r[0],
                participants=json.loads(r[1]),
                last_message=_row_to_message(r[3:]),
                message_count=r[2],
            )
            for r in rows
        ]

    async def load_messages(self, conversation_id: str) -> list[DecryptedMessage]:
        db = self._conn()
        async with db.execute(
            f"""
            SELECT {_MESSAGE_COLUMNS} FROM messages m
            WHERE m.conversation_id = ?
            ORDER BY m.created_at ASC, m.id ASC
            """,
            (conversation_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_message(r) for r in rows]

    async def get_wrap_ids(self) -> set[str]:
        db = self._conn()
        async with db.execute("SELECT wrap_id FROM messages") as cursor:
            rows = await cursor.fetchall()
        return {r[0] for r in rows}

    # -- Sync markers --------------------------------------------------------

    async def _get_meta(self, key: str) -> int | None:
        db = self._conn()
        async with db.execute("SELECT value FROM sync_meta WHERE key = ?", (key,)) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else None

    async def get_since_timestamp(self) -> int | None:
        last = await self._get_meta("last_wrap_created_at")
        if last is None:
            return None
        return last - THREE_DAYS

    async def get_backfill_status(self) -> BackfillStatus:
        complete = await self._get_meta("backfill_complete")
        completed_at = await self._get_meta("backfill_completed_at")
        return BackfillStatus(complete=complete == 1, completed_at=completed_at)

    async def set_backfill_complete(self, completed_at: int | None = None) -> None:
        db = self._conn()
        if completed_at is None:
            completed_at = now_seconds()
        async with self._lock:
            await db.executemany(
                "INSERT OR REPLACE INTO sync_meta (key, value) VALUES (?, ?)",
                [("backfill_complete", 1), ("backfill_completed_at", completed_at)],
            )
            await db.commit()

    # -- Read state ----------------------------------------------------------

    async def get_read_state(self) -> ReadStateMap:
        db = self._conn()
        async with db.execute("SELECT conversation_id, last_read_at FROM read_state") as cursor:
            rows = await cursor.fetchall()
        return {r[0]: r[1] for r in rows}

    async def mark_read(self, conversation_id: str, timestamp: int) -> bool:
        db = self._conn()
        async with self._lock:
            cursor = await db.execute(
                """
                INSERT INTO read_state (conversation_id, last_read_at) VALUES (?, ?)
                ON CONFLICT(conversation_id) DO UPDATE SET
                    last_read_at = excluded.last_read_at
                WHERE excluded.last_read_at > read_state.last_read_at
                """,
                (conversation_id, timestamp),
            )
            await db.commit()
        return cursor.rowcount > 0

    async def bulk_merge_read_state(self, remote: ReadStateMap) -> ReadStateMap:
        db = self._conn()
        async with self._lock:
            local = await self.get_read_state()
            merged = dict(local)
            to_write: list[tuple[str, int]] = []
            for conversation_id, remote_ts in remote.items():
                local_ts = local.get(conversation_id)
                if local_ts is None or remote_ts > local_ts:
                    merged[conversation_id] = remote_ts
                    to_write.append((conversation_id, remote_ts))
            if to_write:
                await db.executemany(
                    "INSERT OR REPLACE INTO read_state (conversation_id, last_read_at) "
                    "VALUES (?, ?)",
                    to_write,
                )
                await db.commit()
                logger.debug("Merged %d remote read-state entries", len(to_write))
        return merged

    # -- Lifecycle -----------------------------------------------------------

    async def clear(self) -> None:
        db = self._conn()
        async with self._lock:
            try:
                await db.execute("DELETE FROM messages")
                await db.execute("DELETE FROM conversations")
                await db.execute("DELETE FROM sync_meta")
                await db.execute("DELETE FROM read_state")
                await db.commit()
            except BaseException:
                await db.rollback()
                raise
        logger.info("Message store cleared")
