"""PostgreSQL storage for ingested messages and opt-outs.

Backed by asyncpg with the pgvector extension. Vectors are sent in
pgvector's text format with an explicit ``::vector`` cast, so no type
codec needs to be registered on the pool. The ``vector`` column has no
fixed width: rows written under different providers keep whatever
length they were produced with.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from typing import Any

import asyncpg  # type: ignore[import-not-found]

from tg_ingest.constants import DEFAULT_RECENT_LIMIT
from tg_ingest.exceptions import PersistDuplicateError, PersistOtherError, PrivacyLookupError
from tg_ingest.logging import get_logger
from tg_ingest.models import ConversationRecord, OptOutEntry, format_vector

log = get_logger("tg_ingest.storage")

# ---------------------------------------------------------------------------
# SQL schema
# ---------------------------------------------------------------------------
SCHEMA_SQL = """\
CREATE EXTENSION IF NOT EXISTS vector;

CREATE TABLE IF NOT EXISTS conversations (
    id               BIGSERIAL    PRIMARY KEY,
    message_id       BIGINT       UNIQUE NOT NULL,
    text             TEXT         NOT NULL,
    user_id          BIGINT       NOT NULL,
    group_id         BIGINT       NOT NULL,
    timestamp        TIMESTAMPTZ  NOT NULL,
    vector           vector       DEFAULT NULL,
    user_name        TEXT,
    user_first_name  TEXT,
    user_last_name   TEXT,
    created_at       TIMESTAMPTZ  NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_conversations_user_id
    ON conversations (user_id);
CREATE INDEX IF NOT EXISTS idx_conversations_group_id
    ON conversations (group_id);
CREATE INDEX IF NOT EXISTS idx_conversations_timestamp
    ON conversations (timestamp DESC);

CREATE TABLE IF NOT EXISTS opt_out_users (
    id            BIGSERIAL    PRIMARY KEY,
    user_id       BIGINT       UNIQUE NOT NULL,
    opted_out_at  TIMESTAMPTZ  NOT NULL DEFAULT now()
);
"""

_INSERT_CONVERSATION = """
INSERT INTO conversations
    (message_id, text, user_id, group_id, timestamp, vector,
     user_name, user_first_name, user_last_name)
VALUES ($1, $2, $3, $4, $5, $6::vector, $7, $8, $9)
RETURNING id, created_at
"""


async def create_pool(dsn: str) -> asyncpg.Pool:  # type: ignore[type-arg]
    """Create the shared connection pool."""
    try:
        pool = await asyncpg.create_pool(dsn=dsn)
    except (asyncpg.PostgresError, OSError) as exc:
        log.error("postgres_pool_creation_failed", error=str(exc))
        raise
    log.info("postgres_pool_created", dsn=dsn.split("@")[-1])
    return pool


async def ensure_schema(pool: asyncpg.Pool) -> None:  # type: ignore[type-arg]
    """Create tables and indexes if they do not exist."""
    async with pool.acquire() as conn:
        await conn.execute(SCHEMA_SQL)
    log.info("schema_ensured")


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------


class InsertStatus(enum.StrEnum):
    INSERTED = "inserted"
    DUPLICATE = "duplicate"
    FAILED = "failed"


@dataclass(frozen=True)
class InsertOutcome:
    """Result of a conversation insert. ``record`` is set when inserted."""

    status: InsertStatus
    record: ConversationRecord | None = None

    @property
    def stored(self) -> bool:
        """True when the message is in the table, new or already present."""
        return self.status is not InsertStatus.FAILED


class ConversationStore:
    """Thin CRUD facade over the ``conversations`` table.

    Owns no state besides the pool reference. Every public method
    absorbs store failures and logs them.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:  # type: ignore[type-arg]
        self._pool = pool

    async def insert(self, record: ConversationRecord) -> InsertOutcome:
        """Insert *record*, treating an existing ``message_id`` as success."""
        try:
            stored = await self._insert_row(record)
        except PersistDuplicateError:
            log.info(
                "message_already_ingested",
                message_id=record.message_id,
                group_id=record.conversation_id,
            )
            return InsertOutcome(InsertStatus.DUPLICATE)
        except PersistOtherError as exc:
            log.error(
                "message_insert_failed",
                message_id=record.message_id,
                group_id=record.conversation_id,
                error=str(exc.__cause__ or exc),
            )
            return InsertOutcome(InsertStatus.FAILED)

        log.debug(
            "message_inserted",
            message_id=record.message_id,
            group_id=record.conversation_id,
            has_vector=record.has_vector,
        )
        return InsertOutcome(InsertStatus.INSERTED, stored)

    async def _insert_row(self, record: ConversationRecord) -> ConversationRecord:
        row = record.to_row()
        try:
            async with self._pool.acquire() as conn:
                result = await conn.fetchrow(
                    _INSERT_CONVERSATION,
                    row["message_id"],
                    row["text"],
                    row["user_id"],
                    row["group_id"],
                    row["timestamp"],
                    format_vector(record.vector),
                    row["user_name"],
                    row["user_first_name"],
                    row["user_last_name"],
                )
        except asyncpg.UniqueViolationError as exc:
            raise PersistDuplicateError(record.message_id) from exc
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            raise PersistOtherError(str(exc)) from exc

        if result is None:
            return record
        return replace(record, id=result["id"], ingested_at=result["created_at"])

    async def count(self) -> int:
        """Total number of stored messages, 0 on failure."""
        try:
            async with self._pool.acquire() as conn:
                total = await conn.fetchval("SELECT COUNT(*) FROM conversations")
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            log.error("message_count_failed", error=str(exc))
            return 0
        return int(total or 0)

    async def count_by_sender(self, sender_id: int) -> int:
        """Number of stored messages from *sender_id*, 0 on failure."""
        try:
            async with self._pool.acquire() as conn:
                total = await conn.fetchval(
                    "SELECT COUNT(*) FROM conversations WHERE user_id = $1",
                    sender_id,
                )
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            log.error("sender_message_count_failed", user_id=sender_id, error=str(exc))
            return 0
        return int(total or 0)

    async def delete_by_sender(self, sender_id: int) -> int:
        """Delete every message from *sender_id*; returns rows removed, 0 on failure."""
        try:
            async with self._pool.acquire() as conn:
                status = await conn.execute(
                    "DELETE FROM conversations WHERE user_id = $1",
                    sender_id,
                )
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            log.error("sender_messages_delete_failed", user_id=sender_id, error=str(exc))
            return 0
        removed = _affected_rows(status)
        log.info("sender_messages_deleted", user_id=sender_id, count=removed)
        return removed

    async def recent(
        self, group_id: int, limit: int = DEFAULT_RECENT_LIMIT
    ) -> list[ConversationRecord]:
        """Most recent messages in a conversation, newest first."""
        try:
            async with self._pool.acquire() as conn:
                rows = await conn.fetch(
                    """
                    SELECT id, message_id, text, user_id, group_id, timestamp,
                           vector::text AS vector, user_name, user_first_name,
                           user_last_name, created_at
                    FROM conversations
                    WHERE group_id = $1
                    ORDER BY timestamp DESC
                    LIMIT $2
                    """,
                    group_id,
                    limit,
                )
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            log.error("recent_messages_query_failed", group_id=group_id, error=str(exc))
            return []
        return [ConversationRecord.from_row(dict(row)) for row in rows]


# ---------------------------------------------------------------------------
# Opt-outs
# ---------------------------------------------------------------------------


class OptOutStore:
    """Access to the ``opt_out_users`` table.

    Lookup failures are raised as PrivacyLookupError so the privacy gate
    can decide how to treat them.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:  # type: ignore[type-arg]
        self._pool = pool

    async def exists(self, sender_id: int) -> bool:
        try:
            async with self._pool.acquire() as conn:
                row = await conn.fetchval(
                    "SELECT 1 FROM opt_out_users WHERE user_id = $1",
                    sender_id,
                )
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            raise PrivacyLookupError(str(exc)) from exc
        return row is not None

    async def get(self, sender_id: int) -> OptOutEntry | None:
        """Return the opt-out entry for *sender_id*, if any."""
        try:
            async with self._pool.acquire() as conn:
                row = await conn.fetchrow(
                    "SELECT id, user_id, opted_out_at FROM opt_out_users WHERE user_id = $1",
                    sender_id,
                )
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            raise PrivacyLookupError(str(exc)) from exc
        if row is None:
            return None
        return OptOutEntry(
            id=row["id"], sender_id=row["user_id"], opted_out_at=row["opted_out_at"]
        )

    async def add(self, sender_id: int) -> bool:
        """Record an opt-out. Returns True if the sender is now opted out."""
        try:
            async with self._pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO opt_out_users (user_id, opted_out_at)
                    VALUES ($1, now())
                    ON CONFLICT (user_id) DO NOTHING
                    """,
                    sender_id,
                )
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            log.error("opt_out_insert_failed", user_id=sender_id, error=str(exc))
            return False
        return True


def _affected_rows(status: Any) -> int:
    """Parse the row count from a command tag such as ``DELETE 3``."""
    if not isinstance(status, str):
        return 0
    try:
        return int(status.rsplit(" ", 1)[-1])
    except ValueError:
        return 0
