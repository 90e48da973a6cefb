"""SQLite database connection manager with schema migration."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from teleassist.log import get_logger

logger = get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS chat_locks (
    chat_id         INTEGER PRIMARY KEY,
    owner           TEXT    NOT NULL,
    expires_at      TEXT    NOT NULL,
    created_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now')),
    updated_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE INDEX IF NOT EXISTS idx_chat_locks_expires
    ON chat_locks(expires_at);

CREATE TABLE IF NOT EXISTS rate_limit_events (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    bucket_key      TEXT    NOT NULL,
    created_at      TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_rate_limit_bucket
    ON rate_limit_events(bucket_key, created_at);
"""


def to_db_timestamp(value: datetime) -> str:
    """Serialize a datetime as fixed-width UTC ISO text so string order equals time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def from_db_timestamp(value: str) -> datetime:
    return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S.%fZ").replace(tzinfo=timezone.utc)


class Database:
    """Async SQLite database manager.

    Every store operation runs on its own short-lived connection. Writes that
    must be atomic go through :meth:`transaction`, which takes SQLite's write
    lock up front (``BEGIN IMMEDIATE``) so concurrent transactions serialize
    in the database rather than in the application.
    """

    def __init__(self, db_path: str, busy_timeout: float = 5.0):
        self._db_path = db_path
        self._busy_timeout = busy_timeout
        self._initialized = False

    @property
    def path(self) -> str:
        return self._db_path

    async def initialize(self) -> None:
        """Create the database file and run migrations."""
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self._db_path, timeout=self._busy_timeout) as conn:
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.executescript(SCHEMA_SQL)
            await conn.commit()
        self._initialized = True
        logger.info("database_initialized", path=self._db_path)

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[aiosqlite.Connection]:
        """Open an autocommit connection for single-statement operations."""
        if not self._initialized:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        conn = await aiosqlite.connect(
            self._db_path, timeout=self._busy_timeout, isolation_level=None
        )
        conn.row_factory = aiosqlite.Row
        try:
            yield conn
        finally:
            await conn.close()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run a block inside an immediate (write-locked) transaction."""
        async with self.connect() as conn:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                await conn.execute("ROLLBACK")
                raise
            await conn.execute("COMMIT")

    async def close(self) -> None:
        if self._initialized:
            self._initialized = False
            logger.info("database_closed")
