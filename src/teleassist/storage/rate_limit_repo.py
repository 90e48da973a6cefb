"""Persistence for sliding-window rate-limit events."""

from __future__ import annotations

from datetime import datetime

from teleassist.storage.database import Database, from_db_timestamp, to_db_timestamp
from teleassist.storage.models import RateLimitDecision


class RateLimitRepository:
    """Append-only ``rate_limit_events`` table with transactional count-then-insert."""

    def __init__(self, db: Database):
        self._db = db

    async def admit(
        self, bucket_key: str, now: datetime, window_start: datetime, max_events: int
    ) -> RateLimitDecision:
        """Count in-window events and append one if capacity remains, in one transaction."""
        cutoff = to_db_timestamp(window_start)
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                "SELECT COUNT(*) FROM rate_limit_events WHERE bucket_key = ? AND created_at >= ?",
                (bucket_key, cutoff),
            )
            row = await cursor.fetchone()
            used = row[0] if row else 0

            if used >= max_events:
                cursor = await conn.execute(
                    """SELECT created_at FROM rate_limit_events
                       WHERE bucket_key = ? AND created_at >= ?
                       ORDER BY created_at ASC
                       LIMIT 1""",
                    (bucket_key, cutoff),
                )
                oldest = await cursor.fetchone()
                return RateLimitDecision(
                    allowed=False,
                    used=used,
                    oldest_in_window=from_db_timestamp(oldest["created_at"]) if oldest else None,
                )

            await conn.execute(
                "INSERT INTO rate_limit_events (bucket_key, created_at) VALUES (?, ?)",
                (bucket_key, to_db_timestamp(now)),
            )
            return RateLimitDecision(allowed=True, used=used)

    async def purge_before(self, cutoff: datetime) -> int:
        """Delete events older than ``cutoff`` for every bucket. Returns number of deleted rows."""
        async with self._db.connect() as conn:
            cursor = await conn.execute(
                "DELETE FROM rate_limit_events WHERE created_at < ?",
                (to_db_timestamp(cutoff),),
            )
            return cursor.rowcount

    async def count_since(self, bucket_key: str, since: datetime) -> int:
        async with self._db.connect() as conn:
            cursor = await conn.execute(
                "SELECT COUNT(*) FROM rate_limit_events WHERE bucket_key = ? AND created_at >= ?",
                (bucket_key, to_db_timestamp(since)),
            )
            row = await cursor.fetchone()
        return row[0] if row else 0
