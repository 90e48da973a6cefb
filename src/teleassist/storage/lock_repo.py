"""Persistence for per-conversation lock rows."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

import aiosqlite

from teleassist.storage.database import Database, from_db_timestamp, to_db_timestamp
from teleassist.storage.models import ConversationLock


class LockRepository:
    """Insert-if-absent, reclaim-if-expired and delete-by-owner over ``chat_locks``.

    The primary key on ``chat_id`` is what guarantees a single holder.
    """

    def __init__(self, db: Database):
        self._db = db

    async def try_insert(self, lock: ConversationLock) -> bool:
        """Create the lock row. Returns False if a row for the chat already exists."""
        async with self._db.connect() as conn:
            try:
                await conn.execute(
                    "INSERT INTO chat_locks (chat_id, owner, expires_at) VALUES (?, ?, ?)",
                    (lock.chat_id, lock.owner, to_db_timestamp(lock.expires_at)),
                )
            except aiosqlite.IntegrityError:
                return False
        return True

    async def reclaim_expired(self, lock: ConversationLock, now: datetime) -> bool:
        """Hand an expired row over to ``lock.owner``. Returns True if a row changed hands."""
        async with self._db.connect() as conn:
            cursor = await conn.execute(
                """UPDATE chat_locks
                   SET owner = ?, expires_at = ?,
                       updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')
                   WHERE chat_id = ? AND expires_at <= ?""",
                (lock.owner, to_db_timestamp(lock.expires_at), lock.chat_id, to_db_timestamp(now)),
            )
            return cursor.rowcount > 0

    async def delete(self, chat_id: int, owner: str) -> int:
        """Delete the row only if ``owner`` still holds it. Returns number of deleted rows."""
        async with self._db.connect() as conn:
            cursor = await conn.execute(
                "DELETE FROM chat_locks WHERE chat_id = ? AND owner = ?",
                (chat_id, owner),
            )
            return cursor.rowcount

    async def get(self, chat_id: int) -> Optional[ConversationLock]:
        async with self._db.connect() as conn:
            cursor = await conn.execute(
                "SELECT chat_id, owner, expires_at FROM chat_locks WHERE chat_id = ?",
                (chat_id,),
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        return ConversationLock(
            chat_id=row["chat_id"],
            owner=row["owner"],
            expires_at=from_db_timestamp(row["expires_at"]),
        )
