"""Database-backed per-conversation mutex with expiry-based crash recovery."""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import TypeVar

from teleassist.config import LockConfig
from teleassist.errors import LockAcquisitionTimeout
from teleassist.log import get_logger
from teleassist.storage.lock_repo import LockRepository
from teleassist.storage.models import ConversationLock

logger = get_logger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LockManager:
    """Serializes turns that belong to the same chat.

    The lock lives in the ``chat_locks`` table so it survives process
    restarts; a holder that crashed is reclaimed once its row expires.
    """

    def __init__(
        self,
        repo: LockRepository,
        config: LockConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        config = config or LockConfig()
        self._repo = repo
        self._ttl = timedelta(seconds=config.ttl)
        self._retry_delay = config.retry_delay
        self._max_wait = config.max_wait
        self._clock = clock

    async def with_lock(self, chat_id: int, task: Callable[[], Awaitable[T]]) -> T:
        """Run ``task`` while holding the lock for ``chat_id``."""
        owner = uuid.uuid4().hex
        await self._acquire(chat_id, owner)
        try:
            return await task()
        finally:
            await self._release(chat_id, owner)

    async def _acquire(self, chat_id: int, owner: str) -> None:
        started = time.monotonic()
        attempts = 0

        while time.monotonic() - started < self._max_wait:
            attempts += 1
            now = self._clock()
            lock = ConversationLock(chat_id=chat_id, owner=owner, expires_at=now + self._ttl)

            if await self._repo.try_insert(lock):
                logger.debug("chat_lock_acquired", chat_id=chat_id, attempts=attempts)
                return
            if await self._repo.reclaim_expired(lock, now):
                logger.warning("chat_lock_reclaimed", chat_id=chat_id, attempts=attempts)
                return

            await asyncio.sleep(self._retry_delay)

        logger.error("chat_lock_timeout", chat_id=chat_id, max_wait=self._max_wait, attempts=attempts)
        raise LockAcquisitionTimeout(chat_id, self._max_wait)

    async def _release(self, chat_id: int, owner: str) -> None:
        try:
            deleted = await self._repo.delete(chat_id, owner)
        except Exception as e:
            logger.error("chat_lock_release_failed", chat_id=chat_id, error=str(e))
            return
        if not deleted:
            # Expired and taken over by another owner while the task ran.
            logger.warning("chat_lock_lost", chat_id=chat_id)
