"""Sliding-window rate limiter backed by the ``rate_limit_events`` table."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import aiosqlite

from teleassist.config import RateLimitConfig
from teleassist.errors import RateLimitExceeded
from teleassist.log import get_logger
from teleassist.storage.rate_limit_repo import RateLimitRepository

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: datetime


class RateLimiter:
    """Transactional sliding-window admission control keyed by an opaque bucket key."""

    def __init__(
        self,
        repo: RateLimitRepository,
        config: RateLimitConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        config = config or RateLimitConfig()
        self._repo = repo
        self._max_events = config.max_events
        self._window = timedelta(seconds=config.window)
        self._cleanup_after = self._window * config.cleanup_multiplier
        self._clock = clock

    async def consume(self, bucket_key: str) -> RateLimitResult:
        """Record one event for ``bucket_key`` if the window still has capacity."""
        now = self._clock()
        decision = await self._repo.admit(
            bucket_key, now=now, window_start=now - self._window, max_events=self._max_events
        )

        if decision.allowed:
            result = RateLimitResult(
                allowed=True,
                remaining=max(self._max_events - (decision.used + 1), 0),
                reset_at=now + self._window,
            )
        else:
            oldest = decision.oldest_in_window
            result = RateLimitResult(
                allowed=False,
                remaining=0,
                reset_at=oldest + self._window if oldest else now + self._window,
            )
            logger.info("rate_limited", bucket_key=bucket_key, used=decision.used)

        await self._purge(now)
        return result

    async def check(self, bucket_key: str) -> RateLimitResult:
        """Consume, raising :class:`RateLimitExceeded` when denied."""
        result = await self.consume(bucket_key)
        if not result.allowed:
            raise RateLimitExceeded(bucket_key, result.reset_at)
        return result

    async def _purge(self, now: datetime) -> None:
        try:
            await self._repo.purge_before(now - self._cleanup_after)
        except aiosqlite.Error as e:
            logger.debug("rate_limit_purge_failed", error=str(e))
