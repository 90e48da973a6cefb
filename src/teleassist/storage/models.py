"""Data models for storage layer."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class ConversationLock:
    chat_id: int
    owner: str
    expires_at: datetime


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one transactional admission check."""

    allowed: bool
    used: int
    oldest_in_window: Optional[datetime] = None
