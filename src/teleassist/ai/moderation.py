"""Keyword screen applied to user input before any model call."""

from __future__ import annotations

import re
from dataclasses import dataclass

_CHECKS: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(
            r"\b(how to kill myself|how can i die|suicide method|self harm method)\b", re.IGNORECASE
        ),
        "I cannot help with self-harm instructions. I can help with support resources "
        "and safer coping steps.",
    ),
    (
        re.compile(
            r"\b(build a bomb|make explosive|buy illegal drugs|credit card fraud|steal password"
            r"|malware code)\b",
            re.IGNORECASE,
        ),
        "I cannot help with illegal or harmful wrongdoing. I can help with legal and ethical "
        "alternatives.",
    ),
)


@dataclass(frozen=True)
class ModerationResult:
    blocked: bool
    reason: str | None = None


def moderate_input(text: str) -> ModerationResult:
    for pattern, reason in _CHECKS:
        if pattern.search(text):
            return ModerationResult(blocked=True, reason=reason)
    return ModerationResult(blocked=False)
