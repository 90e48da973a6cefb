"""Intent detection and model routing.

Intent rules are evaluated top to bottom and the first match wins. The
python carve-out is expressed as two named rules ahead of the generic ones:
"python" plus programming vocabulary is coding, "python" without an
entertainment context is ambiguous, and "python" with an entertainment
context falls through to the remaining rules.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from teleassist.ai.models import AUTO_KEY, ModelRegistry
from teleassist.core.types import Intent

CODING_PATTERN = re.compile(
    r"\b(code|coding|debug|bug|function|class|typescript|javascript|python|java|c\+\+|node|react"
    r"|api|stack trace|compile|pip|syntax|install|algorithm)\b",
    re.IGNORECASE,
)
MATH_PATTERN = re.compile(
    r"\b(math|algebra|calculus|equation|differentiate|integrate|solve|probability|statistics"
    r"|matrix|derive)\b|[0-9]+\s*[+\-*/]\s*[0-9]+",
    re.IGNORECASE,
)
CURRENT_EVENTS_PATTERN = re.compile(
    r"\b(news|latest|today|yesterday|breaking|current events|what happened|stock today"
    r"|election today)\b",
    re.IGNORECASE,
)
PYTHON_PROGRAMMING_PATTERN = re.compile(
    r"\b(learn|code|function|error|install|pip|syntax|script|programming|debug)\b",
    re.IGNORECASE,
)
PYTHON_ENTERTAINMENT_PATTERN = re.compile(r"\b(monty|movie|comedy|series|show)\b", re.IGNORECASE)

CURRENT_EVENTS_DISCLAIMER = (
    "I do not have live web browsing in this setup. I can still help with background "
    "context and likely scenarios based on known information."
)
AMBIGUOUS_PYTHON_CLARIFICATION = (
    "Do you mean Python programming or Monty Python? If programming, tell me your current "
    "level and goal, and I will start a learning path."
)


@dataclass(frozen=True)
class IntentRule:
    """``intent`` applies when ``pattern`` matches (``None`` matches anything).

    ``requires`` is a substring that must be present; ``unless`` vetoes the rule.
    """

    name: str
    intent: Intent
    pattern: re.Pattern[str] | None = None
    requires: str | None = None
    unless: re.Pattern[str] | None = None

    def matches(self, text: str) -> bool:
        if self.requires is not None and self.requires not in text:
            return False
        if self.unless is not None and self.unless.search(text):
            return False
        return self.pattern is None or bool(self.pattern.search(text))


INTENT_RULES: tuple[IntentRule, ...] = (
    IntentRule("python_programming", Intent.CODING, PYTHON_PROGRAMMING_PATTERN, requires="python"),
    IntentRule(
        "python_ambiguous",
        Intent.AMBIGUOUS_PYTHON,
        requires="python",
        unless=PYTHON_ENTERTAINMENT_PATTERN,
    ),
    IntentRule("coding", Intent.CODING, CODING_PATTERN),
    IntentRule("math", Intent.MATH, MATH_PATTERN),
    IntentRule("current_events", Intent.CURRENT_EVENTS, CURRENT_EVENTS_PATTERN),
)


def detect_intent(text: str, rules: tuple[IntentRule, ...] = INTENT_RULES) -> Intent:
    normalized = text.strip().lower()
    for rule in rules:
        if rule.matches(normalized):
            return rule.intent
    return Intent.GENERAL


@dataclass(frozen=True)
class RoutedModel:
    model_id: str
    model_key: str
    temperature: float
    max_tokens: int
    auto_routed: bool


CUSTOM_MODEL_KEY = "custom"
CUSTOM_TEMPERATURE = 0.4
CUSTOM_MAX_TOKENS = 1200
CURRENT_EVENTS_TEMPERATURE = 0.2

_INTENT_PRESETS: dict[Intent, str] = {
    Intent.CODING: "code",
    Intent.MATH: "math",
    Intent.CURRENT_EVENTS: "fast",
    Intent.GENERAL: "fast",
}


class ModelRouter:
    """Resolves an explicit selection or a detected intent into a concrete model."""

    def __init__(self, registry: ModelRegistry | None = None):
        self._registry = registry or ModelRegistry()

    @property
    def registry(self) -> ModelRegistry:
        return self._registry

    def route(self, explicit_key: str | None, intent: Intent) -> RoutedModel:
        selected = self._registry.resolve(explicit_key)

        if selected is not None and selected.key != AUTO_KEY:
            return RoutedModel(
                model_id=selected.id or self._registry.fallback_model_id,
                model_key=selected.key,
                temperature=selected.temperature,
                max_tokens=selected.max_tokens,
                auto_routed=False,
            )

        explicit = (explicit_key or "").strip()
        if explicit and selected is None and explicit.lower() != AUTO_KEY:
            return RoutedModel(
                model_id=explicit,
                model_key=CUSTOM_MODEL_KEY,
                temperature=CUSTOM_TEMPERATURE,
                max_tokens=CUSTOM_MAX_TOKENS,
                auto_routed=False,
            )

        preset = self._registry.get(_INTENT_PRESETS.get(intent, "fast"))
        temperature = preset.temperature
        if intent == Intent.CURRENT_EVENTS:
            temperature = CURRENT_EVENTS_TEMPERATURE
        return RoutedModel(
            model_id=preset.id or self._registry.fallback_model_id,
            model_key=preset.key,
            temperature=temperature,
            max_tokens=preset.max_tokens,
            auto_routed=True,
        )


def route_model(explicit_key: str | None, intent: Intent) -> RoutedModel:
    """Route with the default preset table."""
    return ModelRouter().route(explicit_key, intent)
