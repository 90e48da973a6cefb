"""Deterministic text tools: summarize, rewrite, extract key points."""

from __future__ import annotations

import re
from typing import Any

from teleassist.ai.tools.base import Tool

NO_TEXT = "No text provided."
MAX_SUMMARY_SENTENCES = 3
MAX_KEY_POINTS = 8
CONCISE_LIMIT = 260

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")

_TONE_SUBSTITUTIONS: dict[str, tuple[tuple[re.Pattern[str], str], ...]] = {
    "formal": (
        (re.compile(r"\bcan't\b", re.IGNORECASE), "cannot"),
        (re.compile(r"\bwon't\b", re.IGNORECASE), "will not"),
        (re.compile(r"\bI'm\b", re.IGNORECASE), "I am"),
    ),
    "casual": (
        (re.compile(r"\bdo not\b", re.IGNORECASE), "don't"),
        (re.compile(r"\bcannot\b", re.IGNORECASE), "can't"),
        (re.compile(r"\bi am\b", re.IGNORECASE), "I'm"),
    ),
}


def split_sentences(text: str) -> list[str]:
    return [sentence.strip() for sentence in _SENTENCE_SPLIT_RE.split(text) if sentence.strip()]


def summarize_text(text: str) -> str:
    cleaned = " ".join(text.split())
    if not cleaned:
        return NO_TEXT
    sentences = split_sentences(cleaned)
    if len(sentences) <= MAX_SUMMARY_SENTENCES:
        return " ".join(sentences)
    return " ".join(sentences[:MAX_SUMMARY_SENTENCES]) + " ..."


def rewrite_text(text: str, tone: str = "professional") -> str:
    cleaned = text.strip()
    if not cleaned:
        return NO_TEXT

    tone = tone.lower()
    if tone == "concise":
        summarized = summarize_text(cleaned)
        if len(summarized) > CONCISE_LIMIT:
            return summarized[: CONCISE_LIMIT - 3].rstrip() + "..."
        return summarized

    for pattern, replacement in _TONE_SUBSTITUTIONS.get(tone, ()):
        cleaned = pattern.sub(replacement, cleaned)
    return cleaned


def extract_key_points(text: str) -> str:
    cleaned = text.strip()
    if not cleaned:
        return NO_TEXT

    lines = [line.strip() for line in re.split(r"\n+", cleaned) if line.strip()]
    points = lines if len(lines) > 1 else split_sentences(cleaned)
    return "\n".join(f"{index}. {point}" for index, point in enumerate(points[:MAX_KEY_POINTS], start=1))


class _TextTool(Tool):
    """Shared schema for tools that take a single ``text`` argument."""

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"text": {"type": "string"}},
            "required": ["text"],
        }


class SummarizeTool(_TextTool):
    @property
    def name(self) -> str:
        return "text_summarize"

    @property
    def description(self) -> str:
        return "Summarize text into a short compact version."

    async def execute(self, **kwargs: Any) -> str:
        return summarize_text(str(kwargs.get("text") or ""))


class RewriteTool(_TextTool):
    @property
    def name(self) -> str:
        return "text_rewrite"

    @property
    def description(self) -> str:
        return "Rewrite text in a different tone."

    @property
    def parameters(self) -> dict[str, Any]:
        schema = super().parameters
        schema["properties"]["tone"] = {
            "type": "string",
            "enum": ["professional", "formal", "casual", "concise"],
        }
        return schema

    async def execute(self, **kwargs: Any) -> str:
        return rewrite_text(str(kwargs.get("text") or ""), str(kwargs.get("tone") or "professional"))


class KeyPointsTool(_TextTool):
    @property
    def name(self) -> str:
        return "text_extract_key_points"

    @property
    def description(self) -> str:
        return "Extract key points from text."

    async def execute(self, **kwargs: Any) -> str:
        return extract_key_points(str(kwargs.get("text") or ""))
