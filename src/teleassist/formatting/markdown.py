"""Telegram MarkdownV2 escaping.

Nothing in the console build calls these; they are the output step for a
Telegram adapter, which sends replies with ``parse_mode="MarkdownV2"`` and
must escape every reserved character outside code blocks.
"""

from __future__ import annotations

import re

_ESCAPE_RE = re.compile(r"([\\_*\[\]()~`>#+\-=|{}.!])")
_CODE_BLOCK_RE = re.compile(r"```([\s\S]*?)```")


def _escape_segment(text: str) -> str:
    return _ESCAPE_RE.sub(r"\\\1", text)


def _escape_code(code: str) -> str:
    return code.replace("\\", "\\\\").replace("`", "\\`")


def to_telegram_markdown_v2(text: str) -> str:
    """Escape prose for MarkdownV2 while keeping fenced code blocks as code."""
    if not text:
        return ""

    output: list[str] = []
    cursor = 0
    for match in _CODE_BLOCK_RE.finditer(text):
        output.append(_escape_segment(text[cursor : match.start()]))
        output.append(f"```\n{_escape_code(match.group(1))}\n```")
        cursor = match.end()
    output.append(_escape_segment(text[cursor:]))
    return "".join(output)


def truncate_for_telegram(text: str, max_chars: int = 3500) -> str:
    if len(text) <= max_chars:
        return text
    return text[: max_chars - 3] + "..."
