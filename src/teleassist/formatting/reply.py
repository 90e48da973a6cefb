"""Reply shaping: plain professional prose with code sections kept verbatim.

Model output is split into prose and code sections. Code arrives either in
Markdown fences or between the ``CODE_BEGIN``/``CODE_END`` markers the
system prompt asks for. Prose goes through :func:`format_prose`; code goes
through :func:`format_code_block` and is emitted under a ``Code Example:``
label. Neither path raises; an empty result degrades to a placeholder.
"""

from __future__ import annotations

import re
import unicodedata

CODE_LABEL = "Code Example:"
FALLBACK_REPLY = "I could not generate a clean response. Please try again."
LONG_LINE = 160

_CODE_SECTION_RE = re.compile(
    r"```[^\n`]*\n?(?P<fenced>[\s\S]*?)```|CODE_BEGIN[ \t]*\n?(?P<marked>[\s\S]*?)CODE_END"
)
_HEADING_RE = re.compile(r"^[ \t]*#{1,6}[ \t]+(.*?)[ \t#]*$", re.MULTILINE)
_HR_RE = re.compile(r"^[ \t]*([-_*])(?:[ \t]*\1){2,}[ \t]*$", re.MULTILINE)
_BOLD_RE = re.compile(r"(?<![\w*])(\*\*|__)(?=\S)(.+?)(?<=\S)\1(?![\w*])")
_ITALIC_RE = re.compile(r"(?<![\w*])\*(?=\S)([^*\n]+?)(?<=\S)\*(?![\w*])")
_INLINE_CODE_RE = re.compile(r"`([^`\n]+)`")
_STRAY_FENCE_RE = re.compile(r"`{3,}[^\n`]*")
_DECORATIVE_BULLET_RE = re.compile("^([ \t]*)[•◦▪●‣⁃·–—][ \t]*", re.MULTILINE)

_PUNCTUATION_MAP = str.maketrans({
    "‘": "'", "’": "'", "“": '"', "”": '"',
    "–": "-", "—": "-", "−": "-",
    "×": "*", "÷": "/", "…": "...", " ": " ",
})
_NON_ASCII_RE = re.compile(r"[^\t\n\r\x20-\x7e]")

# "+", "*" and "=" between operands always get single spaces. "-" and "/"
# only when already loosely spaced, so dates and fractions like 2024-01-05 or
# 1/2 are left alone.
_TIGHT_OPERATOR_RE = re.compile(r"(?<=[\d)])[ \t]*([+*=])[ \t]*(?=[\d(])")
_LOOSE_OPERATOR_RE = re.compile(r"(?<=[\d)])(?:[ \t]+([-/])[ \t]*|([-/])[ \t]+)(?=[\d(])")

_TABLE_DIVIDER_RE = re.compile(r"^\|?\s*:?-+:?\s*(\|\s*:?-+:?\s*)+\|?$")
_TABLE_ROW_RE = re.compile(r"^\|.*\|$")
_LIST_ITEM_RE = re.compile(r"^(?:[-*+]+|\d+[.)])\s+(.*)$")


def _to_ascii(text: str) -> str:
    text = unicodedata.normalize("NFKD", text.translate(_PUNCTUATION_MAP))
    return _NON_ASCII_RE.sub("", text).replace("\r\n", "\n").replace("\r", "\n")


def _strip_markdown(text: str) -> str:
    text = _HEADING_RE.sub(lambda m: f"\n{m.group(1)}\n", text)
    text = _HR_RE.sub("", text)
    text = _DECORATIVE_BULLET_RE.sub(r"\1- ", text)
    text = _BOLD_RE.sub(r"\2", text)
    text = _ITALIC_RE.sub(r"\1", text)
    text = _INLINE_CODE_RE.sub(r"\1", text)
    return _STRAY_FENCE_RE.sub("", text)


def _space_operators(line: str) -> str:
    line = _TIGHT_OPERATOR_RE.sub(r" \1 ", line)
    return _LOOSE_OPERATOR_RE.sub(lambda m: f" {m.group(1) or m.group(2)} ", line)


def _classify_lines(lines: list[str]) -> list[tuple[str, str]]:
    """Tag lines as blank, list or text, renumbering list items and table rows."""
    entries: list[tuple[str, str]] = []
    index = 0

    for raw in lines:
        line = " ".join(raw.split())
        if not line:
            entries.append(("blank", ""))
            index = 0
            continue
        if _TABLE_DIVIDER_RE.match(line):
            continue

        item: str | None = None
        if _TABLE_ROW_RE.match(line):
            cells = [cell.strip() for cell in line.split("|") if cell.strip()]
            item = " - ".join(cells) if cells else None
            if item is None:
                continue
        else:
            match = _LIST_ITEM_RE.match(line)
            if match:
                item = match.group(1).strip()

        if item is not None:
            index += 1
            entries.append(("list", f"{index}. {_space_operators(item)}"))
        else:
            index = 0
            entries.append(("text", _space_operators(line)))
    return entries


def _separate_blocks(entries: list[tuple[str, str]]) -> list[str]:
    out: list[str] = []
    prev_kind = "blank"
    prev_line = ""
    for kind, line in entries:
        if kind == "blank":
            if out and out[-1] != "":
                out.append("")
            prev_kind, prev_line = kind, line
            continue
        if prev_kind != "blank":
            list_transition = kind != prev_kind
            long_text = kind == "text" == prev_kind and max(len(line), len(prev_line)) > LONG_LINE
            if list_transition or long_text:
                out.append("")
        out.append(line)
        prev_kind, prev_line = kind, line

    while out and out[-1] == "":
        out.pop()
    return out


def format_prose(text: str) -> str:
    """Plain-text rendering of Markdown prose. Returns ``""`` when nothing is left."""
    if not text:
        return ""
    ascii_text = _to_ascii(_strip_markdown(text))
    return "\n".join(_separate_blocks(_classify_lines(ascii_text.split("\n")))).strip()


def format_code_block(code: str) -> str:
    """Keep indentation and interior spacing; drop non-ASCII noise and outer blank lines."""
    if not code:
        return ""
    lines = [line.rstrip() for line in _to_ascii(code).split("\n")]
    while lines and not lines[0]:
        lines.pop(0)
    while lines and not lines[-1]:
        lines.pop()
    return "\n".join(lines)


def format_professional_reply(text: str | None) -> str:
    """Shape a model reply for plain-text delivery."""
    text = text or ""
    blocks: list[str] = []
    cursor = 0

    for match in _CODE_SECTION_RE.finditer(text):
        prose = format_prose(text[cursor : match.start()])
        if prose:
            blocks.append(prose)
        code = format_code_block(match.group("fenced") or match.group("marked") or "")
        if code:
            blocks.append(f"{CODE_LABEL}\n{code}")
        cursor = match.end()

    tail = format_prose(text[cursor:])
    if tail:
        blocks.append(tail)

    return "\n\n".join(blocks) or FALLBACK_REPLY
