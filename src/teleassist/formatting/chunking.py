"""Split long replies to fit platform message-size limits."""

from __future__ import annotations

DEFAULT_CHUNK_SIZE = 3500


def chunk_text(text: str, max_chars: int = DEFAULT_CHUNK_SIZE) -> list[str]:
    """Split ``text`` into chunks of at most ``max_chars``.

    Cuts prefer the last paragraph break, then line break, then space in the
    window, but only when that point lies past half the window; otherwise the
    chunk is hard-cut at ``max_chars``.
    """
    text = text.strip()
    if not text:
        return [""]
    if max_chars <= 0 or len(text) <= max_chars:
        return [text]

    chunks: list[str] = []
    while text:
        if len(text) <= max_chars:
            chunks.append(text)
            break

        window = text[:max_chars]
        split_at = max_chars
        for separator in ("\n\n", "\n", " "):
            position = window.rfind(separator)
            if position > max_chars // 2:
                split_at = position
                break

        head = text[:split_at].rstrip()
        if head:
            chunks.append(head)
        text = text[split_at:].lstrip()
    return chunks
