"""
Remi - Text Utilities
======================
Stateless helpers for normalising inbound WhatsApp text and for building
the strings that get embedded or logged.
"""

from __future__ import annotations

import unicodedata


# Format and zero-width characters clients paste along with text.  ZWJ
# (U+200D) is not listed: emoji sequences need it.
_INVISIBLE = frozenset("\ufeff\u200b\u200c\u200e\u200f\u00ad\u2060\ufffe")


def _visible(ch: str) -> bool:
    if ch in "\n\r\t":
        return True
    return ch not in _INVISIBLE and unicodedata.category(ch) != "Cc"


def clean_message(text: str) -> str:
    """
    NFC-normalise an inbound message, drop control and invisible
    characters, squeeze spaces inside each line and allow at most one
    blank line in a row.  The result is empty for whitespace-only input.
    """
    text = "".join(ch for ch in unicodedata.normalize("NFC", text) if _visible(ch))
    lines: list[str] = []
    for raw_line in text.splitlines():
        line = " ".join(raw_line.split())
        if not line and lines and not lines[-1]:
            continue
        lines.append(line)
    return "\n".join(lines).strip()


def format_turn_for_embedding(user_message: str, agent_message: str | None) -> str:
    """Build the combined turn text whose embedding is stored with the exchange."""
    if agent_message is None:
        return f"User said: {user_message}"
    return f"User said: {user_message}\nAI replied: {agent_message}"


def preview(text: str, limit: int = 80) -> str:
    """Single-line, length-capped rendering of *text* for log lines."""
    flat = " ".join(text.split())
    if len(flat) <= limit:
        return flat
    return flat[: limit - 1] + "…"
