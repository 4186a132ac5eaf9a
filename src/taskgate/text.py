"""Small text helpers shared by the runner and MemOS context."""

from typing import Any

ELLIPSIS = "…"


def slice_text(text: str, max_chars: int) -> str:
    """Cap ``text`` at ``max_chars`` characters, marking truncation with an ellipsis."""
    if len(text) <= max_chars:
        return text
    return f"{text[: max(0, max_chars - 1)]}{ELLIPSIS}"


def normalize_string(value: Any) -> str:
    """Return a trimmed string, or '' for anything that is not a string."""
    return value.strip() if isinstance(value, str) else ""
