"""Text cleaning helpers for model output and document text."""

from __future__ import annotations

import re

_BULLET_RE = re.compile(r"^[-•*]\s*")
_PARENTHETICAL_RE = re.compile(r"\((.*?)\)")
_FIRST_PARENTHETICAL_RE = re.compile(r"\s*\(.*?\)\s*")


def strip_bullet(line: str) -> str:
    """Drop one leading list marker (``-``, ``•`` or ``*``) and surrounding whitespace."""
    return _BULLET_RE.sub("", line.strip(), count=1).strip()


def split_parenthetical(line: str) -> tuple[str, str | None]:
    """Split ``"Name (Kind)"`` into ``("Name", "Kind")``.

    Only the first parenthesized group counts. It is cut out together with the
    whitespace around it, so ``"Foo(Bar)baz"`` gives ``"Foobaz"``. Returns
    ``(line, None)`` when there is no parenthetical at all.
    """
    match = _PARENTHETICAL_RE.search(line)
    if match is None:
        return line.strip(), None
    label = _FIRST_PARENTHETICAL_RE.sub("", line, count=1)
    return label.strip(), match.group(1).strip()


def truncate_content(text: str, max_chars: int = 8000) -> str:
    """Truncate text to max chars, adding a marker if truncated."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "... (truncated)"
