from __future__ import annotations

import re
from typing import Optional

_HTML_FENCE_RE = re.compile(r"```(?:html|htm)\s*\n([\s\S]*?)\n?```", re.IGNORECASE)
_ANY_FENCE_RE = re.compile(r"```[a-zA-Z0-9_-]*\s*\n([\s\S]*?)\n?```")
_OPEN_FENCE_RE = re.compile(r"```(?:html|htm)?\s*\n([\s\S]*)$", re.IGNORECASE)
_ELEMENT_RE = re.compile(r"<\s*(?:!doctype|[a-z][a-z0-9-]*)\b[^>]*>", re.IGNORECASE)
_DOC_START_RE = re.compile(r"<\s*(?:!doctype|html)\b", re.IGNORECASE)
_DOC_END_RE = re.compile(r"</\s*html\s*>", re.IGNORECASE)


def _strip_chatter(text: str) -> str:
    """Drop prose the model put before <!doctype>/<html> or after </html>."""
    start = _DOC_START_RE.search(text)
    if start and start.start() > 0:
        text = text[start.start():]
    ends = list(_DOC_END_RE.finditer(text))
    if ends:
        text = text[: ends[-1].end()]
    return text.strip()


def looks_like_markup(text: Optional[str]) -> bool:
    return bool(text) and bool(_ELEMENT_RE.search(text or ""))


def extract_markup(text: str) -> str:
    """Pull the HTML document out of a raw model response; raise on failure.

    Strategy:
    - A fenced ```html block wins.
    - Otherwise the first generic ``` block that contains markup.
    - Otherwise an unterminated fence (truncated output) if it has markup.
    - Otherwise the bare text, trimmed to the <!doctype>/<html> ... </html> span.
    Raises ValueError when nothing resembling HTML elements is found.
    """
    t = (text or "").strip()
    if not t:
        raise ValueError("Empty model response")

    m = _HTML_FENCE_RE.search(t)
    if m and looks_like_markup(m.group(1)):
        return _strip_chatter(m.group(1))

    for block in _ANY_FENCE_RE.findall(t):
        if looks_like_markup(block):
            return _strip_chatter(block)

    m = _OPEN_FENCE_RE.search(t)
    if m and looks_like_markup(m.group(1)):
        return _strip_chatter(m.group(1))

    if looks_like_markup(t):
        return _strip_chatter(t)
    raise ValueError("No HTML markup found in model response")
