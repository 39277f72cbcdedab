from __future__ import annotations

import re

from .payload_extractor import FILES_MARKER, iter_fenced_blocks

PATH_MARKER = '"path"'

# Status paragraph (✅ / ⚠️) appended after editing, through the end of the text.
_STATUS_TAIL = re.compile(r"\n\n(?:✅|⚠)[\s\S]*$")
_EXTRA_BLANK_LINES = re.compile(r"\n{3,}")


def _drop_payload_blocks(text: str) -> str:
    parts = []
    pos = 0
    for start, end, inner in iter_fenced_blocks(text):
        if FILES_MARKER in inner and PATH_MARKER in inner:
            parts.append(text[pos:start])
            pos = end
    parts.append(text[pos:])
    return "".join(parts)


def _clean(text: str) -> str:
    cleaned = _drop_payload_blocks(text)
    cleaned = _STATUS_TAIL.sub("", cleaned)
    cleaned = _EXTRA_BLANK_LINES.sub("\n\n", cleaned)
    return cleaned.strip()


def sanitize(text: str) -> str:
    """Return the transcript as it should be displayed.

    Removes file-change JSON blocks and the trailing status paragraph,
    collapses runs of blank lines and trims the result. A removal can expose
    a new match (a status line behind collapsed blank lines, a fence joined
    across a removed block), so the rules run until the text stops changing.
    Every pass only shortens the text, which keeps the loop finite.
    """
    if not text:
        return ""
    cleaned = _clean(text)
    while True:
        again = _clean(cleaned)
        if again == cleaned:
            return cleaned
        cleaned = again
