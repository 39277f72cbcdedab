"""Locate and parse the ``{"files": [...]}`` edit payload in assistant text.

The payload is found by brace-depth scanning rather than by matching fence
boundaries: model output may nest backtick fences, keep talking after the
JSON, or be cut off mid-object. Scanning tracks whether it is inside a JSON
string (and whether the previous character was a backslash) so braces inside
file contents never move the depth counter.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator, List, Optional, Tuple

from pydantic import ValidationError

from ..domain.edit_models import FileEdit, FileEditBatch

LOG = logging.getLogger("codeai.extract")

FILES_MARKER = '"files"'
FENCE = "```"

_FENCE_OPEN = re.compile(r"```(?:json)?\s*")
_TRAILING_COMMA_OBJECT = re.compile(r",\s*}")
_TRAILING_COMMA_ARRAY = re.compile(r",\s*]")


class ExtractionOutcome(str, Enum):
    OK = "ok"
    NO_PAYLOAD = "no_payload"
    TRUNCATED = "truncated"
    INVALID = "invalid"
    EMPTY = "empty"
    NO_VALID_FILES = "no_valid_files"


@dataclass(frozen=True)
class ExtractionResult:
    outcome: ExtractionOutcome
    batch: Optional[FileEditBatch] = None
    dropped: int = 0

    @property
    def ok(self) -> bool:
        return self.outcome is ExtractionOutcome.OK


def _fence_end(text: str, body: int) -> int:
    """Index just past the fence closing a block whose body starts at ``body``.

    A body that opens with a balanced JSON object is closed by the first fence
    after that object, so fences inside its string values do not end it.
    """
    if text.startswith("{", body):
        close = find_balanced_end(text, body)
        if close != -1:
            fence = text.find(FENCE, close + 1)
            return -1 if fence == -1 else fence + len(FENCE)
    fence = text.find(FENCE, body)
    return -1 if fence == -1 else fence + len(FENCE)


def iter_fenced_blocks(text: str) -> Iterator[Tuple[int, int, str]]:
    """Yield ``(start, end, inner)`` for each closed fenced block, in order."""
    pos = 0
    while True:
        start = text.find(FENCE, pos)
        if start == -1:
            return
        body = _FENCE_OPEN.match(text, start).end()
        end = _fence_end(text, body)
        if end == -1:
            return
        yield start, end, text[body : end - len(FENCE)]
        pos = end


def _candidate_region(text: str) -> str:
    found = False
    for _, _, inner in iter_fenced_blocks(text):
        found = True
        inner = inner.strip()
        if FILES_MARKER in inner:
            return inner
    if not found:
        LOG.debug("extract_no_code_blocks")
    return text
    for inner in blocks:
        inner = inner.strip()
        if FILES_MARKER in inner:
            return inner
    return text


def _find_object_start(raw: str, marker_index: int) -> int:
    """Index of the nearest ``{`` before ``marker_index`` that is still open."""
    depth = 0
    for i in range(marker_index - 1, -1, -1):
        ch = raw[i]
        if ch == "}":
            depth += 1
        elif ch == "{":
            if depth == 0:
                return i
            depth -= 1
    return -1


def find_balanced_end(raw: str, start: int) -> int:
    """Index of the ``}`` closing the object opened at ``start``, or -1."""
    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(raw)):
        ch = raw[i]
        if escape:
            escape = False
            continue
        if ch == "\\" and in_string:
            escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return -1


def _parse(candidate: str) -> Any:
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as first_err:
        repaired = _TRAILING_COMMA_ARRAY.sub("]", _TRAILING_COMMA_OBJECT.sub("}", candidate))
        try:
            value = json.loads(repaired)
        except json.JSONDecodeError as second_err:
            LOG.warning(
                "extract_parse_failed",
                extra={"err": str(second_err), "first_err": str(first_err), "head": repaired[:300]},
            )
            raise
        LOG.info("extract_parsed_after_repair")
        return value


def _normalize_path(path: str) -> Optional[str]:
    cleaned = path.strip().lstrip("/")
    if not cleaned:
        return None
    if ".." in cleaned.replace("\\", "/").split("/"):
        return None
    return cleaned


def _to_edits(items: List[Any]) -> List[FileEdit]:
    edits: List[FileEdit] = []
    for idx, item in enumerate(items):
        if not isinstance(item, dict):
            LOG.debug("extract_item_not_object", extra={"index": idx})
            continue
        path = item.get("path")
        content = item.get("content")
        if not isinstance(path, str) or not isinstance(content, str) or not path or not content:
            LOG.debug("extract_item_incomplete", extra={"index": idx})
            continue
        normalized = _normalize_path(path)
        if normalized is None:
            LOG.warning("extract_item_path_rejected", extra={"index": idx, "path": path[:200]})
            continue
        try:
            edits.append(FileEdit(path=normalized, content=content, action=item.get("action")))
        except ValidationError as exc:
            LOG.debug("extract_item_invalid", extra={"index": idx, "err": str(exc)})
    return edits


def extract(text: str) -> ExtractionResult:
    """Pull the file-edit batch out of a complete assistant transcript."""
    text = text or ""
    raw = _candidate_region(text)
    result = _extract_from(raw)
    if result.outcome is ExtractionOutcome.TRUNCATED and raw != text:
        # The chosen block may have been cut at a fence inside a JSON string.
        LOG.info("extract_retry_full_text")
        result = _extract_from(text)
    return result


def _extract_from(raw: str) -> ExtractionResult:
    marker = raw.find(FILES_MARKER)
    if marker == -1:
        LOG.info("extract_no_files_marker", extra={"length": len(raw)})
        return ExtractionResult(ExtractionOutcome.NO_PAYLOAD)

    start = _find_object_start(raw, marker)
    if start == -1:
        LOG.warning("extract_no_opening_brace")
        return ExtractionResult(ExtractionOutcome.NO_PAYLOAD)

    end = find_balanced_end(raw, start)
    if end == -1:
        LOG.error("extract_truncated", extra={"length": len(raw) - start})
        return ExtractionResult(ExtractionOutcome.TRUNCATED)

    candidate = raw[start : end + 1]
    try:
        parsed = _parse(candidate)
    except json.JSONDecodeError:
        return ExtractionResult(ExtractionOutcome.INVALID)

    files = parsed.get("files") if isinstance(parsed, dict) else None
    if not isinstance(files, list) or not files:
        LOG.warning("extract_files_empty")
        return ExtractionResult(ExtractionOutcome.EMPTY)

    edits = _to_edits(files)
    dropped = len(files) - len(edits)
    if not edits:
        LOG.warning("extract_no_valid_files", extra={"total": len(files)})
        return ExtractionResult(ExtractionOutcome.NO_VALID_FILES, dropped=dropped)

    for edit in edits:
        LOG.info("extract_file", extra={"path": edit.path, "chars": len(edit.content), "action": edit.action})
    return ExtractionResult(ExtractionOutcome.OK, batch=FileEditBatch(files=edits), dropped=dropped)
