"""Reassemble ``data:`` event records from a chunked byte stream.

Chunks arrive with no line alignment. Complete lines are pulled off a
carry-over buffer; a ``data:`` payload that does not parse yet is pushed back
so that more bytes can complete it. Whatever is left when the source ends is
rescanned once, line by line.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any, AsyncIterable, AsyncIterator, Iterable, List, Optional, TypeVar

LOG = logging.getLogger("codeai.stream")

EVENT_PREFIX = "data: "
COMMENT_PREFIX = ":"
DONE_SENTINEL = "[DONE]"

T = TypeVar("T")


def iter_as_async(it: Iterable[T]) -> AsyncIterator[T]:
    async def gen() -> AsyncIterator[T]:
        for x in it:
            yield x

    return gen()


class _Unparsed(Exception):
    pass


def _event_payload(line: str) -> Optional[str]:
    if line.endswith("\r"):
        line = line[:-1]
    if not line.strip() or line.startswith(COMMENT_PREFIX):
        return None
    if not line.startswith(EVENT_PREFIX):
        return None
    return line[len(EVENT_PREFIX) :].strip()


def _delta_from(payload: str) -> Optional[str]:
    try:
        envelope: Any = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise _Unparsed(str(exc)) from exc
    if not isinstance(envelope, dict):
        return None
    choices = envelope.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    if isinstance(content, str) and content:
        return content
    return None


class SSEStreamReader:
    """Incremental decoder for chat-completion event streams."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.done = False

    def feed(self, chunk: bytes) -> List[str]:
        """Consume one chunk and return the text deltas it completed."""
        if self.done:
            return []
        self._buffer += self._decoder.decode(chunk)
        deltas: List[str] = []
        while True:
            newline = self._buffer.find("\n")
            if newline == -1:
                break
            line = self._buffer[:newline]
            self._buffer = self._buffer[newline + 1 :]
            payload = _event_payload(line)
            if payload is None:
                continue
            if payload == DONE_SENTINEL:
                self.done = True
                self._buffer = ""
                break
            try:
                delta = _delta_from(payload)
            except _Unparsed:
                # The record may be split; retry once more bytes have arrived.
                self._buffer = line + "\n" + self._buffer
                LOG.debug("stream_line_deferred", extra={"chars": len(line)})
                break
            if delta:
                deltas.append(delta)
        return deltas

    def finish(self) -> List[str]:
        """Flush the decoder and rescan whatever is still buffered."""
        if self.done:
            return []
        self._buffer += self._decoder.decode(b"", final=True)
        remaining, self._buffer = self._buffer, ""
        self.done = True
        deltas: List[str] = []
        if not remaining.strip():
            return deltas
        for raw in remaining.split("\n"):
            payload = _event_payload(raw)
            if payload is None or payload == DONE_SENTINEL:
                continue
            try:
                delta = _delta_from(payload)
            except _Unparsed:
                LOG.debug("stream_line_dropped", extra={"chars": len(raw)})
                continue
            if delta:
                deltas.append(delta)
        return deltas


async def read_deltas(chunks: AsyncIterable[bytes]) -> AsyncIterator[str]:
    """Yield text deltas, in arrival order, from an async byte-chunk source."""
    reader = SSEStreamReader()
    async for chunk in chunks:
        for delta in reader.feed(chunk):
            yield delta
        if reader.done:
            LOG.debug("stream_done_sentinel")
            return
    for delta in reader.finish():
        yield delta
