"""Incremental decoder for the upstream event-stream framing.

The provider streams ``data: <json>`` lines separated by blank lines and ends
with ``data: [DONE]``. Network chunks do not respect line boundaries, so a
carry-over buffer holds the unterminated tail of each chunk until the next
chunk completes it. Only complete lines are parsed.
"""

import codecs
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"

_CLOSERS = {"{": "}", "[": "]"}


def extract_delta(payload: Any) -> str | None:
    """Return ``choices[0].delta.content`` when it is a non-empty string."""
    try:
        content = payload["choices"][0]["delta"].get("content")
    except (KeyError, IndexError, TypeError, AttributeError):
        return None
    if isinstance(content, str) and content:
        return content
    return None


def repair_truncated_json(text: str) -> str | None:
    """Close a JSON document that was cut off inside a string literal.

    Drops a dangling escape backslash, closes the string, then closes every
    open array and object in reverse order.

    Returns:
        The repaired text, or None when the text does not end inside a string.
    """
    stack: list[str] = []
    in_string = False
    escaped = False

    for char in text:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char in _CLOSERS:
            stack.append(_CLOSERS[char])
        elif char in ("}", "]"):
            if not stack or stack.pop() != char:
                return None

    if not in_string:
        return None

    if escaped:
        text = text[:-1]
    return text + '"' + "".join(reversed(stack))


class FrameDecoder:
    """Turns raw stream chunks into content deltas.

    Feed chunks in arrival order; each call returns the deltas completed by
    that chunk. Splitting the same byte sequence at any boundaries yields the
    same ordered deltas.
    """

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self._buffer = ""
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self.done = False
        self.dropped = 0

    def feed(self, chunk: bytes | str) -> list[str]:
        """Consume one chunk and return the deltas of every completed line."""
        if self.done:
            return []

        text = self._utf8.decode(chunk) if isinstance(chunk, bytes) else chunk
        if not text:
            return []

        self._buffer += text
        *lines, self._buffer = self._buffer.split("\n")
        return self._decode_lines(lines)

    def finish(self) -> list[str]:
        """Decode whatever is left once the underlying stream has ended."""
        if self.done:
            return []
        tail = self._buffer + self._utf8.decode(b"", final=True)
        self._buffer = ""
        if not tail.strip():
            return []
        return self._decode_lines([tail])

    def _decode_lines(self, lines: list[str]) -> list[str]:
        deltas: list[str] = []
        for line in lines:
            if self.done:
                break
            delta = self._decode_line(line.rstrip("\r"))
            if delta:
                deltas.append(delta)
        return deltas

    def _decode_line(self, line: str) -> str | None:
        if not line.startswith(DATA_PREFIX):
            return None

        payload = line[len(DATA_PREFIX) :].strip()
        if not payload:
            return None
        if payload == DONE_SENTINEL:
            self.done = True
            return None

        try:
            return extract_delta(json.loads(payload))
        except json.JSONDecodeError as e:
            return self._repair(payload, e)

    def _repair(self, payload: str, error: json.JSONDecodeError) -> str | None:
        repaired = repair_truncated_json(payload)
        if repaired is None:
            self.dropped += 1
            logger.warning(f"Dropping malformed stream frame: {error.msg}")
            return None

        try:
            return extract_delta(json.loads(repaired))
        except json.JSONDecodeError as e:
            self.dropped += 1
            logger.warning(f"Dropping stream frame after failed repair: {e.msg}")
            return None


async def iter_deltas(chunks: AsyncIterable[bytes | str]) -> AsyncIterator[str]:
    """Lazily yield content deltas from an async iterable of raw chunks."""
    decoder = FrameDecoder()
    async for chunk in chunks:
        for delta in decoder.feed(chunk):
            yield delta
        if decoder.done:
            return
    for delta in decoder.finish():
        yield delta
