"""Line-oriented server-push event decoding.

The decoder is transport-agnostic: it takes raw body bytes, reassembles
UTF-8 across chunk boundaries, splits lines and yields ``SseEvent`` records.
JSON parsing of the payload belongs to the provider client.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass

from inference_gateway.utf8 import Utf8ReassemblyBuffer

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"
DEFAULT_EVENT_KIND = "content"
_IGNORED_FIELDS = ("id", "retry")


@dataclass(frozen=True)
class SseEvent:
    """One decoded data payload and the event name it was announced with."""

    kind: str
    data: str


class StreamEventDecoder:
    """Incremental decoder for ``event:``/``data:`` framed streams."""

    def __init__(self) -> None:
        self._utf8 = Utf8ReassemblyBuffer()
        self._partial = ""
        self._event_name: str | None = None
        self._done = False
        self.malformed_lines = 0

    @property
    def done(self) -> bool:
        """True once the terminal sentinel has been seen."""
        return self._done

    def feed(self, chunk: bytes) -> list[SseEvent]:
        if self._done:
            return []
        self._partial += self._utf8.append(chunk)
        events: list[SseEvent] = []
        while not self._done and "\n" in self._partial:
            line, self._partial = self._partial.split("\n", 1)
            event = self._parse_line(line)
            if event is not None:
                events.append(event)
        return events

    def close(self) -> list[SseEvent]:
        """Decode a final unterminated line once the transport has closed."""
        if self._done:
            return []
        tail = self._partial + self._utf8.flush()
        self._partial = ""
        if not tail.strip():
            return []
        event = self._parse_line(tail)
        return [event] if event is not None else []

    def _parse_line(self, raw_line: str) -> SseEvent | None:
        line = raw_line.rstrip("\r")
        if not line.strip() or line.startswith(":"):
            return None
        field, sep, value = line.partition(":")
        if not sep:
            self._malformed(line)
            return None
        if value.startswith(" "):
            value = value[1:]
        field = field.strip()
        if field == "event":
            self._event_name = value.strip() or None
            return None
        if field == "data":
            payload = value.strip()
            kind = self._event_name or DEFAULT_EVENT_KIND
            self._event_name = None
            if payload == DONE_SENTINEL:
                self._done = True
                return None
            if not payload:
                return None
            return SseEvent(kind=kind, data=payload)
        if field in _IGNORED_FIELDS:
            return None
        self._malformed(line)
        return None

    def _malformed(self, line: str) -> None:
        self.malformed_lines += 1
        logger.debug("Skipping malformed stream line: %.200s", line)


async def aiter_events(
    source: AsyncIterable[bytes],
    decoder: StreamEventDecoder | None = None,
) -> AsyncIterator[SseEvent]:
    """Yield events from an async byte source until the sentinel or end of stream.

    Transport failures raised by ``source`` propagate to the caller.
    """
    decoder = decoder or StreamEventDecoder()
    async for chunk in source:
        for event in decoder.feed(chunk):
            yield event
        if decoder.done:
            return
    for event in decoder.close():
        yield event
