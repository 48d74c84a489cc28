"""Incremental UTF-8 decoding for byte streams that split code points.

Token callbacks from the native engine and chunked HTTP bodies can both cut
a multi-byte character in half. ``Utf8ReassemblyBuffer`` only ever emits
text for code points whose bytes are all present, and carries the
incomplete tail (at most 4 bytes) into the next call.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

MAX_SEQUENCE_LEN = 4


def _declared_length(byte: int) -> int | None:
    """Length announced by a lead byte, 1 for ASCII, 0 for continuation, None if invalid."""
    if byte & 0x80 == 0x00:
        return 1
    if byte & 0xC0 == 0x80:
        return 0
    if byte & 0xE0 == 0xC0:
        return 2
    if byte & 0xF0 == 0xE0:
        return 3
    if byte & 0xF8 == 0xF0:
        return 4
    return None


def complete_prefix_length(buf: bytes) -> int:
    """Return how many leading bytes of ``buf`` form complete sequences.

    Scans backward at most ``MAX_SEQUENCE_LEN`` bytes. If no lead byte is
    found in that window, or an invalid byte shows up, the whole buffer is
    treated as complete so malformed input never blocks output.
    """
    end = len(buf)
    i = end - 1
    while i >= 0 and i >= end - MAX_SEQUENCE_LEN:
        length = _declared_length(buf[i])
        if length is None or length == 1:
            return end
        if length == 0:
            i -= 1
            continue
        return end if end - i >= length else i
    return end


class Utf8ReassemblyBuffer:
    """Turns raw byte chunks into valid text fragments."""

    def __init__(self) -> None:
        self._carry = b""

    @property
    def pending(self) -> bytes:
        return self._carry

    def append(self, raw: bytes) -> str:
        if not raw:
            return ""
        buf = self._carry + raw
        cut = complete_prefix_length(buf)
        self._carry = buf[cut:]
        if not cut:
            return ""
        return buf[:cut].decode("utf-8", errors="replace")

    def append_text(self, text: str) -> str:
        """Feed a str delta; lone surrogates from a native tokenizer pass through as bytes."""
        return self.append(text.encode("utf-8", errors="surrogatepass"))

    def flush(self) -> str:
        """Decode whatever is left; no further bytes will arrive."""
        if not self._carry:
            return ""
        tail, self._carry = self._carry, b""
        logger.debug("Flushing %d incomplete UTF-8 byte(s)", len(tail))
        return tail.decode("utf-8", errors="replace")
