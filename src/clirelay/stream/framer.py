"""Line framing for chunked process output."""

from __future__ import annotations

import codecs


class LineFramer:
    """Turns arbitrary text or byte chunks into complete lines.

    The unterminated tail of each chunk is kept until a later chunk
    completes it. Byte chunks are decoded incrementally, so a UTF-8
    sequence split across two reads is reassembled before framing.
    """

    def __init__(self) -> None:
        self._pending = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def pending(self) -> str:
        """The trailing fragment not yet terminated by a newline."""
        return self._pending

    def feed(self, chunk: str | bytes) -> list[str]:
        """Append *chunk* and return every line it completes, in order."""
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        if not chunk:
            return []
        parts = (self._pending + chunk).split("\n")
        self._pending = parts.pop()
        return [part.rstrip("\r") for part in parts]

    def flush(self) -> list[str]:
        """Return the remaining fragment at end of stream, if any."""
        tail = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        if not tail:
            return []
        return [tail.rstrip("\r")]
