"""Incremental Server-Sent Events decoding."""

from __future__ import annotations

import codecs
from dataclasses import dataclass


@dataclass(frozen=True)
class SSEEvent:
    """A single decoded SSE record."""

    event: str
    data: str


class SSEDecoder:
    """
    Buffering decoder that turns raw byte chunks into SSE events.

    Chunks may split records, lines, or even multi-byte characters at
    arbitrary points. Complete lines are processed as they arrive; the
    trailing partial line is held back until the next chunk completes it.
    A record is emitted only at its blank-line terminator, and only if a
    data payload was seen.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._event = ""
        self._data = ""

    def feed(self, chunk: bytes) -> list[SSEEvent]:
        """
        Feed a chunk of bytes.

        Args:
            chunk: Raw bytes read from the stream

        Returns:
            Events completed by this chunk, in stream order
        """
        self._buffer += self._decoder.decode(chunk)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()

        events: list[SSEEvent] = []
        for line in lines:
            event = self._process_line(line.removesuffix("\r"))
            if event is not None:
                events.append(event)
        return events

    def _process_line(self, line: str) -> SSEEvent | None:
        if line.startswith("event:"):
            self._event = line[6:].strip()
        elif line.startswith("data:"):
            self._data = line[5:].strip()
        elif line == "" and self._data:
            event = SSEEvent(event=self._event or "message", data=self._data)
            self._event = ""
            self._data = ""
            return event
        return None
