"""
Incremental parser for ``text/event-stream`` bodies.

This module provides:
- Chunk-boundary safe line splitting (LF, CR and CRLF)
- Incremental UTF-8 decoding
- Event assembly from ``event``, ``data``, ``id`` and ``retry`` fields
- Comment lines (heartbeats) counted but never dispatched
"""

import codecs
import json
from dataclasses import dataclass
from typing import Any, List, Optional

from ..utils.logging import get_logger

logger = get_logger("lexisync.sse_parser")


@dataclass(frozen=True)
class SSEEvent:
    """A dispatched server-sent event."""
    event: str = "message"
    data: str = ""
    id: Optional[str] = None

    def json(self) -> Any:
        """Decode ``data`` as JSON. Raises ValueError when it is not JSON."""
        return json.loads(self.data)


class SSEParser:
    """Turns a byte stream into :class:`SSEEvent` objects."""

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._skip_lf = False
        self._at_start = True

        self._event_type: Optional[str] = None
        self._data_lines: List[str] = []
        self._event_id: Optional[str] = None

        self.last_event_id: Optional[str] = None
        # Reconnection delay requested by the server, in milliseconds
        self.retry: Optional[int] = None
        self.comment_count = 0
        self.event_count = 0

    def feed(self, chunk: bytes) -> List[SSEEvent]:
        """
        Feed raw bytes.

        Args:
            chunk: Next piece of the response body, any size

        Returns:
            Events completed by this chunk, in order
        """
        text = self._decoder.decode(chunk)
        if self._at_start and text:
            self._at_start = False
            if text.startswith("﻿"):
                text = text[1:]

        events = []
        for line in self._split_lines(text):
            event = self._process_line(line)
            if event is not None:
                events.append(event)
        return events

    def reset(self) -> None:
        """Drop any partial event, e.g. after the connection dropped.

        ``last_event_id`` survives so it can be sent on reconnect.
        """
        self._decoder.reset()
        self._buffer = ""
        self._skip_lf = False
        self._at_start = True
        self._event_type = None
        self._data_lines = []
        self._event_id = None

    def _split_lines(self, text: str) -> List[str]:
        buf = self._buffer + text
        if self._skip_lf and buf:
            # CRLF split across two chunks
            if buf[0] == "\n":
                buf = buf[1:]
            self._skip_lf = False

        lines = []
        start = 0
        i = 0
        length = len(buf)
        while i < length:
            c = buf[i]
            if c == "\n" or c == "\r":
                lines.append(buf[start:i])
                if c == "\r":
                    if i + 1 < length:
                        if buf[i + 1] == "\n":
                            i += 1
                    else:
                        self._skip_lf = True
                start = i + 1
            i += 1

        self._buffer = buf[start:]
        return lines

    def _process_line(self, line: str) -> Optional[SSEEvent]:
        if not line:
            return self._dispatch()

        if line[0] == ":":
            self.comment_count += 1
            return None

        field, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if field == "event":
            self._event_type = value
        elif field == "data":
            self._data_lines.append(value)
        elif field == "id":
            if "\0" not in value:
                self._event_id = value
        elif field == "retry":
            if value.isdigit():
                self.retry = int(value)
            else:
                logger.debug("invalid_retry_field", value=value)
        return None

    def _dispatch(self) -> Optional[SSEEvent]:
        event = None
        if self._data_lines:
            event = SSEEvent(
                event=self._event_type or "message",
                data="\n".join(self._data_lines),
                id=self._event_id,
            )
            if self._event_id:
                self.last_event_id = self._event_id
            self.event_count += 1

        self._event_type = None
        self._data_lines = []
        self._event_id = None
        return event


__all__ = ['SSEEvent', 'SSEParser']
