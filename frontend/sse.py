"""
Incremental parser for the proxy's event stream.

Network reads do not respect record boundaries: one read may end halfway
through a JSON object, or even halfway through a UTF-8 sequence. The parser
keeps the unterminated tail between reads and only decodes complete lines.
"""
import codecs
import json
import logging
from dataclasses import dataclass
from typing import Optional, Union

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "


@dataclass(frozen=True)
class TextFragment:
    text: str


@dataclass(frozen=True)
class StreamDone:
    pass


StreamEvent = Union[TextFragment, StreamDone]


def parse_record(line: str) -> Optional[StreamEvent]:
    """
    Decode one `data: <json>` line.

    Anything else (blank separators, comments, malformed JSON, unknown
    payloads) returns None and is treated as noise.
    """
    if not line.startswith(DATA_PREFIX):
        return None
    try:
        payload = json.loads(line[len(DATA_PREFIX):])
    except ValueError:
        logger.debug(f"Dropping malformed stream record: {line[:80]!r}")
        return None
    if not isinstance(payload, dict):
        return None

    text = payload.get("text")
    if isinstance(text, str):
        return TextFragment(text) if text else None
    if payload.get("done") is True:
        return StreamDone()
    return None


class EventStreamParser:
    """Feed raw reads in arrival order; get back the complete events they finish."""

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._residual = ""

    def feed(self, chunk: bytes | str) -> list[StreamEvent]:
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        lines = (self._residual + chunk).split("\n")
        self._residual = lines.pop()
        return self._parse_lines(lines)

    def flush(self) -> list[StreamEvent]:
        """Parse whatever is left once the stream has ended."""
        tail = self._residual + self._decoder.decode(b"", final=True)
        self._residual = ""
        return self._parse_lines(tail.split("\n"))

    @staticmethod
    def _parse_lines(lines: list[str]) -> list[StreamEvent]:
        events = []
        for line in lines:
            event = parse_record(line.rstrip("\r"))
            if event is not None:
                events.append(event)
        return events
