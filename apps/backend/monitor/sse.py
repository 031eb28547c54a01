"""
Incremental decoder for the summary event stream.

Frames look like ``data: <json>\\n\\n``. The payload is one of
``{"chunk": str}``, ``{"done": true, "fullSummary"?: str}`` or
``{"error": str, "quotaExceeded"?: bool}``.
"""
import codecs
import json
import logging
from dataclasses import dataclass
from typing import List, Optional, Union

from .errors import StreamParseError

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"


@dataclass(frozen=True)
class Chunk:
    text: str


@dataclass(frozen=True)
class Done:
    # Authoritative text; replaces the concatenated chunks when set
    full_text: Optional[str] = None


@dataclass(frozen=True)
class Error:
    message: str
    quota_exceeded: bool = False


StreamEvent = Union[Chunk, Done, Error]


def decode_frame(payload: str) -> List[StreamEvent]:
    """
    Decode one frame payload into events.

    An error key wins over everything else. A frame carrying both a chunk
    and done yields the chunk first. Unknown shapes yield nothing.

    Raises:
        StreamParseError: payload is not a JSON object
    """
    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, ValueError) as e:
        raise StreamParseError(f"Invalid frame payload: {e}") from e

    if not isinstance(data, dict):
        raise StreamParseError(f"Frame payload is not an object: {type(data).__name__}")

    if data.get("error"):
        return [Error(message=str(data["error"]), quota_exceeded=bool(data.get("quotaExceeded")))]

    events: List[StreamEvent] = []
    chunk = data.get("chunk")
    if isinstance(chunk, str) and chunk:
        events.append(Chunk(chunk))

    if data.get("done"):
        full_text = data.get("fullSummary")
        events.append(Done(full_text if isinstance(full_text, str) and full_text else None))

    return events


class SseDecoder:
    """
    Turns arbitrarily split byte chunks into stream events.

    A line cut by a read boundary stays buffered until its newline arrives,
    so no fragment is dropped or parsed twice.
    """

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self.skipped = 0

    def feed(self, data: bytes) -> List[StreamEvent]:
        self._buffer += self._decoder.decode(data)
        *lines, self._buffer = self._buffer.split("\n")
        return self._decode_lines(lines)

    def flush(self) -> List[StreamEvent]:
        """Decode whatever is left once the stream has ended."""
        self._buffer += self._decoder.decode(b"", final=True)
        remainder, self._buffer = self._buffer, ""
        if not remainder:
            return []
        return self._decode_lines(remainder.split("\n"))

    def _decode_lines(self, lines: List[str]) -> List[StreamEvent]:
        events: List[StreamEvent] = []
        for line in lines:
            line = line.rstrip("\r")
            if not line.startswith(DATA_PREFIX):
                continue

            payload = line[len(DATA_PREFIX):]
            if payload.startswith(" "):
                payload = payload[1:]
            if not payload.strip():
                continue

            try:
                events.extend(decode_frame(payload))
            except StreamParseError as e:
                self.skipped += 1
                logger.debug(f"[sse] Skipping malformed frame: {e}")
        return events
