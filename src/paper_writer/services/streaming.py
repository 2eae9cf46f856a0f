"""
Incremental parser for `data: <json>` streaming chat-completion frames.

Bytes go in as they are read off the socket; text fragments found at
``choices[0].delta.content`` come out in arrival order.
"""

import codecs
import json
import logging
from typing import Any

from paper_writer.constants import SSE_DATA_PREFIX, SSE_DONE_SENTINEL

logger = logging.getLogger(__name__)


class SSEFrameParser:
    """
    Split a byte stream into frames and extract the incremental text.

    ``buffer_partial_lines`` decides what happens to a frame that arrives
    split across two reads:

    * ``True`` (default): the unfinished tail of each read is held back and
      joined with the next read, so no frame is lost.
    * ``False``: every read is parsed on its own.  The two halves of a split
      frame are both unparsable and are dropped.  Kept for compatibility
      with clients that parse this way.

    Frames that are not valid JSON are skipped.  The done sentinel stops
    processing of the current read and sets ``done``; later reads are still
    parsed.
    """

    def __init__(self, buffer_partial_lines: bool = True) -> None:
        self.buffer_partial_lines = buffer_partial_lines
        self.done = False
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    def feed(self, data: bytes) -> list[str]:
        """Consume one read and return the text fragments it completed."""
        text = self._decoder.decode(data)
        if self.buffer_partial_lines:
            text = self._pending + text
            lines = text.split("\n")
            self._pending = lines.pop()
        else:
            lines = text.split("\n")
        return self._parse_lines(lines)

    def flush(self) -> list[str]:
        """Parse whatever is still held back once the stream has ended."""
        text = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        if not text:
            return []
        return self._parse_lines(text.split("\n"))

    def _parse_lines(self, lines: list[str]) -> list[str]:
        fragments: list[str] = []
        for line in lines:
            line = line.rstrip("\r")
            if not line.startswith(SSE_DATA_PREFIX):
                continue
            payload = line[len(SSE_DATA_PREFIX) :]
            if payload.strip() == SSE_DONE_SENTINEL:
                self.done = True
                break
            try:
                frame = json.loads(payload)
            except json.JSONDecodeError:
                logger.debug("Skipping unparsable stream frame: %s", payload[:80])
                continue
            text = delta_content(frame)
            if text:
                fragments.append(text)
        return fragments


def delta_content(frame: Any) -> str | None:
    """Return ``choices[0].delta.content`` or None if the path is absent."""
    if not isinstance(frame, dict):
        return None
    choices = frame.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    delta = first.get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    return content if isinstance(content, str) else None
