"""Upstream line framing for the streaming relay.

The token-streaming backend sends newline-delimited event lines:

    data: {"choices": [{"delta": {"content": "Hel"}}]}
    data: {"choices": [{"delta": {"content": "lo"}}]}
    data: [DONE]

Network chunks do not respect line (or even UTF-8 character) boundaries.
``FrameDecoder`` owns the per-connection frame buffer: it decodes bytes with an
incremental UTF-8 decoder, keeps the trailing partial line for the next chunk,
and turns every complete line into at most one ``RelayEvent`` via
``decode_line()`` — the single point where upstream text becomes the closed
TOKEN / DONE event set.

Malformed JSON on one line is logged and skipped; it never ends the stream.
Once the ``data: [DONE]`` sentinel is seen the decoder is finished and ignores
all further input.
"""

from __future__ import annotations

import codecs
import json
from typing import Any, Optional

from bankbot.constants import SSE_DATA_PREFIX, SSE_DONE_LINE
from bankbot.models.events import RelayEvent, RelayEventKind
from bankbot.utils.logger import get_logger

logger = get_logger(__name__)


def _extract_delta_content(payload: Any) -> str:
    """Return ``choices[0].delta.content`` or "" when absent / not text."""
    if not isinstance(payload, dict):
        return ""
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    first = choices[0]
    if not isinstance(first, dict):
        return ""
    delta = first.get("delta")
    if not isinstance(delta, dict):
        return ""
    content = delta.get("content")
    return content if isinstance(content, str) else ""


def decode_line(line: str) -> Optional[RelayEvent]:
    """Decode one complete upstream line.

    Returns:
        ``RelayEvent.done()`` for the sentinel line, ``RelayEvent.token(text)``
        for a data line with non-empty delta content, otherwise None (blank
        lines, comments, role-only deltas, malformed JSON).
    """
    trimmed = line.strip()
    if not trimmed:
        return None
    if trimmed == SSE_DONE_LINE:
        return RelayEvent.done()
    if not trimmed.startswith(SSE_DATA_PREFIX):
        return None

    raw = trimmed[len(SSE_DATA_PREFIX):]
    try:
        payload = json.loads(raw)
    except (ValueError, RecursionError) as exc:
        logger.warning("relay_malformed_frame", line=trimmed[:200], error=str(exc))
        return None

    text = _extract_delta_content(payload)
    if not text:
        return None
    return RelayEvent.token(text)


class FrameDecoder:
    """Incremental line reassembly for one relay connection."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._done = False
        self.lines_seen = 0

    @property
    def done(self) -> bool:
        """True once the sentinel line has been decoded."""
        return self._done

    @property
    def pending(self) -> str:
        """Undecoded tail held for the next chunk."""
        return self._buffer

    def feed(self, chunk: bytes) -> list[RelayEvent]:
        """Consume one network chunk; return events for every completed line.

        Events are returned in line order. If the sentinel is among them it is
        the last element and the rest of the chunk is discarded.
        """
        if self._done:
            return []
        self._buffer += self._decoder.decode(chunk)
        *complete, self._buffer = self._buffer.split("\n")
        return self._process(complete)

    def finish(self) -> list[RelayEvent]:
        """Flush at end of upstream stream: process the trailing fragment."""
        if self._done:
            return []
        self._buffer += self._decoder.decode(b"", final=True)
        tail, self._buffer = self._buffer, ""
        return self._process([tail])

    def _process(self, lines: list[str]) -> list[RelayEvent]:
        events: list[RelayEvent] = []
        for line in lines:
            self.lines_seen += 1
            event = decode_line(line)
            if event is None:
                continue
            events.append(event)
            if event.kind is RelayEventKind.DONE:
                self._done = True
                self._buffer = ""
                break
        return events
