"""Relay event contracts and their outward SSE encoding.

A relay connection produces an ordered, finite sequence of ``RelayEvent``:
zero or more TOKEN events followed by at most one terminal DONE or ERROR.
``to_sse()`` is the single place the outward wire format is produced:

    TOKEN  →  data: {"response": "<text>"}\\n\\n
    DONE   →  data: [DONE]\\n\\n
    ERROR  →  data: {"error": "<message>"}\\n\\n
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class RelayEventKind(str, Enum):
    TOKEN = "TOKEN"
    DONE = "DONE"
    ERROR = "ERROR"


@dataclass(frozen=True)
class RelayEvent:
    """One outward event of the streaming relay."""

    kind: RelayEventKind
    text: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def token(cls, text: str) -> "RelayEvent":
        return cls(kind=RelayEventKind.TOKEN, text=text)

    @classmethod
    def done(cls) -> "RelayEvent":
        return cls(kind=RelayEventKind.DONE)

    @classmethod
    def error(cls, message: str) -> "RelayEvent":
        return cls(kind=RelayEventKind.ERROR, message=message)

    @property
    def is_terminal(self) -> bool:
        return self.kind is not RelayEventKind.TOKEN

    def to_sse(self) -> bytes:
        """Encode this event as one SSE frame."""
        if self.kind is RelayEventKind.TOKEN:
            payload = json.dumps({"response": self.text})
        elif self.kind is RelayEventKind.DONE:
            payload = "[DONE]"
        else:
            payload = json.dumps({"error": self.message})
        return f"data: {payload}\n\n".encode("utf-8")
