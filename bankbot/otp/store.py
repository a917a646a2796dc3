"""In-memory verification-code store with per-entry expiry.

Process-wide state keyed by normalized phone number. Every entry carries an
absolute expiry; expired entries are treated as absent on lookup (lazy expiry)
and removed in bulk by ``sweep()``, which the application lifespan runs on a
fixed interval so the store cannot grow without bound.

Single-threaded asyncio use only (all access from the event loop).
"""

from __future__ import annotations

import hmac
import secrets
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Union

from bankbot.constants import DEFAULT_OTP_TTL_SECONDS, OTP_CODE_LENGTH


class VerifyStatus(str, Enum):
    VERIFIED = "VERIFIED"
    MISMATCH = "MISMATCH"
    NOT_FOUND = "NOT_FOUND"


@dataclass(frozen=True)
class _Entry:
    code: str
    expires_at: float


class VerificationCodeStore:
    """Issue and verify one-time codes.

    Args:
        ttl_seconds: Lifetime of an issued code.
        clock:       Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_OTP_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, _Entry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def issue(self, key: str) -> str:
        """Create a fresh code for ``key``, replacing any previous one."""
        low = 10 ** (OTP_CODE_LENGTH - 1)
        code = str(low + secrets.randbelow(9 * low))
        self._entries[key] = _Entry(code=code, expires_at=self._clock() + self._ttl)
        return code

    def discard(self, key: str) -> None:
        self._entries.pop(key, None)

    def verify(self, key: str, code: Union[str, int]) -> VerifyStatus:
        """Check ``code`` for ``key``. A successful verification consumes the code."""
        entry = self._entries.get(key)
        if entry is None:
            return VerifyStatus.NOT_FOUND
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return VerifyStatus.NOT_FOUND
        if not hmac.compare_digest(entry.code, str(code).strip()):
            return VerifyStatus.MISMATCH
        del self._entries[key]
        return VerifyStatus.VERIFIED

    def sweep(self) -> int:
        """Remove every expired entry; return how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)
