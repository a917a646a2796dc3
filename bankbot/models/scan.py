"""Verdict gate contracts.

``ScanOutcome`` is a closed tri-state result: exactly one is produced per
``ScanTicket`` and only ``Verdict.CLEAN`` permits the upload to proceed.
``BLOCKED`` (the service reported a detection) and ``INDETERMINATE`` (the file
could not be verified) both reject, but stay distinguishable to the client.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class Verdict(str, Enum):
    CLEAN = "CLEAN"
    BLOCKED = "BLOCKED"
    INDETERMINATE = "INDETERMINATE"


@dataclass(frozen=True)
class ScanTicket:
    """Handle returned by the verdict service for one submitted file.

    Lives only for the duration of the polling loop; never persisted.
    """

    external_id: str
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class ScanOutcome:
    """Terminal result of one scan.

    Fields:
        verdict:  CLEAN | BLOCKED | INDETERMINATE.
        detail:   Full verdict-service response for BLOCKED (and for a failed
                  submission, when the service answered at all).
        reason:   Short machine-readable cause for INDETERMINATE
                  (``"submission failed"``, ``"timeout"``, ...).
        attempts: Number of verdict queries performed.
    """

    verdict: Verdict
    detail: Optional[Any] = None
    reason: Optional[str] = None
    attempts: int = 0

    @classmethod
    def clean(cls, attempts: int = 0) -> "ScanOutcome":
        return cls(verdict=Verdict.CLEAN, attempts=attempts)

    @classmethod
    def blocked(cls, detail: Any, attempts: int = 0) -> "ScanOutcome":
        return cls(verdict=Verdict.BLOCKED, detail=detail, attempts=attempts)

    @classmethod
    def indeterminate(
        cls, reason: str, detail: Optional[Any] = None, attempts: int = 0
    ) -> "ScanOutcome":
        return cls(
            verdict=Verdict.INDETERMINATE, reason=reason, detail=detail, attempts=attempts
        )

    @property
    def is_clean(self) -> bool:
        return self.verdict is Verdict.CLEAN
