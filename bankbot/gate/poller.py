"""Poll-to-completion gate.

Provides ``scan()``: submit a staged file, then poll the verdict service on a
fixed interval until a terminal verdict arrives or the attempt budget runs out.

INVARIANTS:
  - ``scan()`` ALWAYS returns a ``ScanOutcome`` — it NEVER raises.
  - Exactly one outcome per submission; polling stops at the first terminal verdict.
  - At most ``max_attempts`` verdict queries, separated by ``poll_interval_s``.
  - Submission plus polling finish within ``deadline_s`` wall-clock seconds,
    however slowly the verdict service answers.

Verdict mapping per query (``scan_results.scan_all_result_a``):
  "No Threat Detected"            → CLEAN, stop
  absent / empty / "In Progress"  → keep polling
  anything else                   → BLOCKED(detail = full response), stop
Budget exhausted                  → INDETERMINATE("timeout")
Deadline passed                   → INDETERMINATE("timeout")
No data_id on submission          → INDETERMINATE("submission failed"), no polling
Transport / decode failure        → INDETERMINATE, logged
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional

from bankbot.constants import (
    DEFAULT_SCAN_DEADLINE_SLACK_S,
    DEFAULT_SCAN_MAX_ATTEMPTS,
    DEFAULT_SCAN_POLL_INTERVAL_S,
    REASON_SERVICE_UNAVAILABLE,
    REASON_SUBMISSION_FAILED,
    REASON_TIMEOUT,
    VERDICT_CLEAN_SENTINEL,
    VERDICT_IN_PROGRESS_SENTINEL,
)
from bankbot.gate.client import VerdictClient
from bankbot.models.scan import ScanOutcome, ScanTicket
from bankbot.uploads.staging import StagedFile
from bankbot.utils.logger import get_logger

logger = get_logger(__name__)

Sleeper = Callable[[float], Awaitable[Any]]


class _Budget:
    """Wall-clock allowance for one scan, plus the attempts spent so far."""

    def __init__(self, deadline_s: float) -> None:
        self._expires_at = time.monotonic() + deadline_s
        self.attempts = 0

    def remaining(self) -> float:
        return max(self._expires_at - time.monotonic(), 0.0)

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0


def extract_verdict(report: Any) -> Optional[Any]:
    """Return ``scan_results.scan_all_result_a`` or None when not reported yet."""
    if not isinstance(report, dict):
        return None
    scan_results = report.get("scan_results")
    if not isinstance(scan_results, dict):
        return None
    return scan_results.get("scan_all_result_a") or None


async def scan(
    staged: StagedFile,
    client: VerdictClient,
    *,
    max_attempts: int = DEFAULT_SCAN_MAX_ATTEMPTS,
    poll_interval_s: float = DEFAULT_SCAN_POLL_INTERVAL_S,
    deadline_s: Optional[float] = None,
    sleep: Sleeper = asyncio.sleep,
) -> ScanOutcome:
    """Submit ``staged`` and poll to a terminal ``ScanOutcome``.

    Args:
        staged:          File to scan (read, never modified or released here).
        client:          Verdict-service client.
        max_attempts:    Maximum number of verdict queries (>= 1).
        poll_interval_s: Delay between consecutive queries.
        deadline_s:      Hard limit for submission plus polling. Defaults to
                         ``max_attempts × poll_interval_s`` plus a fixed slack.
        sleep:           Awaitable delay function (injectable for tests).

    Returns:
        ScanOutcome — CLEAN, BLOCKED or INDETERMINATE. Never raises.
    """
    if deadline_s is None:
        deadline_s = max_attempts * poll_interval_s + DEFAULT_SCAN_DEADLINE_SLACK_S
    budget = _Budget(deadline_s)

    try:
        return await asyncio.wait_for(
            _submit_and_poll(staged, client, max_attempts, poll_interval_s, sleep, budget),
            timeout=deadline_s,
        )
    except asyncio.TimeoutError:
        logger.warning(
            "verdict_deadline_exceeded",
            path=staged.local_path,
            attempts=budget.attempts,
            deadline_s=deadline_s,
        )
        return ScanOutcome.indeterminate(REASON_TIMEOUT, attempts=budget.attempts)


async def _submit_and_poll(
    staged: StagedFile,
    client: VerdictClient,
    max_attempts: int,
    poll_interval_s: float,
    sleep: Sleeper,
    budget: _Budget,
) -> ScanOutcome:
    try:
        ticket, submit_body = await client.submit(staged, timeout=budget.remaining())
    except Exception as exc:  # noqa: BLE001
        logger.error(
            "verdict_submit_failed",
            path=staged.local_path,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        if budget.expired:
            return ScanOutcome.indeterminate(REASON_TIMEOUT, detail=str(exc))
        return ScanOutcome.indeterminate(REASON_SUBMISSION_FAILED, detail=str(exc))

    if ticket is None:
        return ScanOutcome.indeterminate(REASON_SUBMISSION_FAILED, detail=submit_body)

    return await _poll(ticket, client, max_attempts, poll_interval_s, sleep, budget)


async def _poll(
    ticket: ScanTicket,
    client: VerdictClient,
    max_attempts: int,
    poll_interval_s: float,
    sleep: Sleeper,
    budget: _Budget,
) -> ScanOutcome:
    for attempt in range(1, max_attempts + 1):
        budget.attempts = attempt
        logger.debug(
            "verdict_poll",
            data_id=ticket.external_id,
            attempt=attempt,
            max_attempts=max_attempts,
        )
        try:
            report = await client.fetch_result(ticket, timeout=budget.remaining())
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "verdict_poll_failed",
                data_id=ticket.external_id,
                attempt=attempt,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            reason = REASON_TIMEOUT if budget.expired else REASON_SERVICE_UNAVAILABLE
            return ScanOutcome.indeterminate(reason, detail=str(exc), attempts=attempt)

        verdict = extract_verdict(report)
        if verdict == VERDICT_CLEAN_SENTINEL:
            logger.info("verdict_clean", data_id=ticket.external_id, attempts=attempt)
            return ScanOutcome.clean(attempts=attempt)
        if verdict is not None and verdict != VERDICT_IN_PROGRESS_SENTINEL:
            logger.warning(
                "verdict_blocked",
                data_id=ticket.external_id,
                attempts=attempt,
                verdict=verdict,
            )
            return ScanOutcome.blocked(report, attempts=attempt)

        if attempt < max_attempts:
            await sleep(poll_interval_s)

    logger.warning(
        "verdict_timeout",
        data_id=ticket.external_id,
        attempts=max_attempts,
        waited_s=max_attempts * poll_interval_s,
    )
    return ScanOutcome.indeterminate(REASON_TIMEOUT, attempts=max_attempts)
