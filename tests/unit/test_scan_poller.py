"""Unit tests for the poll-to-completion gate.

Uses a scripted fake client (no HTTP) and an injected sleep recorder so the
attempt count and the delays between queries are observable.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Optional

import httpx
import pytest

from bankbot.constants import REASON_SERVICE_UNAVAILABLE, REASON_SUBMISSION_FAILED, REASON_TIMEOUT
from bankbot.gate.client import VerdictClient, VerdictServiceError
from bankbot.gate.poller import extract_verdict, scan
from bankbot.models.scan import ScanTicket, Verdict
from bankbot.uploads.staging import StagedFile, staged_upload

# ─── Helpers ──────────────────────────────────────────────────────────────────


def _report(verdict: Optional[str]) -> dict[str, Any]:
    if verdict is None:
        return {"scan_results": {}}
    return {"scan_results": {"scan_all_result_a": verdict}, "data_id": "abc"}


class _FakeClient:
    """Returns scripted reports; the last one repeats once the script runs out."""

    def __init__(
        self,
        reports: list[Any],
        ticket: Optional[ScanTicket] = ScanTicket(external_id="abc"),
        submit_error: Optional[Exception] = None,
    ) -> None:
        self._reports = list(reports)
        self._ticket = ticket
        self._submit_error = submit_error
        self.submits = 0
        self.queries = 0
        self.timeouts: list[Optional[float]] = []

    async def submit(self, staged: StagedFile, timeout: Optional[float] = None) -> tuple[Optional[ScanTicket], Any]:
        self.submits += 1
        self.timeouts.append(timeout)
        if self._submit_error is not None:
            raise self._submit_error
        return self._ticket, {"data_id": "abc"} if self._ticket else {"error": "quota"}

    async def fetch_result(self, ticket: ScanTicket, timeout: Optional[float] = None) -> dict[str, Any]:
        self.queries += 1
        self.timeouts.append(timeout)
        report = self._reports[min(self.queries, len(self._reports)) - 1]
        if isinstance(report, Exception):
            raise report
        return report


class _SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _staged() -> StagedFile:
    return StagedFile(local_path="/tmp/x.pdf", original_name="x.pdf", declared_type="application/pdf")


# ─── extract_verdict ─────────────────────────────────────────────────────────


class TestExtractVerdict:
    def test_present(self) -> None:
        assert extract_verdict(_report("Infected")) == "Infected"

    def test_absent(self) -> None:
        assert extract_verdict({}) is None
        assert extract_verdict({"scan_results": {}}) is None

    def test_empty_string_is_absent(self) -> None:
        assert extract_verdict(_report("")) is None

    def test_non_dict(self) -> None:
        assert extract_verdict(None) is None
        assert extract_verdict(["scan_results"]) is None


# ─── scan() ──────────────────────────────────────────────────────────────────


class TestScanOutcomes:
    @pytest.mark.asyncio
    async def test_clean_on_first_query(self) -> None:
        client = _FakeClient([_report("No Threat Detected")])
        sleep = _SleepRecorder()
        outcome = await scan(_staged(), client, max_attempts=5, poll_interval_s=3.0, sleep=sleep)

        assert outcome.verdict is Verdict.CLEAN
        assert outcome.attempts == 1
        assert client.queries == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_clean_after_in_progress(self) -> None:
        client = _FakeClient([_report("In Progress"), _report("No Threat Detected")])
        sleep = _SleepRecorder()
        outcome = await scan(_staged(), client, max_attempts=20, poll_interval_s=3.0, sleep=sleep)

        assert outcome.is_clean
        assert outcome.attempts == 2
        assert client.queries == 2
        assert sleep.delays == [3.0]

    @pytest.mark.parametrize("k", [1, 3, 7])
    @pytest.mark.asyncio
    async def test_blocked_at_attempt_k(self, k: int) -> None:
        reports = [_report(None)] * (k - 1) + [_report("Infected")]
        client = _FakeClient(reports)
        sleep = _SleepRecorder()
        outcome = await scan(_staged(), client, max_attempts=10, poll_interval_s=1.5, sleep=sleep)

        assert outcome.verdict is Verdict.BLOCKED
        assert outcome.attempts == k
        assert client.queries == k
        assert outcome.detail == _report("Infected")
        assert sleep.delays == [1.5] * (k - 1)

    @pytest.mark.asyncio
    async def test_timeout_after_exactly_max_attempts(self) -> None:
        client = _FakeClient([_report("In Progress")])
        sleep = _SleepRecorder()
        outcome = await scan(_staged(), client, max_attempts=4, poll_interval_s=2.0, sleep=sleep)

        assert outcome.verdict is Verdict.INDETERMINATE
        assert outcome.reason == REASON_TIMEOUT
        assert outcome.attempts == 4
        assert client.queries == 4
        assert sleep.delays == [2.0, 2.0, 2.0]

    @pytest.mark.asyncio
    async def test_single_attempt_budget(self) -> None:
        client = _FakeClient([_report(None)])
        outcome = await scan(_staged(), client, max_attempts=1, poll_interval_s=9.0, sleep=_SleepRecorder())
        assert outcome.reason == REASON_TIMEOUT
        assert client.queries == 1

    @pytest.mark.asyncio
    async def test_no_ticket_is_submission_failure_without_polling(self) -> None:
        client = _FakeClient([_report("No Threat Detected")], ticket=None)
        outcome = await scan(_staged(), client, max_attempts=5, poll_interval_s=0, sleep=_SleepRecorder())

        assert outcome.verdict is Verdict.INDETERMINATE
        assert outcome.reason == REASON_SUBMISSION_FAILED
        assert outcome.attempts == 0
        assert client.queries == 0

    @pytest.mark.asyncio
    async def test_submit_error_is_submission_failure(self) -> None:
        client = _FakeClient([], submit_error=VerdictServiceError("ConnectError: refused"))
        outcome = await scan(_staged(), client, max_attempts=5, poll_interval_s=0, sleep=_SleepRecorder())

        assert outcome.reason == REASON_SUBMISSION_FAILED
        assert "refused" in outcome.detail
        assert client.queries == 0

    @pytest.mark.asyncio
    async def test_poll_error_is_service_unavailable(self) -> None:
        client = _FakeClient([_report("In Progress"), VerdictServiceError("ReadTimeout")])
        outcome = await scan(_staged(), client, max_attempts=5, poll_interval_s=0, sleep=_SleepRecorder())

        assert outcome.verdict is Verdict.INDETERMINATE
        assert outcome.reason == REASON_SERVICE_UNAVAILABLE
        assert outcome.attempts == 2

    @pytest.mark.asyncio
    async def test_unexpected_exception_never_escapes(self) -> None:
        client = _FakeClient([RuntimeError("boom")])
        outcome = await scan(_staged(), client, max_attempts=3, poll_interval_s=0, sleep=_SleepRecorder())
        assert outcome.verdict is Verdict.INDETERMINATE

    @pytest.mark.asyncio
    async def test_terminal_verdict_stops_polling(self) -> None:
        client = _FakeClient([_report("No Threat Detected"), _report("Infected")])
        outcome = await scan(_staged(), client, max_attempts=5, poll_interval_s=0, sleep=_SleepRecorder())
        assert outcome.is_clean
        assert client.queries == 1
        assert client.submits == 1


# ─── Wall-clock deadline ─────────────────────────────────────────────────────


def _slow_client(submit_delay: float = 0.0, query_delay: float = 0.0) -> VerdictClient:
    async def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            await asyncio.sleep(submit_delay)
            return httpx.Response(200, json={"data_id": "abc"})
        await asyncio.sleep(query_delay)
        return httpx.Response(200, json=_report("In Progress"))

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return VerdictClient(http, "https://verdicts.test/v4", api_key="k")


class TestScanDeadline:
    @pytest.mark.asyncio
    async def test_slow_query_is_cut_off_at_deadline(self, tmp_path) -> None:
        client = _slow_client(query_delay=1.0)
        started = time.monotonic()
        async with staged_upload(b"x", "a.pdf", directory=str(tmp_path)) as staged:
            outcome = await scan(staged, client, max_attempts=2, poll_interval_s=0.1, deadline_s=0.3)
        elapsed = time.monotonic() - started

        assert elapsed < 1.0
        assert outcome.verdict is Verdict.INDETERMINATE
        assert outcome.reason == REASON_TIMEOUT
        assert outcome.attempts == 1

    @pytest.mark.asyncio
    async def test_slow_submission_is_cut_off_at_deadline(self, tmp_path) -> None:
        client = _slow_client(submit_delay=1.0)
        started = time.monotonic()
        async with staged_upload(b"x", "a.pdf", directory=str(tmp_path)) as staged:
            outcome = await scan(staged, client, max_attempts=3, poll_interval_s=0, deadline_s=0.2)

        assert time.monotonic() - started < 1.0
        assert outcome.reason == REASON_TIMEOUT
        assert outcome.attempts == 0

    @pytest.mark.asyncio
    async def test_request_timeouts_stay_within_deadline(self) -> None:
        client = _FakeClient([_report("In Progress"), _report("No Threat Detected")])
        outcome = await scan(
            _staged(), client, max_attempts=5, poll_interval_s=0, deadline_s=4.0, sleep=_SleepRecorder()
        )

        assert outcome.is_clean
        assert len(client.timeouts) == 3
        assert all(t is not None and 0 < t <= 4.0 for t in client.timeouts)

    @pytest.mark.asyncio
    async def test_default_deadline_covers_poll_budget(self) -> None:
        client = _FakeClient([_report("In Progress")])
        await scan(_staged(), client, max_attempts=4, poll_interval_s=2.0, sleep=_SleepRecorder())

        # 4 × 2 s of polling plus slack; the fake sleep spends none of it.
        assert client.timeouts[0] > 8.0
