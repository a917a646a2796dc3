"""MetaDefender Cloud verdict-service client.

Two calls, both over the shared ``httpx.AsyncClient``:

  submit()        POST {base_url}/file   (application/octet-stream, streamed body)
                  → {"data_id": "..."}
  fetch_result()  GET  {base_url}/file/{data_id}
                  → {"scan_results": {"scan_all_result_a": "No Threat Detected" | "In Progress" | ...}}

Transport failures and undecodable bodies are raised as ``VerdictServiceError``
so the poller has exactly one exception type to convert into an outcome.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx

from bankbot.models.scan import ScanTicket
from bankbot.uploads.staging import StagedFile
from bankbot.utils.logger import PerformanceLogger, get_logger

logger = get_logger(__name__)


class VerdictServiceError(Exception):
    """The verdict service could not be reached or returned an unreadable body."""


class VerdictClient:
    """Thin async wrapper around the MetaDefender file-scan endpoints.

    Args:
        http_client: Shared pooled client (``app.state.http_client``).
        base_url:    API root, e.g. ``"https://api.metadefender.com/v4"``.
        api_key:     Sent in the ``apikey`` header on every call.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        api_key: Optional[str] = None,
    ) -> None:
        self._http = http_client
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key or ""

    def _headers(self, **extra: str) -> dict[str, str]:
        return {"apikey": self._api_key, **extra}

    async def submit(
        self, staged: StagedFile, timeout: Optional[float] = None
    ) -> tuple[Optional[ScanTicket], Any]:
        """Upload the staged file in a single streamed request.

        Args:
            staged:  File to upload.
            timeout: Per-request timeout in seconds; None keeps the client default.

        Returns:
            ``(ticket, body)`` — ``ticket`` is None when the response carries no
            ``data_id``; ``body`` is the decoded response for diagnostics.

        Raises:
            VerdictServiceError: On transport failure or a non-JSON response.
        """
        url = f"{self._base_url}/file"
        try:
            with PerformanceLogger("verdict_submit", logger, path=staged.local_path):
                response = await self._http.post(
                    url,
                    content=staged.iter_bytes(),
                    headers=self._headers(**{"Content-Type": "application/octet-stream"}),
                    timeout=_request_timeout(timeout),
                )
        except httpx.HTTPError as exc:
            raise VerdictServiceError(f"{type(exc).__name__}: {exc}") from exc

        body = _decode_json(response)
        data_id = body.get("data_id") if isinstance(body, dict) else None
        if not data_id:
            logger.error(
                "verdict_submit_no_data_id",
                status_code=response.status_code,
                body=body,
            )
            return None, body

        ticket = ScanTicket(external_id=str(data_id))
        logger.info("verdict_submitted", data_id=ticket.external_id, path=staged.local_path)
        return ticket, body

    async def fetch_result(
        self, ticket: ScanTicket, timeout: Optional[float] = None
    ) -> dict[str, Any]:
        """Query the current verdict for a ticket.

        Non-2xx answers are returned as an empty report (no verdict yet) after
        being logged; the poller keeps counting attempts against its budget.

        Raises:
            VerdictServiceError: On transport failure or a non-JSON 2xx response.
        """
        url = f"{self._base_url}/file/{ticket.external_id}"
        try:
            response = await self._http.get(
                url, headers=self._headers(), timeout=_request_timeout(timeout)
            )
        except httpx.HTTPError as exc:
            raise VerdictServiceError(f"{type(exc).__name__}: {exc}") from exc

        if response.is_error:
            logger.warning(
                "verdict_poll_http_error",
                data_id=ticket.external_id,
                status_code=response.status_code,
            )
            return {}

        body = _decode_json(response)
        return body if isinstance(body, dict) else {}


def _request_timeout(timeout: Optional[float]) -> Any:
    if timeout is None:
        return httpx.USE_CLIENT_DEFAULT
    return httpx.Timeout(timeout)


def _decode_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise VerdictServiceError(
            f"Undecodable verdict-service response (HTTP {response.status_code})"
        ) from exc
