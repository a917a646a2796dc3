"""OCR.space text extraction client.

``OcrClient.extract()`` posts a staged file as multipart form data to
``{base_url}/parse/image`` and returns an ``ExtractionResult``. Like the gate,
it never raises: transport failures, undecodable bodies and empty results all
come back as a failed result carrying a short error string.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import httpx

from bankbot.uploads.staging import StagedFile
from bankbot.utils.logger import PerformanceLogger, get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ExtractionResult:
    text: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return bool(self.text)


def _parsed_text(body: Any) -> Optional[str]:
    """``ParsedResults[0].ParsedText`` or None."""
    if not isinstance(body, dict):
        return None
    results = body.get("ParsedResults")
    if not isinstance(results, list) or not results or not isinstance(results[0], dict):
        return None
    text = results[0].get("ParsedText")
    return text if isinstance(text, str) else None


class OcrClient:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        api_key: Optional[str] = None,
        language: str = "eng",
    ) -> None:
        self._http = http_client
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key or ""
        self._language = language

    async def extract(self, staged: StagedFile) -> ExtractionResult:
        """Extract text from a staged image or PDF."""
        url = f"{self._base_url}/parse/image"
        form = {
            "filetype": staged.extension,
            "language": self._language,
            "isOverlayRequired": "false",
        }
        try:
            content = await staged.read_bytes()
            with PerformanceLogger("ocr_extract", logger, path=staged.local_path):
                response = await self._http.post(
                    url,
                    data=form,
                    files={"file": (staged.original_name, content, staged.declared_type)},
                    headers={"apikey": self._api_key},
                )
            body = response.json()
        except (httpx.HTTPError, ValueError, OSError) as exc:
            logger.error(
                "ocr_request_failed",
                path=staged.local_path,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return ExtractionResult(error="Failed to extract text.")

        text = _parsed_text(body)
        if not text or not text.strip():
            logger.error("ocr_no_text", status_code=response.status_code, body=body)
            return ExtractionResult(error="OCR failed or returned no text.")

        logger.info("ocr_extracted", chars=len(text.strip()))
        return ExtractionResult(text=text.strip())
