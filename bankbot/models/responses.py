"""HTTP response builders for the upload endpoints.

Three failure modes are kept apart and are never confused:

  build_rejection_response():
      HTTP 400 — the gate did not return CLEAN. The body carries the verdict so the
      client can tell "content rejected" (BLOCKED) from "could not verify"
      (INDETERMINATE). Header ``X-BankBot-Verdict`` mirrors the verdict.

  build_missing_file_response():
      HTTP 400 — the multipart request carried no file. Nothing was staged.

  build_internal_error_response():
      HTTP 500 — an unexpected fault inside BankBot. Carries no verdict header.
"""

from __future__ import annotations

from typing import Any

from fastapi.responses import JSONResponse

from bankbot.models.scan import ScanOutcome, Verdict

_REJECTION_MESSAGES: dict[Verdict, str] = {
    Verdict.BLOCKED: "File is infected!",
    Verdict.INDETERMINATE: "File could not be verified.",
}


def build_rejection_response(outcome: ScanOutcome) -> JSONResponse:
    """Build the HTTP 400 response for a BLOCKED or INDETERMINATE outcome.

    Body:

    .. code-block:: json

        {
          "success": false,
          "verdict": "BLOCKED" | "INDETERMINATE",
          "error": "<human-readable message>",
          "reason": "<timeout | submission failed | ... | null>",
          "attempts": 3,
          "details": { ...full verdict-service response or null... }
        }

    Args:
        outcome: A ScanOutcome whose verdict is not CLEAN.

    Raises:
        ValueError: If called with a CLEAN outcome.
    """
    if outcome.is_clean:
        raise ValueError("build_rejection_response() called with a CLEAN outcome")

    response = JSONResponse(
        status_code=400,
        content={
            "success": False,
            "verdict": outcome.verdict.value,
            "error": _REJECTION_MESSAGES[outcome.verdict],
            "reason": outcome.reason,
            "attempts": outcome.attempts,
            "details": outcome.detail,
        },
    )
    response.headers["X-BankBot-Verdict"] = outcome.verdict.value
    return response


def build_missing_file_response(**extra: Any) -> JSONResponse:
    """Build the HTTP 400 response for a multipart request without a file."""
    return JSONResponse(
        status_code=400,
        content={**extra, "error": "No file uploaded."},
    )


def build_internal_error_response(**extra: Any) -> JSONResponse:
    """Build the HTTP 500 response for an unexpected internal fault.

    ``extra`` fields are merged into the body (e.g. ``success=False`` for the
    OCR endpoint, whose clients key off that field).
    """
    return JSONResponse(
        status_code=500,
        content={**extra, "error": "Internal server error."},
    )
