"""Upload endpoints.

  POST /scan-and-upload   multipart ``file`` → malware gate
      200 {"success": true}                      CLEAN
      400 {"success": false, "verdict": ...}     BLOCKED / INDETERMINATE
      400 {"error": "No file uploaded."}         no file part
      500 {"error": "Internal server error."}    unexpected fault (e.g. staging I/O)

  POST /ocr-image         multipart ``file`` → text extraction
      200 {"success": true, "text": "..."}
      400 {"success": false, "error": "No file uploaded."}
      500 {"success": false, "error": "..."}     extraction failed / internal fault
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, File, Request, UploadFile
from fastapi.responses import JSONResponse

from bankbot.config import Config
from bankbot.models.responses import (
    build_internal_error_response,
    build_missing_file_response,
    build_rejection_response,
)
from bankbot.uploads.lifecycle import extract_and_release, scan_and_admit
from bankbot.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["uploads"])


@router.post("/scan-and-upload")
async def scan_and_upload(
    request: Request,
    file: Optional[UploadFile] = File(None),
) -> JSONResponse:
    """Admit an uploaded file only if the verdict service reports it clean."""
    if file is None or not file.filename:
        logger.warning("scan_upload_missing_file")
        return build_missing_file_response()

    config: Config = request.app.state.config
    try:
        file_bytes = await file.read()
        outcome = await scan_and_admit(
            file_bytes,
            file.filename,
            file.content_type or "application/octet-stream",
            request.app.state.verdict_client,
            config,
        )
    except Exception as exc:  # noqa: BLE001
        logger.error(
            "scan_upload_internal_error",
            original_name=file.filename,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return build_internal_error_response()
    finally:
        await file.close()

    if not outcome.is_clean:
        return build_rejection_response(outcome)
    return JSONResponse(status_code=200, content={"success": True})


@router.post("/ocr-image")
async def ocr_image(
    request: Request,
    file: Optional[UploadFile] = File(None),
) -> JSONResponse:
    """Return the text extracted from an uploaded image or PDF."""
    if file is None or not file.filename:
        return build_missing_file_response(success=False)

    config: Config = request.app.state.config
    try:
        file_bytes = await file.read()
        result = await extract_and_release(
            file_bytes,
            file.filename,
            file.content_type or "application/octet-stream",
            request.app.state.ocr_client,
            config,
        )
    except Exception as exc:  # noqa: BLE001
        logger.error(
            "ocr_internal_error",
            original_name=file.filename,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return build_internal_error_response(success=False)
    finally:
        await file.close()

    if not result.ok:
        return JSONResponse(status_code=500, content={"success": False, "error": result.error})
    return JSONResponse(status_code=200, content={"success": True, "text": result.text})
