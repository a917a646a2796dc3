"""Request body size limit middleware for BankBot.

Rejects uploads larger than ``staging.max_upload_bytes`` with HTTP 413 before
any route handler runs, so an oversized file is never staged or sent to the
verdict service.

Two-phase check:
  1. Content-Length fast path: reject immediately on an oversized header value.
  2. Chunked slow path: accumulate the body with a rolling cap; reject as soon
     as the cap is exceeded.
"""

from __future__ import annotations

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from bankbot.constants import MAX_UPLOAD_BYTES
from bankbot.utils.logger import get_logger

logger = get_logger(__name__)

_INVALID_CONTENT_LENGTH_BODY: dict = {"error": "Invalid Content-Length header"}


def _payload_too_large(limit: int) -> JSONResponse:
    return JSONResponse(
        status_code=413,
        content={"error": f"Request body too large. Maximum size: {limit} bytes"},
    )


class UploadSizeLimitMiddleware(BaseHTTPMiddleware):
    """Starlette middleware enforcing the upload size cap.

    The cap is read from ``app.state.config`` once the lifespan has loaded it,
    and falls back to ``MAX_UPLOAD_BYTES`` before that.
    """

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        config = getattr(request.app.state, "config", None)
        limit: int = config.staging.max_upload_bytes if config is not None else MAX_UPLOAD_BYTES

        content_length_header = request.headers.get("content-length")

        # ── Phase 1: Content-Length fast path ─────────────────────────────────
        if content_length_header is not None:
            try:
                declared_size = int(content_length_header)
            except ValueError:
                logger.warning(
                    "Invalid Content-Length header",
                    value=content_length_header,
                    path=request.url.path,
                )
                return JSONResponse(status_code=400, content=_INVALID_CONTENT_LENGTH_BODY)

            if declared_size > limit:
                logger.warning(
                    "Request body too large (Content-Length)",
                    declared_size=declared_size,
                    limit=limit,
                    path=request.url.path,
                )
                return _payload_too_large(limit)

            return await call_next(request)

        # ── Phase 2: no Content-Length, rolling cap ──────────────────────────
        if request.method in ("GET", "HEAD", "OPTIONS"):
            return await call_next(request)

        body_chunks: list[bytes] = []
        total_size = 0
        async for chunk in request.stream():
            total_size += len(chunk)
            if total_size > limit:
                logger.warning(
                    "Request body too large (chunked)",
                    accumulated_size=total_size,
                    limit=limit,
                    path=request.url.path,
                )
                return _payload_too_large(limit)
            body_chunks.append(chunk)

        # Starlette's Request.body() returns request._body when set, so the
        # route handler reads the cached bytes instead of the consumed stream.
        request._body = b"".join(body_chunks)  # type: ignore[attr-defined]

        return await call_next(request)
