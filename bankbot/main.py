"""BankBot FastAPI application factory + lifespan lifecycle.

This module implements:
  - create_app() — testable application factory
  - lifespan — @asynccontextmanager startup/shutdown sequence
  - /          — service discovery root
  - /user-left — client session-exit log
  - app = create_app() — module-level instance for uvicorn

Startup sequence:
  1. load_config()              → app.state.config
  2. create_http_client()       → app.state.http_client (shared, pooled)
  3. VerdictClient / OcrClient  → app.state.verdict_client / app.state.ocr_client
  4. VerificationCodeStore      → app.state.otp_store (+ periodic expiry sweep task)
  5. create_sms_sender()        → app.state.sms_sender
  6. app.state.ready = True

Shutdown (reverse):
  app.state.ready = False → cancel sweep task → close http client
"""

from __future__ import annotations

import asyncio
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.routing import APIRouter
from pydantic import BaseModel
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from bankbot import __version__
from bankbot.config import Config, load_config
from bankbot.extract.ocr import OcrClient
from bankbot.gate.client import VerdictClient
from bankbot.health import router as health_router
from bankbot.otp.limiter import limiter
from bankbot.otp.router import router as otp_router
from bankbot.otp.sender import create_sms_sender
from bankbot.otp.store import VerificationCodeStore
from bankbot.relay.engine import create_http_client, router as relay_router
from bankbot.uploads.middleware import UploadSizeLimitMiddleware
from bankbot.uploads.router import router as uploads_router
from bankbot.utils.logger import clear_request_id, configure_logging, get_logger, set_request_id
from bankbot.utils.ulid import generate_ulid

# ─── Logging Setup ────────────────────────────────────────────────────────────
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if not DEBUG else "DEBUG")
JSON_LOGS = os.getenv("JSON_LOGS", "true").lower() == "true"

configure_logging(log_level=LOG_LEVEL, json_output=JSON_LOGS)
logger = get_logger(__name__)


# ─── Routers ──────────────────────────────────────────────────────────────────

root_router = APIRouter(tags=["root"])


# ─── Dependencies ─────────────────────────────────────────────────────────────


async def require_ready(request: Request) -> None:
    """FastAPI dependency: raises HTTP 503 if app.state.ready is not True."""
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(
            status_code=503,
            detail={"status": "starting", "message": "BankBot is starting up."},
        )


# ─── Request ID Middleware ────────────────────────────────────────────────────


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a ULID request_id into the log context and echo it as a header."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        request_id = generate_ulid()
        set_request_id(request_id)
        try:
            response = await call_next(request)
        finally:
            clear_request_id()
        response.headers["X-BankBot-Request-ID"] = request_id
        return response


# ─── Root Endpoints ───────────────────────────────────────────────────────────


class UserLeftRequest(BaseModel):
    userId: Optional[str] = None


@root_router.get("/")
async def root() -> dict[str, str]:
    """Root endpoint — service identity / discovery."""
    return {
        "service": "BankBot",
        "version": __version__,
        "health": "/health",
    }


@root_router.post("/user-left")
async def user_left(body: UserLeftRequest) -> JSONResponse:
    """Record that a chatbot user closed their session (log only)."""
    if not body.userId:
        logger.warning("user_left_missing_user_id")
        return JSONResponse(status_code=400, content={"error": "Missing userId"})

    logger.info(
        "user_left",
        user_id=body.userId,
        left_at=datetime.now(timezone.utc).isoformat(),
    )
    return JSONResponse(
        status_code=200,
        content={"success": True, "message": "User exit logged (console only)."},
    )


# ─── Background Tasks ─────────────────────────────────────────────────────────


async def _sweep_verification_codes(store: VerificationCodeStore, interval_s: float) -> None:
    """Periodically drop expired verification codes."""
    while True:
        await asyncio.sleep(interval_s)
        removed = store.sweep()
        if removed:
            logger.debug("verification_codes_swept", removed=removed, remaining=len(store))


# ─── Lifespan ─────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan — startup and shutdown sequence."""
    logger.info("BankBot starting up...")

    # ── Step 1: Load configuration ────────────────────────────────────────────
    # load_config() raises SystemExit on an invalid file, before ready=True.
    config: Config = load_config()
    app.state.config = config

    # ── Step 2: Shared outbound HTTP client ───────────────────────────────────
    http_client: httpx.AsyncClient = create_http_client()
    app.state.http_client = http_client

    # ── Step 3: External service clients ──────────────────────────────────────
    app.state.verdict_client = VerdictClient(
        http_client, config.scan_gate.base_url, config.scan_gate.api_key
    )
    app.state.ocr_client = OcrClient(
        http_client, config.ocr.base_url, config.ocr.api_key, config.ocr.language
    )
    logger.info(
        "Scan gate configured",
        base_url=config.scan_gate.base_url,
        max_attempts=config.scan_gate.max_attempts,
        poll_interval_s=config.scan_gate.poll_interval_s,
        ceiling_s=config.scan_gate.ceiling_s,
        deadline_s=config.scan_gate.deadline_s,
    )

    # ── Step 4: Verification-code store + expiry sweep ────────────────────────
    otp_store = VerificationCodeStore(ttl_seconds=config.otp.ttl_seconds)
    app.state.otp_store = otp_store
    sweep_task: asyncio.Task[None] = asyncio.create_task(
        _sweep_verification_codes(otp_store, config.otp.sweep_interval_s)
    )

    # ── Step 5: SMS delivery ──────────────────────────────────────────────────
    app.state.sms_sender = create_sms_sender(config.otp, http_client)

    # ── Step 6: Mark as ready ─────────────────────────────────────────────────
    app.state.ready = True
    logger.info("BankBot ready", host=config.server.host, port=config.server.port)

    yield

    # ── Shutdown (reverse order) ──────────────────────────────────────────────
    logger.info("BankBot shutting down...")
    app.state.ready = False

    if not sweep_task.done():
        sweep_task.cancel()
        try:
            await sweep_task
        except asyncio.CancelledError:
            pass

    try:
        await http_client.aclose()
        logger.info("HTTP client closed")
    except Exception as exc:  # noqa: BLE001
        logger.warning("HTTP client close error (non-fatal)", error=str(exc))

    logger.info("BankBot shutdown complete")


# ─── Application Factory ──────────────────────────────────────────────────────


def _cors_origins() -> list[str]:
    raw = os.getenv("BANKBOT_CORS_ORIGINS", "*")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def create_app() -> FastAPI:
    """Create and configure the BankBot FastAPI application.

    Call this function directly in tests to get an isolated app instance.

    Returns:
        Configured FastAPI application with lifespan, routers, and middleware.
    """
    _debug = os.getenv("DEBUG", "false").lower() == "true"

    application = FastAPI(
        title="BankBot",
        description="Chat relay, upload malware gate and statement OCR for the BankBot widget",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if _debug else None,
        redoc_url="/redoc" if _debug else None,
        openapi_url="/openapi.json" if _debug else None,
    )

    application.state.ready = False

    application.state.limiter = limiter
    application.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    origins = _cors_origins()
    application.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials="*" not in origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    # In Starlette the LAST-added middleware is OUTERMOST (runs first):
    # request id → rate limit → upload size cap → CORS → routes.
    application.add_middleware(UploadSizeLimitMiddleware)
    application.add_middleware(SlowAPIMiddleware)
    application.add_middleware(RequestIdMiddleware)

    application.include_router(root_router)
    application.include_router(health_router)
    application.include_router(relay_router, dependencies=[Depends(require_ready)])
    application.include_router(uploads_router, dependencies=[Depends(require_ready)])
    application.include_router(otp_router, dependencies=[Depends(require_ready)])

    @application.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=str(request.url.path),
        )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @application.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
        )
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    return application


# ─── Module-Level App (for uvicorn) ───────────────────────────────────────────

app = create_app()
