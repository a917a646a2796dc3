"""Health endpoint for BankBot.

GET /health — 503 while the lifespan is still starting, 200 once ready.
Polled by container health probes and the chatbot front-end.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request

from bankbot import __version__

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    """Primary health check.

    Response body (200):
        {
          "status": "ok",
          "service": "bankbot",
          "version": "1.0.0",
          "pending_verification_codes": 0
        }
    """
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(
            status_code=503,
            detail={"status": "starting", "message": "BankBot is starting up."},
        )

    store = getattr(request.app.state, "otp_store", None)
    return {
        "status": "ok",
        "service": "bankbot",
        "version": __version__,
        "pending_verification_codes": len(store) if store is not None else 0,
    }
