"""Verification-code endpoints.

  POST /send-otp    {"phoneNumber": "07..."}               → SMS a fresh code
  POST /verify-otp  {"phoneNumber": "...", "otp": "123456"} → check and consume it

Phone numbers are normalized (``07...`` → ``+447...``) on both routes so a
code issued for one spelling verifies under the other.
"""

from __future__ import annotations

from typing import Optional, Union

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from bankbot.constants import OTP_SEND_RATE_LIMIT
from bankbot.otp.limiter import limiter
from bankbot.otp.sender import SmsDeliveryError, normalize_phone_number
from bankbot.otp.store import VerificationCodeStore, VerifyStatus
from bankbot.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["otp"])


class SendOtpRequest(BaseModel):
    phoneNumber: Optional[str] = None


class VerifyOtpRequest(BaseModel):
    phoneNumber: Optional[str] = None
    otp: Optional[Union[str, int]] = None


_VERIFY_MESSAGES: dict[VerifyStatus, str] = {
    VerifyStatus.VERIFIED: "OTP verified successfully.",
    VerifyStatus.MISMATCH: "Invalid OTP.",
    VerifyStatus.NOT_FOUND: "OTP expired or not found.",
}


@router.post("/send-otp")
@limiter.limit(OTP_SEND_RATE_LIMIT)
async def send_otp(body: SendOtpRequest, request: Request) -> JSONResponse:
    """Issue a code for the number and deliver it by SMS.

    Returns:
        200 {"success": true, "message": "OTP sent successfully."}
        400 when phoneNumber is missing
        500 when the SMS could not be sent (the issued code is discarded)
    """
    if not body.phoneNumber:
        return JSONResponse(status_code=400, content={"error": "Phone number is required."})

    phone_number = normalize_phone_number(body.phoneNumber)
    store: VerificationCodeStore = request.app.state.otp_store
    code = store.issue(phone_number)

    try:
        await request.app.state.sms_sender.send(
            phone_number, f"Your verification code is: {code}"
        )
    except SmsDeliveryError as exc:
        store.discard(phone_number)
        logger.error("otp_send_failed", phone_number=phone_number, error=str(exc))
        return JSONResponse(status_code=500, content={"error": "Failed to send OTP."})

    logger.info("otp_sent", phone_number=phone_number)
    return JSONResponse(
        status_code=200, content={"success": True, "message": "OTP sent successfully."}
    )


@router.post("/verify-otp")
async def verify_otp(body: VerifyOtpRequest, request: Request) -> JSONResponse:
    """Verify a code. A successful verification consumes it."""
    if not body.phoneNumber or body.otp in (None, ""):
        return JSONResponse(
            status_code=400, content={"error": "Phone number and OTP are required."}
        )

    phone_number = normalize_phone_number(body.phoneNumber)
    store: VerificationCodeStore = request.app.state.otp_store
    status = store.verify(phone_number, body.otp)

    if status is VerifyStatus.VERIFIED:
        logger.info("otp_verified", phone_number=phone_number)
    else:
        logger.info("otp_rejected", phone_number=phone_number, status=status.value)

    return JSONResponse(
        status_code=200,
        content={
            "verified": status is VerifyStatus.VERIFIED,
            "message": _VERIFY_MESSAGES[status],
        },
    )
