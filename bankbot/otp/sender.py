"""SMS delivery for verification codes.

``SmsSender`` is the protocol the /send-otp route depends on.
``create_sms_sender()`` picks the implementation from config:

  TWILIO_ACCOUNT_SID + TWILIO_AUTH_TOKEN + TWILIO_PHONE_NUMBER set → TwilioSmsSender
  otherwise                                                        → DisabledSmsSender

Every failure surfaces as ``SmsDeliveryError``.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

import httpx

from bankbot.config import OtpConfig
from bankbot.utils.logger import get_logger

logger = get_logger(__name__)


class SmsDeliveryError(Exception):
    """The SMS could not be handed to the provider."""


def normalize_phone_number(phone_number: str) -> str:
    """Rewrite a UK national mobile number (``07...``) to E.164 (``+447...``)."""
    compact = "".join(phone_number.split())
    if compact.startswith("07"):
        return "+44" + compact[1:]
    return compact


@runtime_checkable
class SmsSender(Protocol):
    async def send(self, to: str, body: str) -> None:
        ...


class TwilioSmsSender:
    """Send SMS through the Twilio Messages REST API."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        account_sid: str,
        auth_token: str,
        from_number: str,
        base_url: str = "https://api.twilio.com",
    ) -> None:
        self._http = http_client
        self._account_sid = account_sid
        self._auth = httpx.BasicAuth(account_sid, auth_token)
        self._from = from_number
        self._url = f"{base_url.rstrip('/')}/2010-04-01/Accounts/{account_sid}/Messages.json"

    async def send(self, to: str, body: str) -> None:
        try:
            response = await self._http.post(
                self._url,
                data={"To": to, "From": self._from, "Body": body},
                auth=self._auth,
            )
        except httpx.HTTPError as exc:
            raise SmsDeliveryError(f"{type(exc).__name__}: {exc}") from exc

        if response.is_error:
            raise SmsDeliveryError(
                f"Twilio rejected message (HTTP {response.status_code}): {response.text[:200]}"
            )
        logger.info("sms_sent", to=to)


class DisabledSmsSender:
    """Used when Twilio credentials are absent; every send fails."""

    async def send(self, to: str, body: str) -> None:
        raise SmsDeliveryError("SMS delivery is not configured")


def create_sms_sender(config: OtpConfig, http_client: httpx.AsyncClient) -> SmsSender:
    sid: Optional[str] = config.twilio_account_sid
    token: Optional[str] = config.twilio_auth_token
    from_number: Optional[str] = config.twilio_phone_number
    if sid and token and from_number:
        logger.info("SMS sender: Twilio", from_number=from_number)
        return TwilioSmsSender(http_client, sid, token, from_number, config.twilio_base_url)
    logger.warning("SMS sender disabled — Twilio credentials not configured")
    return DisabledSmsSender()
