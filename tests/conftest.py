"""Root test configuration for BankBot.

Keeps every test away from real credentials and shared rate-limit state:
  - external API keys and Twilio credentials are cleared, so the SMS sender
    falls back to DisabledSmsSender unless a test provides its own
  - the slowapi in-memory storage is reset between tests
"""

import pytest

_SECRET_ENV_VARS = (
    "OPENAI_API_KEY",
    "METADEFENDER_API_KEY",
    "OCR_SPACE_API_KEY",
    "TWILIO_ACCOUNT_SID",
    "TWILIO_AUTH_TOKEN",
    "TWILIO_PHONE_NUMBER",
    "BANKBOT_CONFIG",
    "BANKBOT_PORT",
)


@pytest.fixture(autouse=True)
def clear_secret_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove credentials and config overrides inherited from the shell."""
    for name in _SECRET_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def reset_rate_limiter() -> None:
    """Reset the in-memory rate limiter storage between tests.

    Prevents test-to-test rate limit bleed where several tests hitting
    /send-otp within the same minute would trigger a 429.
    """
    from bankbot.otp.limiter import limiter
    try:
        limiter._storage.reset()
    except Exception:
        pass  # not every storage backend supports reset
