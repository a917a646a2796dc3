"""Shared rate limiter for the verification-code endpoints.

Uses slowapi (Starlette-compatible rate limiting) keyed by client address.
Each /send-otp call costs an SMS, so issuance is capped per client.

The Limiter instance is shared between:
  - bankbot/otp/router.py  (route decorators)
  - bankbot/main.py        (app.state.limiter + SlowAPIMiddleware registration)
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)
