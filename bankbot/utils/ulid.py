"""ULID generation for BankBot.

Provides a single `generate_ulid()` function that returns a 26-character ULID
(Universally Unique Lexicographically Sortable Identifier) used as:
  - the unique component of every staged upload file name
  - the request_id bound into structured log entries
  - the X-BankBot-Request-ID response header

Uses the `python-ulid` library (see pyproject.toml). ULIDs are sortable by
creation time, so staged files in the transient directory list in arrival order.
"""

from __future__ import annotations

from ulid import ULID


def generate_ulid() -> str:
    """Generate a new ULID as a 26-character uppercase string.

    Returns:
        str: A 26-character ULID string (e.g., ``"01KJ0JRVHYA7KX32VPN5ZSCTMV"``).
    """
    return str(ULID())
