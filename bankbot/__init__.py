"""BankBot gateway.

FastAPI service that relays chat completions to the browser over SSE, gates
uploaded files behind a polled malware verdict, and extracts text from
uploaded statements. Every uploaded file is staged on local disk and removed
before its request returns.
"""

__version__ = "1.0.0"
