"""Shared constants for BankBot.

Sentinel strings of the external services, poll budgets and size caps are
defined here. No magic values in other modules — import from here.
"""

# ─── Verdict Service (MetaDefender) ──────────────────────────────────────────

# Base URL of the MetaDefender Cloud v4 API.
DEFAULT_SCAN_GATE_BASE_URL: str = "https://api.metadefender.com/v4"

# Value of scan_results.scan_all_result_a for a file with no detections.
VERDICT_CLEAN_SENTINEL: str = "No Threat Detected"

# Value of scan_results.scan_all_result_a while engines are still running.
VERDICT_IN_PROGRESS_SENTINEL: str = "In Progress"

# Poll budget. 20 attempts × 3 s = 60 s wall-clock ceiling per scan.
DEFAULT_SCAN_MAX_ATTEMPTS: int = 20
DEFAULT_SCAN_POLL_INTERVAL_S: float = 3.0

# Added to the ceiling for the submission upload and the first query; the
# whole scan (submit + every poll) is cut off at ceiling + slack.
DEFAULT_SCAN_DEADLINE_SLACK_S: float = 5.0

# Indeterminate reasons surfaced to the client (never confused with a BLOCK).
REASON_SUBMISSION_FAILED: str = "submission failed"
REASON_TIMEOUT: str = "timeout"
REASON_SERVICE_UNAVAILABLE: str = "verdict service unavailable"

# ─── Token-Streaming Backend (OpenAI-compatible) ─────────────────────────────

DEFAULT_UPSTREAM_BASE_URL: str = "https://api.openai.com"
DEFAULT_UPSTREAM_MODEL: str = "gpt-4o-mini"
DEFAULT_UPSTREAM_MAX_TOKENS: int = 16_000
DEFAULT_UPSTREAM_TEMPERATURE: float = 0.7
DEFAULT_SYSTEM_PROMPT: str = (
    "You are an AI-powered chatbot. Answer the user queries accurately."
)

# Line framing of the upstream event stream.
SSE_DATA_PREFIX: str = "data: "
SSE_DONE_LINE: str = "data: [DONE]"

# ─── Text Extraction (OCR.space) ─────────────────────────────────────────────

DEFAULT_OCR_BASE_URL: str = "https://apipro1.ocr.space"
DEFAULT_OCR_LANGUAGE: str = "eng"

# ─── Upload Staging ──────────────────────────────────────────────────────────

DEFAULT_STAGING_DIRECTORY: str = "tmp-uploads"

# Uploads larger than this are rejected with HTTP 413 before anything is staged.
MAX_UPLOAD_BYTES: int = 10_485_760  # 10 MB

# Read/write granularity when streaming a staged file to the verdict service.
STAGING_CHUNK_BYTES: int = 65_536

# ─── Verification Codes ──────────────────────────────────────────────────────

DEFAULT_OTP_TTL_SECONDS: int = 300
DEFAULT_OTP_SWEEP_INTERVAL_S: float = 60.0
OTP_CODE_LENGTH: int = 6

# Per-client cap on /send-otp (slowapi limit string).
OTP_SEND_RATE_LIMIT: str = "5/minute"

DEFAULT_TWILIO_BASE_URL: str = "https://api.twilio.com"

# ─── Outbound HTTP Client ────────────────────────────────────────────────────

POOL_MAX_CONNECTIONS: int = 100
POOL_MAX_KEEPALIVE: int = 20
POOL_KEEPALIVE_EXPIRY: float = 30.0  # seconds
# Read timeout stays generous: completions of 16k tokens stream for minutes.
HTTP_CONNECT_TIMEOUT: float = 10.0
HTTP_READ_TIMEOUT: float = 120.0
