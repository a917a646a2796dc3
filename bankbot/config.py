"""Config loading for BankBot.

Reads `.bankbot/config.yaml` (or `~/.bankbot/config.yaml`).
Raises SystemExit on parse errors, a missing `version` field or invalid values.
If no config file is found, returns default values (safe to run without config).

Config search order:
  1. `config_path` argument (if provided — for testing or explicit override)
  2. BANKBOT_CONFIG environment variable (if set)
  3. `.bankbot/config.yaml` (working directory — for development)
  4. `~/.bankbot/config.yaml` (home directory — for production deployments)

Secrets are never read from the config file. They come from the environment:
  OPENAI_API_KEY, METADEFENDER_API_KEY, OCR_SPACE_API_KEY,
  TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_PHONE_NUMBER

Environment variable overrides:
  BANKBOT_PORT — overrides server.port (takes precedence over config file value)
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import NoReturn, Optional

import yaml

from bankbot.constants import (
    DEFAULT_OCR_BASE_URL,
    DEFAULT_OCR_LANGUAGE,
    DEFAULT_OTP_SWEEP_INTERVAL_S,
    DEFAULT_OTP_TTL_SECONDS,
    DEFAULT_SCAN_DEADLINE_SLACK_S,
    DEFAULT_SCAN_GATE_BASE_URL,
    DEFAULT_SCAN_MAX_ATTEMPTS,
    DEFAULT_SCAN_POLL_INTERVAL_S,
    DEFAULT_STAGING_DIRECTORY,
    DEFAULT_SYSTEM_PROMPT,
    DEFAULT_TWILIO_BASE_URL,
    DEFAULT_UPSTREAM_BASE_URL,
    DEFAULT_UPSTREAM_MAX_TOKENS,
    DEFAULT_UPSTREAM_MODEL,
    DEFAULT_UPSTREAM_TEMPERATURE,
    MAX_UPLOAD_BYTES,
)
from bankbot.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Version constants ────────────────────────────────────────────────────────

SUPPORTED_CONFIG_VERSION = 1

SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

DEFAULT_CONFIG_PATHS = [
    ".bankbot/config.yaml",
    os.path.expanduser("~/.bankbot/config.yaml"),
]


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass
class ServerConfig:
    """HTTP binding configuration."""

    host: str = "127.0.0.1"
    port: int = 3001


@dataclass
class UpstreamConfig:
    """Token-streaming backend (OpenAI-compatible chat completions).

    base_url:      Base URL; the relay posts to ``{base_url}/v1/chat/completions``.
    api_key:       Bearer token, from OPENAI_API_KEY.
    system_prompt: First message of every relayed conversation.
    """

    base_url: str = DEFAULT_UPSTREAM_BASE_URL
    model: str = DEFAULT_UPSTREAM_MODEL
    max_tokens: int = DEFAULT_UPSTREAM_MAX_TOKENS
    temperature: float = DEFAULT_UPSTREAM_TEMPERATURE
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    api_key: Optional[str] = None


@dataclass
class ScanGateConfig:
    """Verdict service (MetaDefender) and poll budget."""

    base_url: str = DEFAULT_SCAN_GATE_BASE_URL
    max_attempts: int = DEFAULT_SCAN_MAX_ATTEMPTS
    poll_interval_s: float = DEFAULT_SCAN_POLL_INTERVAL_S
    deadline_slack_s: float = DEFAULT_SCAN_DEADLINE_SLACK_S
    api_key: Optional[str] = None

    @property
    def ceiling_s(self) -> float:
        """Poll budget: max_attempts × poll_interval_s."""
        return self.max_attempts * self.poll_interval_s

    @property
    def deadline_s(self) -> float:
        """Hard wall-clock limit for one scan, submission included."""
        return self.ceiling_s + self.deadline_slack_s


@dataclass
class OcrConfig:
    """Text extraction service (OCR.space)."""

    base_url: str = DEFAULT_OCR_BASE_URL
    language: str = DEFAULT_OCR_LANGUAGE
    api_key: Optional[str] = None


@dataclass
class StagingConfig:
    """Transient upload area."""

    directory: str = DEFAULT_STAGING_DIRECTORY
    max_upload_bytes: int = MAX_UPLOAD_BYTES


@dataclass
class OtpConfig:
    """Verification codes and SMS delivery."""

    ttl_seconds: int = DEFAULT_OTP_TTL_SECONDS
    sweep_interval_s: float = DEFAULT_OTP_SWEEP_INTERVAL_S
    twilio_base_url: str = DEFAULT_TWILIO_BASE_URL
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_phone_number: Optional[str] = None


@dataclass
class Config:
    """Root configuration object populated from .bankbot/config.yaml.

    All fields have safe defaults — BankBot can start without any config file.
    """

    version: int = SUPPORTED_CONFIG_VERSION
    server: ServerConfig = field(default_factory=ServerConfig)
    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    scan_gate: ScanGateConfig = field(default_factory=ScanGateConfig)
    ocr: OcrConfig = field(default_factory=OcrConfig)
    staging: StagingConfig = field(default_factory=StagingConfig)
    otp: OtpConfig = field(default_factory=OtpConfig)
    path: Optional[str] = None  # Path to the loaded config file

    @classmethod
    def defaults(cls) -> "Config":
        """Return a fully-default Config (no file required)."""
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "Config":
        """Construct Config from a parsed YAML dict.

        Merges user-supplied values onto defaults; unknown keys are silently ignored.

        Raises:
            SystemExit(1): On an invalid poll budget or upload cap.
        """
        server_raw = raw.get("server", {})
        server = ServerConfig(
            host=server_raw.get("host", "127.0.0.1"),
            port=server_raw.get("port", 3001),
        )

        upstream_raw = raw.get("upstream", {})
        upstream = UpstreamConfig(
            base_url=upstream_raw.get("base_url", DEFAULT_UPSTREAM_BASE_URL),
            model=upstream_raw.get("model", DEFAULT_UPSTREAM_MODEL),
            max_tokens=upstream_raw.get("max_tokens", DEFAULT_UPSTREAM_MAX_TOKENS),
            temperature=upstream_raw.get("temperature", DEFAULT_UPSTREAM_TEMPERATURE),
            system_prompt=upstream_raw.get("system_prompt", DEFAULT_SYSTEM_PROMPT),
        )

        # ── Scan gate: the poll budget must allow at least one query ──────────
        gate_raw = raw.get("scan_gate", {})
        max_attempts = gate_raw.get("max_attempts", DEFAULT_SCAN_MAX_ATTEMPTS)
        poll_interval_s = gate_raw.get("poll_interval_s", DEFAULT_SCAN_POLL_INTERVAL_S)
        deadline_slack_s = gate_raw.get("deadline_slack_s", DEFAULT_SCAN_DEADLINE_SLACK_S)
        if not _is_integer(max_attempts) or max_attempts < 1:
            _fail(f"Invalid scan_gate.max_attempts: '{max_attempts}'. Must be an integer >= 1.")
        if not _is_number(poll_interval_s) or poll_interval_s < 0:
            _fail(f"Invalid scan_gate.poll_interval_s: '{poll_interval_s}'. Must be >= 0.")
        if not _is_number(deadline_slack_s) or deadline_slack_s <= 0:
            _fail(f"Invalid scan_gate.deadline_slack_s: '{deadline_slack_s}'. Must be > 0.")
        scan_gate = ScanGateConfig(
            base_url=gate_raw.get("base_url", DEFAULT_SCAN_GATE_BASE_URL),
            max_attempts=max_attempts,
            poll_interval_s=float(poll_interval_s),
            deadline_slack_s=float(deadline_slack_s),
        )

        ocr_raw = raw.get("ocr", {})
        ocr = OcrConfig(
            base_url=ocr_raw.get("base_url", DEFAULT_OCR_BASE_URL),
            language=ocr_raw.get("language", DEFAULT_OCR_LANGUAGE),
        )

        staging_raw = raw.get("staging", {})
        max_upload_bytes = staging_raw.get("max_upload_bytes", MAX_UPLOAD_BYTES)
        if not _is_integer(max_upload_bytes) or max_upload_bytes < 1:
            _fail(f"Invalid staging.max_upload_bytes: '{max_upload_bytes}'.")
        staging = StagingConfig(
            directory=staging_raw.get("directory", DEFAULT_STAGING_DIRECTORY),
            max_upload_bytes=max_upload_bytes,
        )

        # ── OTP: a zero interval would turn the sweep task into a busy loop ───
        otp_raw = raw.get("otp", {})
        ttl_seconds = otp_raw.get("ttl_seconds", DEFAULT_OTP_TTL_SECONDS)
        sweep_interval_s = otp_raw.get("sweep_interval_s", DEFAULT_OTP_SWEEP_INTERVAL_S)
        if not _is_number(ttl_seconds) or ttl_seconds <= 0:
            _fail(f"Invalid otp.ttl_seconds: '{ttl_seconds}'. Must be > 0.")
        if not _is_number(sweep_interval_s) or sweep_interval_s <= 0:
            _fail(f"Invalid otp.sweep_interval_s: '{sweep_interval_s}'. Must be > 0.")
        otp = OtpConfig(
            ttl_seconds=ttl_seconds,
            sweep_interval_s=float(sweep_interval_s),
            twilio_base_url=otp_raw.get("twilio_base_url", DEFAULT_TWILIO_BASE_URL),
        )

        return cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            server=server,
            upstream=upstream,
            scan_gate=scan_gate,
            ocr=ocr,
            staging=staging,
            otp=otp,
            path=path,
        )


# ─── Config loading ───────────────────────────────────────────────────────────


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate BankBot configuration.

    If no file is found at any search path, returns default Config (not an error).
    If a file is found but invalid, writes error to stderr and raises SystemExit(1).

    Environment secrets and ``BANKBOT_PORT`` are applied after loading (or
    defaulting), regardless of whether a config file was found.

    Raises:
        SystemExit(1): On YAML parse error, missing ``version`` field, unsupported
                       version, invalid poll budget, or invalid ``BANKBOT_PORT``.
    """
    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("BANKBOT_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    if found_path is None:
        logger.info("No config file found — using defaults", searched=search_paths)
        config = Config.defaults()
        _apply_env_overrides(config)
        return config

    logger.info("Loading config", path=found_path)

    try:
        with open(found_path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        _fail(
            f"Failed to parse {found_path}: {exc}\n"
            "BankBot refuses to start with an invalid config. "
            "Check the YAML syntax and try again."
        )
    except OSError as exc:
        _fail(f"Could not read {found_path}: {exc}")

    if not isinstance(raw, dict):
        if raw is None:
            _fail(
                f"{found_path} is missing the required 'version' field.\n"
                "Add 'version: 1' to the top of your config file."
            )
        _fail(
            f"{found_path} is not a valid YAML mapping.\n"
            "The config file must be a YAML dictionary at the top level."
        )

    version = raw.get("version")
    if version is None:
        _fail(
            f"{found_path} is missing the required 'version' field.\n"
            "Add 'version: 1' to the top of your config file."
        )
    if version not in SUPPORTED_VERSIONS:
        _fail(
            f"Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )

    config = Config.from_dict(raw, path=found_path)
    _apply_env_overrides(config)

    if config.server.host == "0.0.0.0":
        logger.warning(
            "BankBot is configured to bind on 0.0.0.0 (all interfaces). "
            "Put it behind a reverse proxy that terminates TLS."
        )

    logger.info(
        "Config loaded",
        path=found_path,
        version=config.version,
        scan_max_attempts=config.scan_gate.max_attempts,
        scan_poll_interval_s=config.scan_gate.poll_interval_s,
    )
    return config


def _apply_env_overrides(config: Config) -> None:
    """Apply environment secrets and overrides to a Config object in-place.

    Raises:
        SystemExit(1): If BANKBOT_PORT is set but not a valid integer.
    """
    config.upstream.api_key = os.environ.get("OPENAI_API_KEY")
    config.scan_gate.api_key = os.environ.get("METADEFENDER_API_KEY")
    config.ocr.api_key = os.environ.get("OCR_SPACE_API_KEY")
    config.otp.twilio_account_sid = os.environ.get("TWILIO_ACCOUNT_SID")
    config.otp.twilio_auth_token = os.environ.get("TWILIO_AUTH_TOKEN")
    config.otp.twilio_phone_number = os.environ.get("TWILIO_PHONE_NUMBER")

    env_port = os.environ.get("BANKBOT_PORT")
    if env_port is not None:
        try:
            config.server.port = int(env_port)
        except ValueError:
            _fail(f"BANKBOT_PORT environment variable is not a valid integer: '{env_port}'")

    for name, value in (
        ("OPENAI_API_KEY", config.upstream.api_key),
        ("METADEFENDER_API_KEY", config.scan_gate.api_key),
        ("OCR_SPACE_API_KEY", config.ocr.api_key),
    ):
        if not value:
            logger.warning("Missing API key — dependent endpoint will fail", env_var=name)


def _is_integer(value: object) -> bool:
    # bool is an int subclass; `max_attempts: true` is not a count.
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: object) -> bool:
    return _is_integer(value) or isinstance(value, float)


def _fail(message: str) -> NoReturn:
    """Print a config error to stderr and exit non-zero."""
    print(f"CONFIG ERROR: {message}", file=sys.stderr)
    raise SystemExit(1)
