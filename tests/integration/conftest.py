"""Shared fixtures for BankBot integration tests.

Every external service (chat upstream, MetaDefender, OCR.space, Twilio) is
served by one ``httpx.MockTransport`` routed on host name, and the app is
built with ``bankbot.main.load_config`` / ``bankbot.main.create_http_client``
patched so the real lifespan runs against it.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

import httpx
import pytest

from bankbot.config import Config
from bankbot.main import create_app

UPSTREAM_HOST = "llm.test"
VERDICT_HOST = "verdicts.test"
OCR_HOST = "ocr.test"
SMS_HOST = "sms.test"

Handler = Callable[[httpx.Request], httpx.Response]


class MockServices:
    """Records every outbound request and dispatches it to a per-host handler."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.handlers: dict[str, Handler] = {}

    def route(self, host: str, handler: Handler) -> None:
        self.handlers[host] = handler

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.handlers.get(request.url.host)
        if handler is None:
            return httpx.Response(599, json={"error": f"no mock for {request.url.host}"})
        return handler(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def to(self, host: str, method: Optional[str] = None) -> list[httpx.Request]:
        return [
            r for r in self.requests
            if r.url.host == host and (method is None or r.method == method)
        ]


def make_config(staging_dir: str) -> Config:
    config = Config.defaults()
    config.upstream.base_url = f"https://{UPSTREAM_HOST}"
    config.upstream.api_key = "sk-test"
    config.scan_gate.base_url = f"https://{VERDICT_HOST}/v4"
    config.scan_gate.api_key = "md-test"
    config.scan_gate.max_attempts = 4
    config.scan_gate.poll_interval_s = 0.0
    config.ocr.base_url = f"https://{OCR_HOST}"
    config.ocr.api_key = "ocr-test"
    config.staging.directory = staging_dir
    config.otp.twilio_base_url = f"https://{SMS_HOST}"
    config.otp.twilio_account_sid = "AC-test"
    config.otp.twilio_auth_token = "token"
    config.otp.twilio_phone_number = "+441234567890"
    return config


@pytest.fixture
def services() -> MockServices:
    return MockServices()


@pytest.fixture
def staging_dir(tmp_path) -> str:
    path = tmp_path / "uploads"
    return str(path)


@pytest.fixture
def config(staging_dir: str) -> Config:
    return make_config(staging_dir)


@pytest.fixture
def bankbot_app(
    services: MockServices, config: Config, monkeypatch: pytest.MonkeyPatch
) -> Any:
    """A BankBot app whose lifespan loads ``config`` and talks to ``services``."""
    monkeypatch.setattr("bankbot.main.load_config", lambda: config)
    monkeypatch.setattr("bankbot.main.create_http_client", lambda: services.client())
    return create_app()
