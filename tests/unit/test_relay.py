"""Unit tests for the streaming relay generator (httpx.MockTransport upstream)."""

from __future__ import annotations

import json
from typing import AsyncIterator

import httpx
import pytest

from bankbot.config import UpstreamConfig
from bankbot.models.events import RelayEvent, RelayEventKind
from bankbot.relay.engine import _encode_sse, build_completion_request, relay

# ─── Helpers ──────────────────────────────────────────────────────────────────


def _data(content: str) -> bytes:
    return ("data: " + json.dumps({"choices": [{"delta": {"content": content}}]}) + "\n").encode()


async def _chunks(*parts: bytes) -> AsyncIterator[bytes]:
    for part in parts:
        yield part


def _upstream() -> UpstreamConfig:
    return UpstreamConfig(base_url="https://llm.test", api_key="sk-test", model="gpt-4o-mini")


def _http(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def _collect(message: str, http: httpx.AsyncClient) -> list[RelayEvent]:
    return [event async for event in relay(message, http, _upstream())]


# ─── build_completion_request ────────────────────────────────────────────────


class TestBuildCompletionRequest:
    def test_body_shape(self) -> None:
        upstream = UpstreamConfig(system_prompt="Be brief.", max_tokens=10, temperature=0.2)
        body = build_completion_request("hello", upstream)

        assert body["stream"] is True
        assert body["model"] == upstream.model
        assert body["messages"] == [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "hello"},
        ]
        assert body["max_tokens"] == 10
        assert body["temperature"] == 0.2


# ─── relay() ─────────────────────────────────────────────────────────────────


class TestRelay:
    @pytest.mark.asyncio
    async def test_tokens_then_done(self) -> None:
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            stream = _chunks(_data("He")[:20], _data("He")[20:] + _data("llo"), b"data: [DONE]\n")
            return httpx.Response(200, content=stream)

        events = await _collect("hi", _http(handler))

        assert events == [RelayEvent.token("He"), RelayEvent.token("llo"), RelayEvent.done()]
        assert seen["url"] == "https://llm.test/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["messages"][-1] == {"role": "user", "content": "hi"}

    @pytest.mark.asyncio
    async def test_bytes_after_sentinel_are_ignored(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200, content=_chunks(_data("a") + b"data: [DONE]\n" + _data("b"), _data("c"))
            )

        events = await _collect("hi", _http(handler))
        assert events == [RelayEvent.token("a"), RelayEvent.done()]

    @pytest.mark.asyncio
    async def test_eof_without_sentinel_ends_with_done(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=_chunks(_data("a"), _data("b")[:-1]))

        events = await _collect("hi", _http(handler))
        assert events == [RelayEvent.token("a"), RelayEvent.token("b"), RelayEvent.done()]

    @pytest.mark.asyncio
    async def test_malformed_line_does_not_end_stream(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200, content=_chunks(b"data: {oops\n", _data("ok"), b"data: [DONE]\n")
            )

        events = await _collect("hi", _http(handler))
        assert events == [RelayEvent.token("ok"), RelayEvent.done()]

    @pytest.mark.asyncio
    async def test_upstream_error_status_is_single_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": {"message": "Invalid API key"}})

        events = await _collect("hi", _http(handler))

        assert len(events) == 1
        assert events[0].kind is RelayEventKind.ERROR
        assert "Invalid API key" in events[0].message

    @pytest.mark.asyncio
    async def test_connect_error_is_single_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        events = await _collect("hi", _http(handler))

        assert len(events) == 1
        assert events[0].kind is RelayEventKind.ERROR
        assert "ConnectError" in events[0].message

    @pytest.mark.asyncio
    async def test_failure_mid_stream_ends_with_error(self) -> None:
        async def broken() -> AsyncIterator[bytes]:
            yield _data("partial")
            raise httpx.ReadError("connection reset")

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=broken())

        events = await _collect("hi", _http(handler))

        assert events[0] == RelayEvent.token("partial")
        assert events[-1].kind is RelayEventKind.ERROR
        assert len(events) == 2

    @pytest.mark.asyncio
    async def test_deeply_nested_frame_is_skipped(self) -> None:
        nested = b"data: " + b"[" * 200_000 + b"\n"

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=_chunks(nested, _data("ok"), b"data: [DONE]\n"))

        events = await _collect("hi", _http(handler))
        assert events == [RelayEvent.token("ok"), RelayEvent.done()]

    @pytest.mark.asyncio
    async def test_decoder_fault_ends_with_single_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        from bankbot.relay import framing

        real_decode_line = framing.decode_line

        def flaky_decode_line(line: str):
            if "boom" in line:
                raise RuntimeError("decoder fault")
            return real_decode_line(line)

        monkeypatch.setattr(framing, "decode_line", flaky_decode_line)

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=_chunks(_data("a"), _data("boom"), _data("late")))

        events = await _collect("hi", _http(handler))

        assert events[0] == RelayEvent.token("a")
        assert len(events) == 2
        assert events[1].kind is RelayEventKind.ERROR
        assert "RuntimeError" in events[1].message


# ─── _encode_sse() ───────────────────────────────────────────────────────────


class TestEncodeSse:
    @pytest.mark.asyncio
    async def test_frames_stop_after_terminal_event(self) -> None:
        async def events() -> AsyncIterator[RelayEvent]:
            yield RelayEvent.token("x")
            yield RelayEvent.done()
            yield RelayEvent.token("never")

        frames = [frame async for frame in _encode_sse(events())]
        assert frames == [b'data: {"response": "x"}\n\n', b"data: [DONE]\n\n"]

    @pytest.mark.asyncio
    async def test_abandoned_stream_closes_relay_generator(self) -> None:
        closed: list[bool] = []

        async def events() -> AsyncIterator[RelayEvent]:
            try:
                while True:
                    yield RelayEvent.token("x")
            finally:
                closed.append(True)

        encoder = _encode_sse(events())
        assert await encoder.__anext__() == b'data: {"response": "x"}\n\n'
        await encoder.aclose()

        assert closed == [True]
