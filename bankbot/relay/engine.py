"""Streaming relay and the ``/bankbot-stream`` SSE endpoint.

``relay()`` opens one upstream chat-completion stream and yields normalized
``RelayEvent`` objects; ``/bankbot-stream`` encodes them as outward SSE frames.

Key properties:
  - Shared ``httpx.AsyncClient`` at ``app.state.http_client`` — never per-request
  - Upstream bytes read with ``aiter_bytes()``; never buffered whole
  - TOKEN events leave in upstream line order; partial lines are never emitted
  - At most one DONE or ERROR, always last:
      sentinel line            → DONE, upstream closed, remaining bytes ignored
      upstream EOF, no sentinel → trailing fragment processed, then DONE
      transport failure / non-2xx upstream → single ERROR
  - Client disconnect: Starlette stops the response on the next failed send and
    closes this generator; the ``async with`` scope closes the upstream response
    and the frame buffer is dropped with it.
"""

from __future__ import annotations

from typing import Any, AsyncGenerator, AsyncIterator, Optional

import httpx
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from bankbot.config import Config, UpstreamConfig
from bankbot.constants import (
    HTTP_CONNECT_TIMEOUT,
    HTTP_READ_TIMEOUT,
    POOL_KEEPALIVE_EXPIRY,
    POOL_MAX_CONNECTIONS,
    POOL_MAX_KEEPALIVE,
)
from bankbot.models.events import RelayEvent, RelayEventKind
from bankbot.relay.framing import FrameDecoder
from bankbot.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["relay"])

SSE_RESPONSE_HEADERS: dict[str, str] = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


# ─── httpx.AsyncClient factory ────────────────────────────────────────────────


def create_http_client() -> httpx.AsyncClient:
    """Create the shared outbound client (relay, verdict service, OCR, SMS).

    Created once at lifespan startup and stored in ``app.state.http_client``.
    The read timeout bounds the gap between two upstream chunks, not the
    total length of a relayed completion.
    """
    return httpx.AsyncClient(
        limits=httpx.Limits(
            max_connections=POOL_MAX_CONNECTIONS,
            max_keepalive_connections=POOL_MAX_KEEPALIVE,
            keepalive_expiry=POOL_KEEPALIVE_EXPIRY,
        ),
        timeout=httpx.Timeout(HTTP_READ_TIMEOUT, connect=HTTP_CONNECT_TIMEOUT),
        follow_redirects=False,
    )


# ─── Relay ────────────────────────────────────────────────────────────────────


def build_completion_request(message: str, upstream: UpstreamConfig) -> dict[str, Any]:
    """Chat-completion body for one relayed user message."""
    return {
        "model": upstream.model,
        "messages": [
            {"role": "system", "content": upstream.system_prompt},
            {"role": "user", "content": message},
        ],
        "max_tokens": upstream.max_tokens,
        "temperature": upstream.temperature,
        "stream": True,
    }


async def relay(
    message: str,
    http_client: httpx.AsyncClient,
    upstream: UpstreamConfig,
) -> AsyncGenerator[RelayEvent, None]:
    """Relay one user message to the token-streaming backend.

    Yields:
        TOKEN events in upstream order, then exactly one DONE or ERROR.
        Never raises; upstream and decoding failures end the stream with ERROR.
    """
    url = f"{upstream.base_url.rstrip('/')}/v1/chat/completions"
    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {upstream.api_key or ''}",
    }
    decoder = FrameDecoder()
    tokens = 0

    try:
        async with http_client.stream(
            "POST",
            url,
            json=build_completion_request(message, upstream),
            headers=headers,
        ) as response:
            if response.is_error:
                body = (await response.aread()).decode("utf-8", errors="replace")
                logger.warning(
                    "relay_upstream_error_status",
                    status_code=response.status_code,
                    body=body[:500],
                )
                yield RelayEvent.error(
                    f"Upstream error: {body or response.reason_phrase or response.status_code}"
                )
                return

            async for chunk in response.aiter_bytes():
                for event in decoder.feed(chunk):
                    if event.kind is RelayEventKind.TOKEN:
                        tokens += 1
                    yield event
                if decoder.done:
                    logger.info("relay_complete", tokens=tokens, lines=decoder.lines_seen)
                    return

            for event in decoder.finish():
                if event.kind is RelayEventKind.TOKEN:
                    tokens += 1
                yield event
            if decoder.done:
                logger.info("relay_complete", tokens=tokens, lines=decoder.lines_seen)
                return

    except httpx.HTTPError as exc:
        logger.warning(
            "relay_upstream_unavailable",
            url=url,
            tokens=tokens,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        yield RelayEvent.error(f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__)
        return
    except Exception as exc:  # noqa: BLE001
        logger.error(
            "relay_internal_error",
            tokens=tokens,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        yield RelayEvent.error(f"Relay failed: {type(exc).__name__}")
        return

    logger.info("relay_complete_without_sentinel", tokens=tokens, lines=decoder.lines_seen)
    yield RelayEvent.done()


async def _encode_sse(events: AsyncGenerator[RelayEvent, None]) -> AsyncIterator[bytes]:
    """Encode relay events as SSE frames; always closes the relay generator."""
    finished = False
    try:
        async for event in events:
            yield event.to_sse()
            if event.is_terminal:
                finished = True
                break
    finally:
        await events.aclose()
        if not finished:
            logger.info("relay_abandoned_by_client")


# ─── Endpoint ─────────────────────────────────────────────────────────────────


class RelayRequest(BaseModel):
    """Request body for POST /bankbot-stream."""

    message: Optional[str] = None


@router.post("/bankbot-stream")
async def bankbot_stream(body: RelayRequest, request: Request) -> Any:
    """Stream the assistant's reply to ``message`` as Server-Sent Events.

    Returns:
        ``text/event-stream`` of ``data: {"response": "..."}`` frames, closed by
        ``data: [DONE]`` or, on upstream failure, ``data: {"error": "..."}``.
        HTTP 400 when ``message`` is missing or empty.
    """
    if not body.message:
        return JSONResponse(status_code=400, content={"error": "User message is required."})

    config: Config = request.app.state.config
    http_client: httpx.AsyncClient = request.app.state.http_client

    logger.info("relay_start", message_chars=len(body.message), model=config.upstream.model)
    return StreamingResponse(
        content=_encode_sse(relay(body.message, http_client, config.upstream)),
        media_type="text/event-stream",
        headers=SSE_RESPONSE_HEADERS,
    )
