"""FastAPI route definitions for the URL shortener REST API and WebSocket.

API Endpoint Overview
=====================
::
    GET  /api
        └─ APIIndexResponse (200)

    GET  /api/health
        └─ HealthResponse (200)

    POST /api/url              (x-client-id header, rate limited)
        ├─ ShortenURLRequest (request body)
        └─ ShortenURLAccepted (202) or 400/422/429/500

    GET  /api/:short_code
        └─ OriginalURLResponse (200) or 404

    WS   /
        ├─ → {type: "connection", payload: {clientId}}
        ├─ → {shortenedURL}
        └─ ← {type: "acknowledgment", payload: {shortCode}}

Request Flow Diagram — POST /api/url
====================================
::
    ┌─────────────┐
    │ Rate limit  │──► 429 {error, retryAfter}
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Validate    │──► 422
    │ (Pydantic)  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ x-client-id │──► 400
    │ present?    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ store.      │──► 500 on CodeGenerationError
    │ shorten()   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ registry.   │
    │ deliver_    │
    │ short_url() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ 202 Accepted│
    └─────────────┘

Key Behaviours
===============
- The shorten response never carries the code; it arrives over the socket.
- The snapshot is written before the push is issued.
- A push to an unknown client ID is dropped; the request still gets 202.
"""

import datetime

from fastapi import APIRouter, Depends, WebSocket
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.websockets import WebSocketDisconnect

from shortener.dependencies import (
    RequestContext,
    ServiceManager,
    get_request_context,
    get_service_manager,
    get_session_registry,
    get_store,
)
from shortener.enums import HealthStatus
from shortener.exceptions import CodeGenerationError
from shortener.rate_limiter import enforce_rate_limit
from shortener.schemas import (
    APIIndexResponse,
    ErrorResponse,
    HealthResponse,
    OriginalURLResponse,
    RateLimitErrorResponse,
    ShortenURLAccepted,
    ShortenURLRequest,
)
from shortener.sessions import SessionRegistry
from shortener.store import URLStore

__all__ = ["router", "ws_router"]

API_VERSION = "1.0.0"

router = APIRouter(prefix="/api")
ws_router = APIRouter()


@router.get("", response_model=APIIndexResponse, tags=["health"])
async def api_index() -> APIIndexResponse:
    return APIIndexResponse(version=API_VERSION)


@router.get("/health", response_model=HealthResponse, response_model_by_alias=True, tags=["health"])
async def health_check(manager: ServiceManager = Depends(get_service_manager)) -> HealthResponse:
    return HealthResponse(
        status=HealthStatus.OK,
        uptime=manager.uptime,
        timestamp=datetime.datetime.now(datetime.timezone.utc),
        urls=len(manager.store),
        clients=len(manager.registry),
        pending_deliveries=len(manager.engine),
    )


@router.post(
    "/url",
    response_model=ShortenURLAccepted,
    status_code=202,
    tags=["urls"],
    dependencies=[Depends(enforce_rate_limit)],
    responses={
        400: {"model": ErrorResponse},
        429: {"model": RateLimitErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def shorten_url(
    payload: ShortenURLRequest,
    ctx: RequestContext = Depends(get_request_context),
    store: URLStore = Depends(get_store),
    registry: SessionRegistry = Depends(get_session_registry),
):
    max_length = ctx.settings.MAX_URL_LENGTH
    if len(payload.url) > max_length:
        raise RequestValidationError(
            [
                {
                    "type": "string_too_long",
                    "loc": ("body", "url"),
                    "msg": f"URL is too long (max {max_length} characters)",
                    "input": payload.url,
                    "ctx": {"max_length": max_length},
                }
            ]
        )

    if not ctx.client_id:
        ctx.logger.warning("URL shortening rejected: missing x-client-id header")
        return JSONResponse(
            status_code=400,
            content={"error": "Client ID is required in the x-client-id header"},
        )

    base_url = ctx.settings.short_url_base
    try:
        short_code = await store.shorten(payload.url, base_url)
    except CodeGenerationError as exc:
        ctx.logger.error(
            f"Error shortening URL: {exc}",
            extra={"operation": "shorten_url", "error": str(exc), "duration_ms": ctx.get_duration()},
        )
        return JSONResponse(status_code=500, content={"error": "Failed to shorten URL"})

    short_url = f"{base_url}/{short_code}"
    ctx.logger.info(
        f"URL shortened: {payload.url} -> {short_url} for client {ctx.client_id}",
        extra={"operation": "shorten_url", "short_code": short_code, "duration_ms": ctx.get_duration()},
    )

    await registry.deliver_short_url(ctx.client_id, short_code, short_url)
    return ShortenURLAccepted()


@router.get(
    "/{short_code}",
    response_model=OriginalURLResponse,
    tags=["urls"],
    responses={404: {"model": ErrorResponse}},
)
async def get_original_url(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    store: URLStore = Depends(get_store),
):
    original_url = await store.lookup(short_code)
    if original_url is None:
        ctx.logger.info(f"Short code not found: {short_code}")
        return JSONResponse(status_code=404, content={"error": "URL not found"})

    ctx.logger.info(f"Retrieving original URL for code: {short_code}")
    return OriginalURLResponse(url=original_url)


@ws_router.websocket("/")
async def websocket_endpoint(
    websocket: WebSocket,
    registry: SessionRegistry = Depends(get_session_registry),
) -> None:
    client_id = await registry.connect(websocket)
    if client_id is None:
        return

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            await registry.handle_message(client_id, raw)
    except (WebSocketDisconnect, RuntimeError):
        pass
    finally:
        registry.disconnect(client_id)
