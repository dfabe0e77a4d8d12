"""FastAPI application entry point for the URL shortener service.

This module configures and initializes the FastAPI application with middleware,
lifecycle management, and route registration for the URL shortening service.

Application Lifecycle Diagram
===========================
::
    ┌─────────────┐
    │  uvicorn    │
    │  startup    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ create_app()│
    │ routes, CORS│
    │ handlers    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ lifespan()  │
    │ startup:    │
    │ ServiceMgr  │
    │ (load snap- │
    │  shot,      │
    │  sweeps)    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Serve HTTP  │
    │ + WebSocket │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ lifespan()  │
    │ shutdown:   │
    │ refuse new  │
    │ sockets,    │
    │ stop timers,│
    │ flush store │
    └─────────────┘

How to Use
===========
**Step 1 — Run with uvicorn**::
    uvicorn shortener.main:app --host 0.0.0.0 --port 3000

  or through the console script::
    url-shortener

**Step 2 — Connect a WebSocket and read the clientId**::
    ws://localhost:3000/

**Step 3 — Shorten a URL**::
    curl -X POST http://localhost:3000/api/url \\
         -H "Content-Type: application/json" \\
         -H "x-client-id: client-1700000000000-42" \\
         -d '{"url": "https://example.com"}'

Key Behaviours
===============
- Each application owns one ServiceManager, kept on ``app.state.services``.
- Rate limit rejections render as 429 with a ``retryAfter`` field.
- Failing to bind the listening socket is the only fatal startup error.
- Auto-generated OpenAPI documentation available at /docs and /redoc.
"""

__all__ = ["app", "create_app", "run"]

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from shortener.config import Settings, get_settings
from shortener.dependencies import ServiceManager
from shortener.exceptions import RateLimitExceeded
from shortener.routes import router, ws_router
from shortener.schemas import RateLimitErrorResponse


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    body = RateLimitErrorResponse(retry_after=exc.retry_after)
    return JSONResponse(
        status_code=429,
        content=body.model_dump(by_alias=True),
        headers={"Retry-After": str(exc.retry_after)},
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # Startup
        manager = ServiceManager(settings)
        app.state.services = manager
        await manager.initialize()
        yield
        # Shutdown
        await manager.cleanup()

    app = FastAPI(
        title=settings.APP_NAME,
        version="1.0.0",
        description="URL shortener that delivers short codes over WebSocket",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=False,
        should_respect_env_var=False,
    ).instrument(app).expose(app)

    app.include_router(router)
    app.include_router(ws_router)
    return app


app = create_app()


def run() -> None:
    settings = get_settings()
    uvicorn.run(
        "shortener.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )
