"""Pydantic schemas for HTTP and WebSocket payloads in the URL shortener.

This module defines Pydantic models for API input validation, output
serialization and the WebSocket message contract, ensuring type safety and
automatic OpenAPI documentation generation.

Schema Hierarchy
=================
::
    HTTP
    ├─ ShortenURLRequest (Input)      {url}
    ├─ ShortenURLAccepted (202)       {message}
    ├─ OriginalURLResponse (200)      {url}
    ├─ ErrorResponse (4xx/5xx)        {error}
    ├─ RateLimitErrorResponse (429)   {error, retryAfter}
    ├─ APIIndexResponse               {message, version}
    └─ HealthResponse                 {status, uptime, timestamp, ...}

    WebSocket, server → client
    ├─ ConnectionMessage              {type: "connection", payload: {clientId}}
    └─ ShortenedURLMessage            {shortenedURL}

    WebSocket, client → server
    └─ InboundMessage                 {type, payload}
       └─ AcknowledgmentPayload       {shortCode}

Key Behaviours
===============
- URL validation uses the validators library and only accepts http/https.
- The configured maximum URL length is enforced by the route, against the
  settings of the app serving the request.
- WebSocket payloads serialize with their camelCase wire names.
- Inbound messages accept any ``type`` value; dispatch decides what to do.
"""

import datetime
from typing import Any, Literal

import validators
from pydantic import BaseModel, ConfigDict, Field, field_validator

from shortener.enums import HealthStatus, MessageType

__all__ = [
    "ShortenURLRequest",
    "ShortenURLAccepted",
    "OriginalURLResponse",
    "ErrorResponse",
    "RateLimitErrorResponse",
    "APIIndexResponse",
    "HealthResponse",
    "ConnectionPayload",
    "ConnectionMessage",
    "ShortenedURLMessage",
    "AcknowledgmentPayload",
    "InboundMessage",
]


# ============================================================================
# HTTP
# ============================================================================


class ShortenURLRequest(BaseModel):
    url: str = Field(..., description="Absolute http(s) URL to shorten, e.g. 'https://example.com'")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v:
            raise ValueError("URL is required")
        if not v.lower().startswith(("http://", "https://")) or not validators.url(v):
            raise ValueError("Please provide a valid URL with http or https protocol")
        return v


class ShortenURLAccepted(BaseModel):
    message: str = "URL is being processed"


class OriginalURLResponse(BaseModel):
    url: str


class ErrorResponse(BaseModel):
    error: str


class RateLimitErrorResponse(BaseModel):
    error: str = "Too many requests, please try again later."
    retry_after: int = Field(..., alias="retryAfter", description="Seconds until the window resets")

    model_config = ConfigDict(populate_by_name=True)


class APIIndexResponse(BaseModel):
    message: str = "API is running"
    version: str


class HealthResponse(BaseModel):
    status: HealthStatus
    uptime: float = Field(..., description="Server uptime in seconds")
    timestamp: datetime.datetime
    urls: int
    clients: int
    pending_deliveries: int = Field(..., alias="pendingDeliveries")

    model_config = ConfigDict(populate_by_name=True)


# ============================================================================
# WEBSOCKET
# ============================================================================


class ConnectionPayload(BaseModel):
    client_id: str = Field(..., alias="clientId")

    model_config = ConfigDict(populate_by_name=True)


class ConnectionMessage(BaseModel):
    """Handshake sent once, immediately after a socket connects."""

    type: Literal[MessageType.CONNECTION] = MessageType.CONNECTION
    payload: ConnectionPayload

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ShortenedURLMessage(BaseModel):
    """Result push; flat with no ``type`` tag."""

    shortened_url: str = Field(..., alias="shortenedURL")

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class AcknowledgmentPayload(BaseModel):
    short_code: str = Field(..., alias="shortCode", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class InboundMessage(BaseModel):
    type: Any
    payload: Any = None
