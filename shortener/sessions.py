"""Session registry and push channel for connected WebSocket clients.

Each socket gets a server-assigned client ID, announced to it in a handshake
message. The HTTP layer addresses results to that ID; acknowledgments come
back over the same socket and are forwarded to the store.

Sequence Diagram — shorten → push → acknowledge
================================================
::
    client              registry              store            engine
      │   connect           │                   │                 │
      │────────────────────►│                   │                 │
      │ {type: connection,  │                   │                 │
      │  payload:{clientId}}│                   │                 │
      │◄────────────────────│                   │                 │
      │                     │ deliver_short_url │                 │
      │ {shortenedURL}      │◄──── (routes)     │                 │
      │◄────────────────────│───────────── start(code) ──────────►│
      │                     │                   │   every 5s:     │
      │ {shortenedURL}      │◄───────────────── resend ───────────│
      │◄────────────────────│                   │                 │
      │ {type: acknowledgment, payload:{shortCode}}               │
      │────────────────────►│ acknowledge(code) │                 │
      │                     │──────────────────►│ persist, notify │
      │                     │                   │────cancel──────►│

How to Use
===========
**Step 1 — Construct with the store and engine**::
    registry = SessionRegistry(store, engine)

**Step 2 — Serve a socket**::
    client_id = await registry.connect(websocket)
    await registry.handle_message(client_id, raw_text)
    registry.disconnect(client_id)

**Step 3 — Push a result**::
    await registry.deliver_short_url(client_id, code, short_url)

Key Behaviours
===============
- The handshake is the only way a client learns its ID.
- Pushes to unknown or closed clients are dropped with a warning, never raised.
- Malformed inbound messages are logged and discarded; the socket stays open.
- Unknown message types are logged as warnings and ignored.
- Disconnecting does not cancel pending deliveries.
"""

import logging
import random
import time
from typing import Any

from fastapi import WebSocket, status
from prometheus_client import Counter, Gauge
from pydantic import ValidationError
from starlette.websockets import WebSocketDisconnect, WebSocketState

from shortener.delivery import DeliveryEngine
from shortener.enums import MessageType
from shortener.schemas import (
    AcknowledgmentPayload,
    ConnectionMessage,
    ConnectionPayload,
    InboundMessage,
    ShortenedURLMessage,
)
from shortener.store import URLStore

__all__ = ["SessionRegistry"]

logger = logging.getLogger("urlshortener.sessions")


CONNECTED_CLIENTS = Gauge(
    "url_shortener_connected_clients",
    "WebSocket clients currently registered",
)
PUSHES_TOTAL = Counter(
    "url_shortener_pushes_total",
    "Messages pushed to WebSocket clients",
    ["delivered"],
)
INBOUND_MESSAGES_TOTAL = Counter(
    "url_shortener_inbound_messages_total",
    "Messages received from WebSocket clients",
    ["type"],
)


class SessionRegistry:
    """Maps client IDs to live sockets and dispatches their messages.

    Attributes:
        accepting: False once shutdown has begun; new sockets are refused.
    """

    def __init__(self, store: URLStore, engine: DeliveryEngine):
        self._store = store
        self._engine = engine
        self._clients: dict[str, WebSocket] = {}
        self.accepting = True

    def __len__(self) -> int:
        return len(self._clients)

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._clients

    def generate_client_id(self) -> str:
        while True:
            client_id = f"client-{int(time.time() * 1000)}-{random.randint(0, 999)}"
            if client_id not in self._clients:
                return client_id

    # ========================================================================
    # CONNECTION LIFECYCLE
    # ========================================================================

    async def connect(self, websocket: WebSocket) -> str | None:
        """Accept ``websocket``, register it and send the handshake.

        Returns the new client ID, or None if the registry is shutting down.
        """
        if not self.accepting:
            await websocket.close(code=status.WS_1001_GOING_AWAY)
            return None

        await websocket.accept()
        client_id = self.generate_client_id()
        self._clients[client_id] = websocket
        CONNECTED_CLIENTS.set(len(self._clients))
        logger.info(f"WebSocket client connected: {client_id}")

        handshake = ConnectionMessage(payload=ConnectionPayload(client_id=client_id))
        await self._send(client_id, websocket, handshake.to_wire())
        return client_id

    def disconnect(self, client_id: str) -> None:
        if self._clients.pop(client_id, None) is not None:
            CONNECTED_CLIENTS.set(len(self._clients))
            logger.info(f"WebSocket client disconnected: {client_id}")

    async def close_all(self) -> None:
        """Refuse new sockets and close every registered one."""
        self.accepting = False
        clients = list(self._clients.items())
        self._clients.clear()
        CONNECTED_CLIENTS.set(0)
        for client_id, websocket in clients:
            try:
                await websocket.close(code=status.WS_1001_GOING_AWAY)
            except (RuntimeError, OSError) as exc:
                logger.debug(f"Closing {client_id} failed: {exc}")
        if clients:
            logger.info(f"Closed {len(clients)} WebSocket connections")

    # ========================================================================
    # OUTBOUND
    # ========================================================================

    async def push(self, client_id: str, payload: dict[str, Any]) -> bool:
        """Send ``payload`` to ``client_id`` if it is connected.

        Fire-and-forget: True only means the frame was handed to the socket.
        """
        websocket = self._clients.get(client_id)
        if websocket is None or websocket.client_state is not WebSocketState.CONNECTED:
            logger.warning(f"Client {client_id} not connected or not ready")
            PUSHES_TOTAL.labels(delivered="false").inc()
            return False
        return await self._send(client_id, websocket, payload)

    async def deliver_short_url(self, client_id: str, short_code: str, short_url: str) -> bool:
        """Push a result and start redelivery until it is acknowledged."""
        payload = ShortenedURLMessage(shortened_url=short_url).to_wire()
        if not await self.push(client_id, payload):
            return False
        logger.info(f"Sent shortened URL to client {client_id}: {short_url}")

        async def resend(code: str) -> None:
            await self.push(client_id, payload)

        self._engine.start(short_code, resend)
        return True

    async def _send(self, client_id: str, websocket: WebSocket, payload: dict[str, Any]) -> bool:
        try:
            await websocket.send_json(payload)
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            logger.warning(f"Failed to push to client {client_id}: {exc}")
            PUSHES_TOTAL.labels(delivered="false").inc()
            return False
        PUSHES_TOTAL.labels(delivered="true").inc()
        return True

    # ========================================================================
    # INBOUND
    # ========================================================================

    async def handle_message(self, client_id: str, raw: str | bytes) -> None:
        try:
            message = InboundMessage.model_validate_json(raw)
        except ValidationError as exc:
            INBOUND_MESSAGES_TOTAL.labels(type="malformed").inc()
            logger.error(f"Error parsing WebSocket message from {client_id}: {exc}")
            return

        logger.debug(f"Received message from {client_id}: {message.type}")
        if MessageType.from_str(str(message.type)) is MessageType.ACKNOWLEDGMENT:
            INBOUND_MESSAGES_TOTAL.labels(type=MessageType.ACKNOWLEDGMENT).inc()
            await self._handle_acknowledgment(client_id, message.payload)
        else:
            INBOUND_MESSAGES_TOTAL.labels(type="unknown").inc()
            logger.warning(f"Unknown message type: {message.type}")

    async def _handle_acknowledgment(self, client_id: str, payload: Any) -> None:
        try:
            ack = AcknowledgmentPayload.model_validate(payload)
        except ValidationError:
            logger.warning(f"Acknowledgment from {client_id} is missing a shortCode")
            return

        if not await self._store.acknowledge(ack.short_code):
            logger.warning(f"Failed to acknowledge URL with code: {ack.short_code}")
