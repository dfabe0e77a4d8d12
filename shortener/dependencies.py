"""Service wiring and dependency injection for the URL shortener.

One ``ServiceManager`` is built per application at startup. It owns the store,
delivery engine, session registry and admission guard, runs the periodic
sweeps, and tears everything down in order at shutdown. Routes receive the
shared instances through the FastAPI dependencies below.
"""

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Depends, Request
from starlette.requests import HTTPConnection

from shortener.config import Settings, get_settings
from shortener.delivery import DeliveryEngine
from shortener.rate_limiter import AdmissionGuard
from shortener.sessions import SessionRegistry
from shortener.store import URLStore


# ============================================================================
# SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Owns the shared components for one application instance.

    Construction wires the components together; ``initialize`` starts the
    background sweeps and ``cleanup`` runs the shutdown sequence.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.logger = self._setup_logger()
        self.store = URLStore.from_settings(self.settings)
        self.engine = DeliveryEngine.from_settings(self.store, self.settings)
        self.registry = SessionRegistry(self.store, self.engine)
        self.guard = AdmissionGuard.from_settings(self.settings)
        self.started_at = time.monotonic()
        self._tasks: list[asyncio.Task] = []
        self._initialized = False

    async def initialize(self) -> None:
        """Start the periodic sweeps once at startup."""
        if not self._initialized:
            self._tasks = [
                asyncio.create_task(
                    self._run_periodically(
                        "expired URL sweep",
                        self.settings.EXPIRY_SWEEP_INTERVAL_SECONDS,
                        self.store.sweep_expired,
                    ),
                    name="expiry-sweep",
                ),
                asyncio.create_task(
                    self._run_periodically(
                        "rate limit sweep",
                        self.settings.RATE_LIMIT_SWEEP_INTERVAL_SECONDS,
                        self._sweep_rate_limits,
                    ),
                    name="rate-limit-sweep",
                ),
            ]
            self._initialized = True
            self.logger.info(f"{self.settings.APP_NAME} started ({self.settings.APP_ENV})")

    def _setup_logger(self) -> logging.Logger:
        """Setup logger once."""
        logger = logging.getLogger("urlshortener")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        logger.setLevel(self.settings.LOG_LEVEL.upper())
        return logger

    async def _run_periodically(self, label: str, interval: float, job: Callable[[], Awaitable[object]]) -> None:
        self.logger.info(f"Scheduling {label} every {interval}s")
        while True:
            await asyncio.sleep(interval)
            try:
                await job()
            except Exception as e:
                self.logger.error(f"{label} failed: {e}")

    async def _sweep_rate_limits(self) -> int:
        return self.guard.sweep()

    async def cleanup(self) -> None:
        """Stop sockets and timers, then let in-flight snapshot writes finish."""
        self.registry.accepting = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        await self.engine.shutdown()
        await self.registry.close_all()
        await self.store.flush()
        self._initialized = False
        self.logger.info("Shutdown complete")

    @property
    def uptime(self) -> float:
        return time.monotonic() - self.started_at


# ============================================================================
# LIGHTWEIGHT REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request tracking data plus access to the shared services.

    Attributes:
        service_manager: Application-wide service manager
        request_id: Unique identifier for this request
        client_id: WebSocket client ID from the x-client-id header
        user_agent: Client user agent string
        client_ip: Client IP address
        start_time: Request start timestamp
    """

    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    client_id: Optional[str] = None
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())

    @property
    def logger(self) -> logging.LoggerAdapter:
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "client_id": self.client_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
            },
        )

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


def get_service_manager(conn: HTTPConnection) -> ServiceManager:
    """Return the application's service manager (HTTP or WebSocket)."""
    return conn.app.state.services


def get_store(manager: ServiceManager = Depends(get_service_manager)) -> URLStore:
    return manager.store


def get_session_registry(manager: ServiceManager = Depends(get_service_manager)) -> SessionRegistry:
    return manager.registry


async def get_request_context(
    request: Request,
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    return RequestContext(
        service_manager=manager,
        client_id=request.headers.get("x-client-id"),
        user_agent=request.headers.get("user-agent"),
        client_ip=request.client.host if request.client else None,
    )
