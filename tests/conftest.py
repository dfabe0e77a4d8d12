"""Shared pytest fixtures for store, delivery, session and API tests."""

import datetime
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from starlette.websockets import WebSocketState

from shortener.config import Settings
from shortener.delivery import DeliveryEngine
from shortener.dependencies import ServiceManager
from shortener.main import create_app
from shortener.sessions import SessionRegistry
from shortener.store import URLStore


class FakeClock:
    """Manually advanced clock usable for datetimes or monotonic floats."""

    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, delta) -> None:
        self.now += delta


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        BASE_URL="http://test",
        SNAPSHOT_PATH=str(tmp_path / "data" / "urlMappings.json"),
        DELIVERY_RETRY_INTERVAL_SECONDS=0.01,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc))


@pytest.fixture
def store(settings: Settings, clock: FakeClock) -> URLStore:
    return URLStore(settings.SNAPSHOT_PATH, clock=clock)


@pytest_asyncio.fixture
async def engine(store: URLStore) -> AsyncGenerator[DeliveryEngine, None]:
    engine = DeliveryEngine(store, retry_interval=0.01, max_retries=5)
    yield engine
    await engine.shutdown()


@pytest.fixture
def registry(store: URLStore, engine: DeliveryEngine) -> SessionRegistry:
    return SessionRegistry(store, engine)


def make_websocket() -> MagicMock:
    websocket = MagicMock()
    websocket.client_state = WebSocketState.CONNECTED
    websocket.accept = AsyncMock()
    websocket.send_json = AsyncMock()
    websocket.close = AsyncMock()
    return websocket


@pytest.fixture
def websocket_factory():
    return make_websocket


@pytest.fixture
def monotonic_clock() -> FakeClock:
    return FakeClock(1000.0)


@pytest_asyncio.fixture
async def services(settings: Settings) -> AsyncGenerator[ServiceManager, None]:
    manager = ServiceManager(settings)
    yield manager
    await manager.cleanup()


@pytest_asyncio.fixture
async def client(settings: Settings, services: ServiceManager) -> AsyncGenerator[AsyncClient, None]:
    app = create_app(settings)
    app.state.services = services

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
