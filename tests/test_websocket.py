"""End-to-end WebSocket delivery tests against the full application."""

import json
import time
from pathlib import Path

import pytest
from starlette.testclient import TestClient

from shortener.config import Settings
from shortener.enums import DeliveryState
from shortener.main import create_app


def wait_until(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def e2e_settings(settings: Settings) -> Settings:
    return settings.model_copy(update={"DELIVERY_RETRY_INTERVAL_SECONDS": 0.2})


def test_handshake_delivers_client_id(e2e_settings: Settings) -> None:
    with TestClient(create_app(e2e_settings)) as client:
        with client.websocket_connect("/") as ws:
            message = ws.receive_json()

    assert message["type"] == "connection"
    assert message["payload"]["clientId"].startswith("client-")


def test_shorten_push_acknowledge_lookup(e2e_settings: Settings) -> None:
    app = create_app(e2e_settings)
    with TestClient(app) as client:
        services = app.state.services
        with client.websocket_connect("/") as ws:
            client_id = ws.receive_json()["payload"]["clientId"]

            response = client.post(
                "/api/url",
                json={"url": "https://example.com"},
                headers={"x-client-id": client_id},
            )
            assert response.status_code == 202

            result = ws.receive_json()
            assert list(result) == ["shortenedURL"]
            assert result["shortenedURL"].startswith("http://test/")
            code = result["shortenedURL"].rsplit("/", 1)[1]
            assert services.engine.state(code) is DeliveryState.PENDING

            ws.send_json({"type": "acknowledgment", "payload": {"shortCode": code}})
            assert wait_until(lambda: services.store.is_acknowledged(code))
            assert wait_until(lambda: services.engine.state(code) is DeliveryState.UNSENT)

        response = client.get(f"/api/{code}")
        assert response.status_code == 200
        assert response.json() == {"url": "https://example.com"}


def test_unacknowledged_result_is_redelivered(e2e_settings: Settings) -> None:
    app = create_app(e2e_settings)
    with TestClient(app) as client:
        with client.websocket_connect("/") as ws:
            client_id = ws.receive_json()["payload"]["clientId"]
            client.post("/api/url", json={"url": "https://example.com"}, headers={"x-client-id": client_id})

            first = ws.receive_json()
            second = ws.receive_json()
            assert first == second

            code = first["shortenedURL"].rsplit("/", 1)[1]
            ws.send_json({"type": "acknowledgment", "payload": {"shortCode": code}})
            assert wait_until(lambda: app.state.services.store.is_acknowledged(code))


def test_malformed_and_unknown_messages_keep_connection_open(e2e_settings: Settings) -> None:
    app = create_app(e2e_settings)
    with TestClient(app) as client:
        with client.websocket_connect("/") as ws:
            client_id = ws.receive_json()["payload"]["clientId"]
            ws.send_text("{not json")
            ws.send_json({"type": "ping", "payload": {}})

            client.post("/api/url", json={"url": "https://example.com"}, headers={"x-client-id": client_id})
            assert "shortenedURL" in ws.receive_json()


def test_disconnect_unregisters_client(e2e_settings: Settings) -> None:
    app = create_app(e2e_settings)
    with TestClient(app) as client:
        registry = app.state.services.registry
        with client.websocket_connect("/") as ws:
            client_id = ws.receive_json()["payload"]["clientId"]
            assert client_id in registry
        assert wait_until(lambda: client_id not in registry)


def test_mappings_survive_restart(e2e_settings: Settings) -> None:
    first_app = create_app(e2e_settings)
    with TestClient(first_app) as client:
        with client.websocket_connect("/") as ws:
            client_id = ws.receive_json()["payload"]["clientId"]
            client.post("/api/url", json={"url": "https://example.com"}, headers={"x-client-id": client_id})
            code = ws.receive_json()["shortenedURL"].rsplit("/", 1)[1]

    records = json.loads(Path(e2e_settings.SNAPSHOT_PATH).read_text())
    assert [r["shortCode"] for r in records] == [code]

    with TestClient(create_app(e2e_settings)) as client:
        assert client.get(f"/api/{code}").json() == {"url": "https://example.com"}
