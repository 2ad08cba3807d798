"""
Tests for the local order sync API.

These tests verify the FastAPI endpoints against a session whose cache is
filled directly, without starting the network channels.
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from api.main import app, reset_api_state
from order_sync.session import SyncSession
from shared.persistence import MemoryStorage


@pytest.fixture
def backend_status():
    """HTTP status the fake storefront backend answers with."""
    return {"code": 200}


@pytest.fixture
def session(config, identity, sio_factory, backend_status, order_payload, t0) -> SyncSession:
    def backend(request: httpx.Request) -> httpx.Response:
        if backend_status["code"] != 200:
            return httpx.Response(backend_status["code"], json={"success": False, "error": "Bad gateway"})
        return httpx.Response(200, json={"success": True, "data": [
            order_payload("ORD-3", status="Pending", user="user-1", version=t0 + 3),
        ]})

    session = SyncSession(
        config,
        identity,
        storage=MemoryStorage(),
        transport=httpx.MockTransport(backend),
        sio_factory=sio_factory,
    )
    session.notifications.start(session.registry)
    session.orders.merge_raw(
        order_payload("ORD-1", status="Processing", user="user-1", _id="abc123", trackingNumber="TRK-1", version=t0),
        source="test",
    )
    session.orders.merge_raw(order_payload("ORD-1", status="Shipped", user="user-1", version=t0 + 1), source="test")
    session.orders.merge_raw(order_payload("ORD-2", status="Pending", user="user-2", version=t0 + 2), source="test")
    return session


@pytest.fixture
def api_client(session):
    """Create a test client with fresh state."""
    reset_api_state(session)
    yield TestClient(app)
    reset_api_state(None)


class TestHealthEndpoint:
    """Tests for the health check endpoint."""

    def test_health_check(self, api_client):
        response = api_client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestOrderEndpoints:
    """Tests for /orders."""

    def test_list_orders(self, api_client):
        response = api_client.get("/orders")

        assert response.status_code == 200
        assert [o["order_number"] for o in response.json()] == ["ORD-2", "ORD-1"]

    def test_list_orders_by_owner(self, api_client):
        response = api_client.get("/orders", params={"owner": "user-1"})

        assert [o["order_number"] for o in response.json()] == ["ORD-1"]

    @pytest.mark.parametrize("identifier", ["ORD-1", "abc123", "TRK-1"])
    def test_get_order_by_any_identifier(self, api_client, identifier):
        response = api_client.get(f"/orders/{identifier}")

        assert response.status_code == 200
        assert response.json()["order_number"] == "ORD-1"
        assert response.json()["status"] == "Shipped"

    def test_get_order_not_found(self, api_client):
        response = api_client.get("/orders/ORD-404")

        assert response.status_code == 404
        assert "ORD-404" in response.json()["detail"]


class TestNotificationEndpoints:
    """Tests for /notifications."""

    def test_list(self, api_client):
        response = api_client.get("/notifications")

        assert response.status_code == 200
        [notification] = response.json()
        assert notification["order_number"] == "ORD-1"
        assert notification["status"] == "Shipped"
        assert notification["previous_status"] == "Processing"
        assert notification["read"] is False

    def test_unread_count(self, api_client):
        assert api_client.get("/notifications/unread-count").json() == {"unread": 1}

    def test_mark_read(self, api_client, session):
        notification_id = session.notifications.notifications[0].id

        response = api_client.post(f"/notifications/{notification_id}/read")

        assert response.status_code == 200
        assert response.json()["read"] is True
        assert api_client.get("/notifications/unread-count").json() == {"unread": 0}
        assert api_client.get("/notifications", params={"unread_only": True}).json() == []

    def test_mark_read_not_found(self, api_client):
        assert api_client.post("/notifications/missing/read").status_code == 404

    def test_mark_all_read(self, api_client):
        response = api_client.post("/notifications/read-all")

        assert response.json() == {"marked": 1}
        assert api_client.get("/notifications/unread-count").json() == {"unread": 0}

    def test_remove(self, api_client, session):
        notification_id = session.notifications.notifications[0].id

        response = api_client.delete(f"/notifications/{notification_id}")

        assert response.status_code == 200
        assert api_client.get("/notifications").json() == []

    def test_remove_not_found(self, api_client):
        response = api_client.delete("/notifications/missing")

        assert response.status_code == 404

    def test_clear(self, api_client):
        response = api_client.delete("/notifications")

        assert response.json() == {"cleared": 1}
        assert api_client.get("/notifications").json() == []


class TestSyncEndpoints:
    """Tests for /sync."""

    def test_status(self, api_client):
        response = api_client.get("/sync/status")

        assert response.status_code == 200
        status = response.json()
        assert status["session_id"] == "session-test"
        assert status["connection"] == "idle"
        assert status["registered"] is False
        assert status["cached_orders"] == 2
        assert status["unread_notifications"] == 1
        assert status["last_refresh_at"] is None

    def test_refresh(self, api_client):
        response = api_client.post("/sync/refresh")

        assert response.status_code == 200
        assert response.json()["refreshed"] == 1
        assert [o["order_number"] for o in api_client.get("/orders").json()] == ["ORD-3", "ORD-2", "ORD-1"]
        assert api_client.get("/sync/status").json()["last_refresh_at"] is not None

    def test_refresh_failure(self, api_client, backend_status):
        backend_status["code"] = 502

        response = api_client.post("/sync/refresh")

        assert response.status_code == 502
        assert "Bad gateway" in response.json()["detail"]
        # Cached orders are still served
        assert len(api_client.get("/orders").json()) == 2
        assert api_client.get("/sync/status").json()["last_refresh_error"]
