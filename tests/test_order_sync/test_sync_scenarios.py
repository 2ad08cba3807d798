"""
End-to-end scenarios across the whole sync core.

These walk through the races the core exists to resolve: checkout
confirmation against a delayed push, and the same order arriving under
different identifiers from different channels.
"""

import asyncio

import httpx
import pytest

from order_sync.session import SyncSession
from shared.models import Order


@pytest.fixture
def session(config, identity, sio_factory, fake_sleep, t0):
    """A started session whose backend confirms ORD-500 as Processing."""
    t1 = t0 + 60_000

    def backend(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(201, json={"success": True, "data": {
                "_id": "abc500",
                "orderNumber": "ORD-500",
                "trackingNumber": "TRK-500",
                "status": "Processing",
                "user": "user-1",
                "version": t1,
            }})
        return httpx.Response(200, json={"success": True, "data": []})

    return SyncSession(
        config,
        identity,
        transport=httpx.MockTransport(backend),
        sio_factory=sio_factory,
        sleep=fake_sleep,
    )


class TestCheckoutScenario:
    """Checkout confirmation racing a delayed push event."""

    def test_checkout_then_stale_push(self, session: SyncSession, sio_factory, t0):
        local = Order(order_number="ORD-500", owner_ref="user-1", status="Pending", version=t0)

        async def scenario():
            await session.start()
            confirmed = await session.rest.create_order(local)
            # The push for the original Pending state arrives late
            sio_factory.latest.fire("order-updated", {"order": {
                "orderNumber": "ORD-500", "status": "Pending", "user": "user-1", "version": t0,
            }})
            return confirmed

        confirmed = asyncio.run(scenario())

        cached = session.orders.get("ORD-500")
        assert cached.status == "Processing"
        assert cached == confirmed
        assert len(session.orders) == 1

        [notification] = session.notifications.notifications
        assert notification.previous_status == "Pending"
        assert notification.status == "Processing"
        assert notification.message.endswith("(Pending → Processing)")

    def test_duplicate_shipped_pushes(self, session: SyncSession, sio_factory, t0):
        local = Order(order_number="ORD-500", owner_ref="user-1", status="Pending", version=t0)
        shipped = {"order": {"orderNumber": "ORD-500", "status": "Shipped", "version": t0 + 120_000}}

        async def scenario():
            await session.start()
            await session.rest.create_order(local)
            sio_factory.latest.fire("order-updated", shipped)
            sio_factory.latest.fire("order-updated", shipped)

        asyncio.run(scenario())

        assert [n.status for n in session.notifications.notifications] == ["Shipped", "Processing"]
        assert session.notifications.unread_count == 2


class TestIdentityScenario:
    """The same order reaching the cache under three identifiers."""

    def test_temp_id_server_id_order_number(self, session: SyncSession, sio_factory, t0):
        async def scenario():
            await session.start()
            session.orders.upsert_optimistic(Order(
                order_number="ORD-100", client_temp_id="tmp-1", owner_ref="user-1", version=t0,
            ))
            sio_factory.latest.fire("order-updated", {"order": {
                "_id": "abc123", "orderNumber": "ORD-100", "status": "Processing", "version": t0 + 1,
            }})

        asyncio.run(scenario())

        assert len(session.orders) == 1
        cached = session.orders.get("ORD-100")
        assert cached.id == "abc123"
        for identifier in ("tmp-1", "abc123", "ORD-100"):
            assert session.orders.resolve(identifier) == cached
