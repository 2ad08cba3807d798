"""
Demonstration scripts for the order sync core.

These functions walk through the sync scenarios offline: the backend is an
in-process httpx mock and push events are applied directly, so nothing needs
to be running. Watch the logs to see merges, discarded stale writes and
notification de-duplication.
"""

import asyncio
import logging

import httpx

from order_sync.notification_store import NotificationStore
from order_sync.order_store import OrderStore
from order_sync.push_client import PushClient
from order_sync.registry import SubscriberRegistry
from order_sync.rest_client import OrdersClient
from shared.config import LOG_DATE_FORMAT, LOG_FORMAT, SyncConfig
from shared.models import Order, OrderItem, OrderTotals, SessionIdentity

# Configure logging to see what's happening
logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)


DEMO_USER = "user-1"
T0 = 1_700_000_000_000  # epoch ms of the checkout


def _print_cache(store: OrderStore) -> None:
    print("\nCached orders:")
    for order in store.list():
        print(f"  {order.order_number}: {order.status} (id={order.id}, temp={order.client_temp_id}, v{order.version})")


def _print_notifications(notifications: NotificationStore) -> None:
    print(f"\nNotifications ({notifications.unread_count} unread):")
    for notification in notifications.notifications:
        print(f"  [{notification.kind}] {notification.title}: {notification.message}")


def run_checkout_demo():
    """
    Demonstrate checkout confirmation racing a delayed push event.

    This shows:
    1. Checkout inserts ORD-500 optimistically as Pending, under a temp id
    2. The REST confirmation (Processing, newer version) folds the temp id
       into the server record and produces one notification
    3. A delayed push event carrying the old Pending state is discarded as
       stale; the cache stays Processing and no notification is added
    """
    print("\n" + "=" * 70)
    print("SYNC DEMO: Checkout confirmation vs. delayed push")
    print("=" * 70 + "\n")

    registry = SubscriberRegistry()
    store = OrderStore(registry=registry)
    notifications = NotificationStore()
    notifications.start(registry)

    # An account page that only cares about this user's orders
    registry.subscribe(
        lambda order: print(f"  [account page] {order.order_number} is now {order.status}"),
        predicate=lambda order: order.owner_ref == DEMO_USER,
    )

    t1 = T0 + 60_000

    def backend(request: httpx.Request) -> httpx.Response:
        return httpx.Response(201, json={
            "success": True,
            "data": {
                "_id": "abc123",
                "orderNumber": "ORD-500",
                "trackingNumber": "TRK-500",
                "status": "processing",
                "user": {"_id": DEMO_USER},
                "totalAmount": "85.00",
                "version": t1,
            },
        })

    local = Order(
        order_number="ORD-500",
        client_temp_id="tmp-1",
        owner_ref=DEMO_USER,
        status="Pending",
        items=[OrderItem(name="Linen Shirt", price=85.0, quantity=1, size="M")],
        totals=OrderTotals(subtotal=85.0, total_amount=85.0),
        version=T0,
    )

    async def checkout() -> Order:
        client = OrdersClient(
            store,
            SyncConfig(api_base_url="http://backend.test/api/v1"),
            token="demo-token",
            transport=httpx.MockTransport(backend),
        )
        try:
            return await client.create_order(local)
        finally:
            await client.aclose()

    print("-" * 70)
    print("ACTION: Checkout places ORD-500, server confirms it as Processing")
    print("-" * 70 + "\n")
    confirmed = asyncio.run(checkout())
    print(f"\nConfirmed: {confirmed.order_number} id={confirmed.id}, temp id tmp-1 -> {store.confirmed_id('tmp-1')}")

    print("\n" + "-" * 70)
    print("ACTION: A delayed push event arrives with the old Pending state")
    print("-" * 70 + "\n")
    push = PushClient(store, SessionIdentity(user_id=DEMO_USER), notifications=notifications)
    result = push.handle_event("order-updated", {"order": {"orderNumber": "ORD-500", "status": "Pending", "version": T0}})
    print(f"Merge changed the cache: {result.changed}")

    _print_cache(store)
    _print_notifications(notifications)

    notifications.stop()
    return notifications.notifications


def run_duplicate_push_demo():
    """
    Demonstrate notification de-duplication.

    The same "Shipped" push is delivered twice, and once more after the
    user dismissed the notification. Only one notification is ever created.
    """
    print("\n" + "=" * 70)
    print("SYNC DEMO: Duplicate push events")
    print("=" * 70 + "\n")

    registry = SubscriberRegistry()
    store = OrderStore(registry=registry)
    notifications = NotificationStore()
    notifications.start(registry)
    push = PushClient(store, SessionIdentity(user_id=DEMO_USER), notifications=notifications)

    def shipped(version: int) -> dict:
        return {"order": {"orderNumber": "ORD-600", "status": "Shipped", "user": DEMO_USER, "version": version}}

    push.handle_event("new-order", {"order": {"orderNumber": "ORD-600", "status": "Processing", "user": DEMO_USER, "version": T0}})

    print("Delivering 'Shipped' twice...")
    push.handle_event("order-updated", shipped(T0 + 1_000))
    push.handle_event("order-updated", shipped(T0 + 1_000))
    _print_notifications(notifications)

    print("\nDismissing it, then the server re-sends the same event with a newer timestamp...")
    notifications.remove_notification(notifications.notifications[0].id)
    push.handle_event("order-updated", shipped(T0 + 2_000))
    _print_notifications(notifications)

    notifications.stop()
    return notifications.notifications


def run_all_demos():
    run_checkout_demo()
    run_duplicate_push_demo()


if __name__ == "__main__":
    run_all_demos()
