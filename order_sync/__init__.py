"""
Order synchronization core.

This package keeps one consistent, live view of a user's orders:
- OrderStore converges optimistic, REST and push writes by version
- SubscriberRegistry fans merged orders out to UI surfaces
- NotificationStore turns status changes into de-duplicated notifications
- OrdersClient and PushClient are the two channels feeding the store
- SyncSession wires them together for one client session
"""

from order_sync.notification_store import NotificationStore
from order_sync.order_store import OrderListing, OrderStore
from order_sync.push_client import ConnectionState, PushClient
from order_sync.registry import SubscriberRegistry, Subscription
from order_sync.rest_client import (
    OrderApiError,
    OrderApiHttpError,
    OrderApiNetworkError,
    OrderApiResponseError,
    OrdersClient,
)
from order_sync.session import SyncSession

__all__ = [
    "NotificationStore",
    "OrderListing",
    "OrderStore",
    "ConnectionState",
    "PushClient",
    "SubscriberRegistry",
    "Subscription",
    "OrderApiError",
    "OrderApiHttpError",
    "OrderApiNetworkError",
    "OrderApiResponseError",
    "OrdersClient",
    "SyncSession",
]
