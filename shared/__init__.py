"""
Shared infrastructure for the order sync core.

This package contains code used by every sync component:
- Domain models (Order, Notification, OrderStatus, etc.)
- Payload normalization for every order ingress point
- Notification templates
- Runtime configuration
- Namespaced, versioned persisted state
"""

from shared.config import SyncConfig
from shared.models import (
    MergeResult,
    Notification,
    NotificationKind,
    Order,
    OrderItem,
    OrderStatus,
    OrderTotals,
    SessionIdentity,
    ShippingAddress,
)
from shared.normalize import MalformedOrderError, normalize_order
from shared.persistence import JsonFileStorage, MemoryStorage, PersistedState

__all__ = [
    "SyncConfig",
    "MergeResult",
    "Notification",
    "NotificationKind",
    "Order",
    "OrderItem",
    "OrderStatus",
    "OrderTotals",
    "SessionIdentity",
    "ShippingAddress",
    "MalformedOrderError",
    "normalize_order",
    "JsonFileStorage",
    "MemoryStorage",
    "PersistedState",
]
