"""
Domain models for the order synchronization core.

These models describe the canonical shape every order representation is
converted into, whether it was written optimistically at checkout, fetched
over REST, or pushed by the server after a status change.

Design decisions:
- Using Pydantic for validation and serialization
- Status is kept as a plain string so that values the client does not know
  about are still representable; OrderStatus.parse() recognizes the known ones
- `version` is a logical timestamp (epoch milliseconds) used to resolve merges
- `order_number` is the identity shared by every representation of an order
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Enums - Status values used across the domain
# =============================================================================

class OrderStatus(str, Enum):
    """
    Order lifecycle states, as the backend of record spells them.
    """
    PENDING = "Pending"                   # Order placed, awaiting processing
    PROCESSING = "Processing"             # Order is being prepared
    SHIPPED = "Shipped"                   # Handed over to the carrier
    OUT_FOR_DELIVERY = "OutForDelivery"   # On the last leg
    DELIVERED = "Delivered"               # Received by the customer
    CANCELLED = "Cancelled"
    REFUNDED = "Refunded"

    @classmethod
    def parse(cls, value) -> Optional["OrderStatus"]:
        """
        Recognize a status regardless of casing or separators.

        "shipped", "SHIPPED", "out_for_delivery" and "Out for delivery" all
        resolve; anything else returns None.
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        key = re.sub(r"[^a-z]", "", value.lower())
        return _STATUS_LOOKUP.get(key)


_STATUS_LOOKUP = {status.value.lower(): status for status in OrderStatus}


# Documentation-level transition table. The server is authoritative, so an
# unlisted transition is logged, never rejected.
STATUS_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED}),
    OrderStatus.OUT_FOR_DELIVERY: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.CANCELLED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.REFUNDED: frozenset(),
}


def is_expected_transition(old: Optional[str], new: Optional[str]) -> bool:
    """
    Check a status change against the transition table.

    Staying in the same status is always expected. Unknown statuses on either
    side are never expected.
    """
    old_status = OrderStatus.parse(old)
    new_status = OrderStatus.parse(new)
    if old_status is None or new_status is None:
        return False
    if old_status == new_status:
        return True
    return new_status in STATUS_TRANSITIONS[old_status]


class NotificationKind(str, Enum):
    """Why a notification was created."""
    STATUS_CHANGE = "status_change"
    CREATED = "created"
    SERVER = "server"   # Built by the server and delivered over the push channel


# =============================================================================
# Order
# =============================================================================

class OrderItem(BaseModel):
    """A single purchased product within an order."""
    product_id: Optional[str] = Field(default=None, description="Reference to product")
    name: str = Field(default="", description="Product name at time of order")
    price: float = Field(default=0.0, ge=0, description="Unit price at time of order")
    quantity: int = Field(default=1, ge=0, description="Quantity ordered")
    image: Optional[str] = Field(default=None)
    size: Optional[str] = Field(default=None)
    color: Optional[str] = Field(default=None)


class ShippingAddress(BaseModel):
    """Where the order is delivered."""
    name: str = ""
    street: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""
    country: str = ""
    phone: str = ""


class OrderTotals(BaseModel):
    """Monetary summary of an order."""
    subtotal: float = 0.0
    tax: float = 0.0
    shipping: float = 0.0
    discount: float = 0.0
    total_amount: float = 0.0


class Order(BaseModel):
    """
    One purchase transaction, in its canonical cached form.

    Instances are treated as immutable: the cache replaces whole records and
    never patches fields in place, so subscribers only ever see complete
    orders.
    """
    id: Optional[str] = Field(default=None, description="Server-assigned identifier")
    client_temp_id: Optional[str] = Field(
        default=None,
        description="Locally generated identifier used before confirmation",
    )
    order_number: str = Field(..., min_length=1, description="Human-readable identity")
    tracking_number: Optional[str] = Field(default=None)
    status: str = Field(default=OrderStatus.PENDING.value)
    owner_ref: Optional[str] = Field(
        default=None,
        description="Owning user id; None for guest orders",
    )
    customer_email: Optional[str] = Field(default=None)
    customer_name: Optional[str] = Field(default=None)
    items: list[OrderItem] = Field(default_factory=list)
    shipping_address: Optional[ShippingAddress] = Field(default=None)
    totals: OrderTotals = Field(default_factory=OrderTotals)
    payment_method: Optional[str] = Field(default=None)
    created_at: Optional[datetime] = Field(default=None)
    updated_at: Optional[datetime] = Field(default=None)
    version: int = Field(default=0, ge=0, description="Logical timestamp, epoch ms")

    model_config = ConfigDict(frozen=True)

    @field_validator("status", mode="before")
    @classmethod
    def _canonical_status(cls, value):
        status = OrderStatus.parse(value)
        if status is not None:
            return status.value
        return value

    @property
    def status_enum(self) -> Optional[OrderStatus]:
        """The recognized status, or None when the server sent something new."""
        return OrderStatus.parse(self.status)

    @property
    def known_ids(self) -> list[str]:
        """Every identifier this order can be looked up by."""
        ids = [self.order_number]
        for value in (self.id, self.client_temp_id, self.tracking_number):
            if value and value not in ids:
                ids.append(value)
        return ids

    @property
    def is_confirmed(self) -> bool:
        """Whether the server has assigned this order its permanent id."""
        return self.id is not None


# =============================================================================
# Notifications
# =============================================================================

class Notification(BaseModel):
    """
    A user-facing record of something that happened to an order.

    Notifications are append-only; only the `read` flag ever changes.
    """
    id: str = Field(default_factory=lambda: str(uuid4()))
    order_id: Optional[str] = Field(default=None, description="Server id when known")
    order_number: str = Field(..., description="Order this notification is about")
    status: Optional[str] = Field(default=None)
    previous_status: Optional[str] = Field(default=None)
    kind: NotificationKind = Field(default=NotificationKind.STATUS_CHANGE)
    title: str = Field(...)
    message: str = Field(...)
    link: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    read: bool = Field(default=False)

    model_config = ConfigDict(use_enum_values=True)

    @property
    def dedup_key(self) -> tuple[str, str]:
        """Identity used to keep one notification per order status."""
        return (self.order_number, self.status or "")


# =============================================================================
# Merge outcome
# =============================================================================

class MergeResult(BaseModel):
    """
    Outcome of reconciling an incoming order with the cache.

    `result` is always the record that is cached after the merge, which is
    the existing one when the incoming order was stale.
    """
    changed: bool
    result: Order
    inserted: bool = False


# =============================================================================
# Session identity
# =============================================================================

class SessionIdentity(BaseModel):
    """
    Who this client session belongs to.

    Sent to the push server at connect and registration time so that it can
    route user- and role-scoped events.
    """
    user_id: Optional[str] = Field(default=None, description="Signed-in user; None for guests")
    role: str = Field(default="customer", description="customer or admin")
    session_id: str = Field(default_factory=lambda: f"session-{uuid4().hex[:16]}")
    token: Optional[str] = Field(default=None, description="Bearer token for REST calls")

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
