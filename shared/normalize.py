"""
Payload normalization for every order ingress point.

The storefront backend has grown several write paths over time and they do
not agree on field names: the owner of an order shows up as `user`, `userId`,
`owner` or a nested user object; the server id as `_id` or `id`; totals
either nested or flat on the order. This module is the single place where
those spellings are reconciled into the canonical Order model.

Every path into the cache goes through normalize_order():
- optimistic inserts made at checkout
- REST responses
- push events
- records restored from persisted state
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import ValidationError

from shared.models import Order, OrderItem, OrderStatus, OrderTotals, ShippingAddress

logger = logging.getLogger("normalize")


# Historical spellings of the same concept, in order of preference
OWNER_FIELDS = ("ownerRef", "owner_ref", "userId", "user_id", "user", "owner", "customerId")
ID_FIELDS = ("_id", "id")
TEMP_ID_FIELDS = ("clientTempId", "client_temp_id", "tempId")
ORDER_NUMBER_FIELDS = ("orderNumber", "order_number")
TRACKING_FIELDS = ("trackingNumber", "tracking_number")

# Inline images above this size are not worth persisting
MAX_INLINE_IMAGE_LENGTH = 10_000


class MalformedOrderError(ValueError):
    """Raised when a payload cannot be turned into an Order."""


# =============================================================================
# Field helpers
# =============================================================================

def _first(raw: dict, names: tuple[str, ...]) -> Any:
    """Return the first non-empty value among alternative field names."""
    for name in names:
        value = raw.get(name)
        if value not in (None, ""):
            return value
    return None


def _as_id(value: Any) -> Optional[str]:
    """Reduce a reference (string, number, or nested object) to its id string."""
    if value in (None, ""):
        return None
    if isinstance(value, dict):
        return _as_id(value.get("_id") or value.get("id"))
    return str(value)


def _as_float(value: Any, default: float = 0.0) -> float:
    if value in (None, ""):
        return default
    try:
        return float(str(value).replace(",", "").lstrip("$"))
    except ValueError:
        return default


def _as_int(value: Any, default: int = 0) -> int:
    if value in (None, ""):
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 string or epoch number into an aware UTC datetime.

    Epoch numbers above 10^11 are treated as milliseconds. Unparseable or
    out-of-range values return None rather than raising.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        try:
            dt = datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    try:
        return dt.astimezone(timezone.utc)
    except OverflowError:
        return None


def to_version(dt: Optional[datetime]) -> int:
    """Convert a timestamp into the integer version used by merges."""
    if dt is None:
        return 0
    return int(dt.timestamp() * 1000)


def normalize_owner_ref(raw: dict) -> Optional[str]:
    """
    Resolve the owning user id from any of its historical spellings.

    Returns None for guest orders.
    """
    for name in OWNER_FIELDS:
        owner = _as_id(raw.get(name))
        if owner:
            return owner
    return None


# =============================================================================
# Nested structures
# =============================================================================

def _normalize_item(raw: Any) -> OrderItem:
    if not isinstance(raw, dict):
        return OrderItem(name=str(raw))
    variant = raw.get("variant") if isinstance(raw.get("variant"), dict) else {}
    return OrderItem(
        product_id=_as_id(raw.get("productId") or raw.get("product_id") or raw.get("product")),
        name=str(raw.get("name") or ""),
        price=max(_as_float(raw.get("price")), 0.0),
        quantity=max(_as_int(raw.get("quantity"), default=1), 0),
        image=raw.get("image") or None,
        size=raw.get("size") or variant.get("size") or None,
        color=raw.get("color") or variant.get("color") or None,
    )


def _normalize_address(raw: Any) -> Optional[ShippingAddress]:
    if not isinstance(raw, dict):
        return None
    name = raw.get("name")
    if not name:
        name = f"{raw.get('firstName', '')} {raw.get('lastName', '')}".strip()
    return ShippingAddress(
        name=str(name or ""),
        street=str(raw.get("street") or raw.get("address1") or raw.get("address") or ""),
        city=str(raw.get("city") or ""),
        state=str(raw.get("state") or ""),
        zip=str(raw.get("zip") or raw.get("zipCode") or raw.get("postalCode") or ""),
        country=str(raw.get("country") or ""),
        phone=str(raw.get("phone") or ""),
    )


def _normalize_totals(raw: dict) -> OrderTotals:
    # Newer payloads nest totals; older ones put them on the order itself
    source = raw.get("totals") if isinstance(raw.get("totals"), dict) else raw
    return OrderTotals(
        subtotal=_as_float(source.get("subtotal")),
        tax=_as_float(source.get("tax")),
        shipping=_as_float(source.get("shipping") or source.get("shippingCost")),
        discount=_as_float(source.get("discount")),
        total_amount=_as_float(
            source.get("totalAmount") or source.get("total_amount") or source.get("total")
        ),
    )


# =============================================================================
# Order normalization
# =============================================================================

def normalize_order(raw: Any) -> Order:
    """
    Convert a raw order payload into the canonical Order shape.

    Already-normalized Order instances pass through with their owner
    reference intact. Missing optional fields take defaults; numeric and date
    fields are coerced.

    Raises:
        MalformedOrderError: If the payload is not a mapping, has no order
            number, or cannot be validated.
    """
    if isinstance(raw, Order):
        return raw
    if not isinstance(raw, dict):
        raise MalformedOrderError(f"Order payload must be an object, got {type(raw).__name__}")

    order_number = _first(raw, ORDER_NUMBER_FIELDS)
    if not order_number:
        raise MalformedOrderError("Order payload is missing orderNumber")

    created_at = parse_timestamp(raw.get("createdAt") or raw.get("created_at"))
    updated_at = parse_timestamp(raw.get("updatedAt") or raw.get("updated_at"))

    explicit_version = raw.get("version")
    if explicit_version not in (None, ""):
        version = max(_as_int(explicit_version), 0)
    else:
        version = max(to_version(updated_at), to_version(created_at))

    status = raw.get("status") or "Pending"
    if isinstance(status, str) and OrderStatus.parse(status) is None:
        logger.warning(f"Order {order_number} has unrecognized status '{status}', keeping it verbatim")

    items = raw.get("items")
    if not isinstance(items, list):
        items = raw.get("products") if isinstance(raw.get("products"), list) else []

    try:
        return Order(
            id=_as_id(_first(raw, ID_FIELDS)),
            client_temp_id=_as_id(_first(raw, TEMP_ID_FIELDS)),
            order_number=str(order_number),
            tracking_number=_as_id(_first(raw, TRACKING_FIELDS)),
            status=status,
            owner_ref=normalize_owner_ref(raw),
            customer_email=raw.get("customerEmail") or raw.get("customer_email") or None,
            customer_name=raw.get("customerName") or raw.get("customer_name") or None,
            items=[_normalize_item(item) for item in items],
            shipping_address=_normalize_address(
                raw.get("shippingAddress") or raw.get("shipping_address")
            ),
            totals=_normalize_totals(raw),
            payment_method=raw.get("paymentMethod") or raw.get("payment_method") or None,
            created_at=created_at,
            updated_at=updated_at,
            version=version,
        )
    except ValidationError as e:
        raise MalformedOrderError(f"Invalid order {order_number}: {e}") from e


def try_normalize_order(raw: Any, source: str) -> Optional[Order]:
    """
    Normalize a payload, logging and dropping it when malformed.

    Used by ingress points that must never fail on bad input.
    """
    try:
        return normalize_order(raw)
    except MalformedOrderError as e:
        logger.warning(f"Dropping malformed order from {source}: {e}")
        return None


def prepare_for_storage(order: Order) -> Order:
    """
    Strip bulky inline image data from an order before it is persisted.

    The in-memory record is left untouched; only the persisted copy is
    slimmed down.
    """
    needs_trim = any(
        item.image and item.image.startswith("data:") and len(item.image) > MAX_INLINE_IMAGE_LENGTH
        for item in order.items
    )
    if not needs_trim:
        return order
    items = [
        item.model_copy(update={"image": None})
        if item.image and item.image.startswith("data:") and len(item.image) > MAX_INLINE_IMAGE_LENGTH
        else item
        for item in order.items
    ]
    return order.model_copy(update={"items": items})


def order_to_wire(order: Order) -> dict:
    """Serialize an order into the camelCase shape the API expects."""
    return {
        "orderNumber": order.order_number,
        "clientTempId": order.client_temp_id,
        "user": order.owner_ref,
        "status": order.status,
        "customerEmail": order.customer_email,
        "customerName": order.customer_name,
        "items": [
            {
                "productId": item.product_id,
                "name": item.name,
                "price": item.price,
                "quantity": item.quantity,
                "image": item.image,
                "size": item.size,
                "color": item.color,
            }
            for item in order.items
        ],
        "shippingAddress": order.shipping_address.model_dump() if order.shipping_address else None,
        "paymentMethod": order.payment_method,
        "subtotal": order.totals.subtotal,
        "tax": order.totals.tax,
        "shipping": order.totals.shipping,
        "discount": order.totals.discount,
        "totalAmount": order.totals.total_amount,
    }
