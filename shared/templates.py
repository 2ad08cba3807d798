"""
Notification message templates.

This module provides the wording for every user-facing order notification.
Templates support variable substitution using Python's string formatting.

Design decisions:
- Templates are stored as simple strings with {variable} placeholders
- One template per known order status, plus a generic fallback
- Rendering never raises: unknown statuses and missing variables fall back
  to the generic "order updated" wording
"""

import logging
from dataclasses import dataclass
from typing import Optional

from shared.models import OrderStatus

logger = logging.getLogger("templates")


@dataclass
class NotificationTemplate:
    """
    A notification template with a short title and a longer message.
    """
    title: str
    message: str

    def render(self, **kwargs) -> tuple[str, str]:
        """
        Render the template with provided variables.

        Returns:
            Tuple of (title, message)
        """
        return (
            self.title.format(**kwargs),
            self.message.format(**kwargs),
        )


# =============================================================================
# Template Definitions
# =============================================================================

STATUS_TEMPLATES: dict[OrderStatus, NotificationTemplate] = {
    OrderStatus.PENDING: NotificationTemplate(
        title="Order {status}",
        message="Your order #{order_number} has been received and is awaiting processing.",
    ),
    OrderStatus.PROCESSING: NotificationTemplate(
        title="Order {status}",
        message="Your order #{order_number} is now being processed and prepared for shipping.",
    ),
    OrderStatus.SHIPPED: NotificationTemplate(
        title="Order {status}",
        message="Great news! Your order #{order_number} has been shipped and is on its way.",
    ),
    OrderStatus.OUT_FOR_DELIVERY: NotificationTemplate(
        title="Order Out for Delivery",
        message="Your order #{order_number} is out for delivery and should arrive today.",
    ),
    OrderStatus.DELIVERED: NotificationTemplate(
        title="Order {status}",
        message="Your order #{order_number} has been delivered! Thank you for shopping with us.",
    ),
    OrderStatus.CANCELLED: NotificationTemplate(
        title="Order {status}",
        message=(
            "Your order #{order_number} has been cancelled. "
            "Please contact customer support for more information."
        ),
    ),
    OrderStatus.REFUNDED: NotificationTemplate(
        title="Order {status}",
        message="Your order #{order_number} has been refunded.",
    ),
}

GENERIC_TEMPLATE = NotificationTemplate(
    title="Order Updated",
    message="The status of your order #{order_number} has been updated to {status}.",
)

CREATED_TEMPLATE = NotificationTemplate(
    title="New Order",
    message="New order #{order_number} received ({status}).",
)

TRANSITION_SUFFIX = " ({previous_status} → {status})"


# =============================================================================
# Template Access Functions
# =============================================================================

def get_template(status: Optional[str]) -> NotificationTemplate:
    """Get the template for a status, or the generic one when unknown."""
    known = OrderStatus.parse(status)
    if known is None:
        return GENERIC_TEMPLATE
    return STATUS_TEMPLATES[known]


def render_status_notification(
    order_number: str,
    status: Optional[str],
    previous_status: Optional[str] = None,
) -> tuple[str, str]:
    """
    Render the title and message for a status change.

    When the previous status is known the message ends with the transition,
    e.g. "(Pending → Processing)".
    """
    context = {
        "order_number": order_number,
        "status": status or "unknown",
        "previous_status": previous_status or "",
    }
    try:
        title, message = get_template(status).render(**context)
    except (KeyError, IndexError, ValueError) as e:
        logger.warning(f"Template rendering failed for status {status!r}: {e}")
        title, message = GENERIC_TEMPLATE.render(**context)
    if previous_status:
        message += TRANSITION_SUFFIX.format(**context)
    return title, message


def render_created_notification(order_number: str, status: Optional[str]) -> tuple[str, str]:
    """Render the title and message announcing a newly seen order."""
    return CREATED_TEMPLATE.render(order_number=order_number, status=status or "Pending")


def order_link(order_number: str) -> str:
    """Account-page link that opens the given order."""
    return f"/profile?tab=orders&order={order_number}"
