"""
Tests for notification templates.

These tests verify that templates render correctly with variable substitution.
"""

from shared.models import OrderStatus
from shared.templates import (
    GENERIC_TEMPLATE,
    STATUS_TEMPLATES,
    NotificationTemplate,
    get_template,
    order_link,
    render_created_notification,
    render_status_notification,
)


class TestNotificationTemplate:
    """Tests for NotificationTemplate class."""

    def test_render(self):
        """Test rendering a template with variables."""
        template = NotificationTemplate(
            title="Order {status}",
            message="Order #{order_number} is {status}.",
        )

        title, message = template.render(order_number="ORD-1", status="Shipped")

        assert title == "Order Shipped"
        assert message == "Order #ORD-1 is Shipped."


class TestTemplateRegistry:
    """Tests for template lookup."""

    def test_every_status_has_a_template(self):
        for status in OrderStatus:
            assert status in STATUS_TEMPLATES

    def test_lookup_is_spelling_insensitive(self):
        assert get_template("out_for_delivery") is STATUS_TEMPLATES[OrderStatus.OUT_FOR_DELIVERY]

    def test_unknown_status_uses_generic(self):
        assert get_template("OnHold") is GENERIC_TEMPLATE
        assert get_template(None) is GENERIC_TEMPLATE


class TestRenderStatusNotification:
    """Tests for render_status_notification()."""

    def test_known_status(self):
        title, message = render_status_notification("ORD-1", "Shipped")
        assert title == "Order Shipped"
        assert "#ORD-1" in message
        assert "shipped" in message

    def test_includes_transition(self):
        """Test that the message ends with the old -> new transition."""
        _, message = render_status_notification("ORD-500", "Processing", previous_status="Pending")
        assert message.endswith("(Pending → Processing)")

    def test_unknown_status_generic_wording(self):
        """Test that an unknown status never fails, it falls back to generic wording."""
        title, message = render_status_notification("ORD-1", "OnHold")
        assert title == "Order Updated"
        assert message == "The status of your order #ORD-1 has been updated to OnHold."

    def test_missing_status(self):
        title, message = render_status_notification("ORD-1", None)
        assert title == "Order Updated"
        assert "unknown" in message


class TestOtherRenderers:
    def test_created(self):
        title, message = render_created_notification("ORD-9", "Pending")
        assert title == "New Order"
        assert "#ORD-9" in message

    def test_order_link(self):
        assert order_link("ORD-9") == "/profile?tab=orders&order=ORD-9"
