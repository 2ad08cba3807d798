"""
Notification store: de-duplicated, read-tracked order notifications.

This store listens to merged orders through the subscriber registry and turns
status changes into discrete, user-facing notifications. It owns read/unread
state for the navigation badge and the notification list.

Design decisions:
- Subscribes to the registry, never gets called by the order store directly
- Tracks the last status notified for each order number
- At most one notification per (order number, status), ever: dismissing a
  notification does not forget that it was sent, so a duplicated push event
  cannot bring it back
- The first time an order is seen its status is only recorded as a baseline,
  unless `notify_on_create` is set (admin feeds want "new order" alerts)
- Synthesis never raises; unknown statuses get the generic wording

Key behaviours:
- A merge that changes only non-status fields produces no notification
- Stale pushes never reach this store, because stale merges report no change
"""

import logging
from typing import Any, Optional

from pydantic import ValidationError

from order_sync.registry import SubscriberRegistry, Unsubscribe
from shared.models import Notification, NotificationKind, Order
from shared.persistence import PersistedState
from shared.templates import (
    order_link,
    render_created_notification,
    render_status_notification,
)

logger = logging.getLogger("notification_store")


SECTION = "notifications"


class NotificationStore:
    """
    Order notifications derived from cache mutations.

    Example:
        notifications = NotificationStore()
        notifications.start(registry)

        # Every merge that changes an order's status now appends a notification
        store.merge(order)
        notifications.unread_count   # -> 1
    """

    def __init__(
        self,
        state: Optional[PersistedState] = None,
        max_stored_notifications: int = 50,
        notify_on_create: bool = False,
    ):
        """
        Initialize the notification store.

        Args:
            state: Persisted state to write through to (None keeps notifications in memory only)
            max_stored_notifications: Most recent notifications kept in persisted state
            notify_on_create: Emit a "created" notification the first time an order is seen
        """
        self.state = state
        self.max_stored_notifications = max_stored_notifications
        self.notify_on_create = notify_on_create

        # Newest first
        self._notifications: list[Notification] = []
        self._last_notified: dict[str, str] = {}
        self._notified_keys: set[tuple[str, str]] = set()

        self._unsubscribe: Optional[Unsubscribe] = None

    def start(self, registry: SubscriberRegistry) -> None:
        """
        Start receiving merged orders from the registry.
        """
        if self._unsubscribe is not None:
            logger.warning("NotificationStore already started")
            return
        self._unsubscribe = registry.subscribe(self.handle_order)
        logger.info("NotificationStore started - subscribed to order updates")

    def stop(self) -> None:
        """Stop receiving merged orders."""
        if self._unsubscribe is None:
            return
        self._unsubscribe()
        self._unsubscribe = None
        logger.info("NotificationStore stopped")

    # =========================================================================
    # Reads
    # =========================================================================

    @property
    def notifications(self) -> list[Notification]:
        """All notifications, newest first."""
        return list(self._notifications)

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self._notifications if not n.read)

    def get(self, notification_id: str) -> Optional[Notification]:
        for notification in self._notifications:
            if notification.id == notification_id:
                return notification
        return None

    def last_notified_status(self, order_number: str) -> Optional[str]:
        """The last status recorded for an order, or None if never seen."""
        return self._last_notified.get(order_number)

    # =========================================================================
    # Order updates
    # =========================================================================

    def handle_order(self, order: Order) -> Optional[Notification]:
        """
        React to a merged order.

        Returns:
            The notification that was created, or None
        """
        try:
            return self._synthesize(order)
        except Exception as e:
            logger.error(f"Failed to synthesize notification for {order.order_number}: {e}")
            return None

    def _synthesize(self, order: Order) -> Optional[Notification]:
        order_number = order.order_number
        status = order.status
        last = self._last_notified.get(order_number)

        if last is None:
            self._last_notified[order_number] = status
            if not self.notify_on_create:
                logger.debug(f"Baseline status for {order_number}: {status}")
                self._persist()
                return None
            title, message = render_created_notification(order_number, status)
            return self._append(order, title, message, NotificationKind.CREATED, previous_status=None)

        if status == last:
            return None

        self._last_notified[order_number] = status
        if (order_number, status) in self._notified_keys:
            logger.info(f"Notification for {order_number} -> {status} already sent, skipping")
            self._persist()
            return None

        title, message = render_status_notification(order_number, status, previous_status=last)
        return self._append(order, title, message, NotificationKind.STATUS_CHANGE, previous_status=last)

    def _append(
        self,
        order: Order,
        title: str,
        message: str,
        kind: NotificationKind,
        previous_status: Optional[str],
    ) -> Notification:
        notification = Notification(
            order_id=order.id or order.order_number,
            order_number=order.order_number,
            status=order.status,
            previous_status=previous_status,
            kind=kind,
            title=title,
            message=message,
            link=order_link(order.order_number),
        )
        self._add(notification)
        return notification

    def _add(self, notification: Notification) -> None:
        self._notifications.insert(0, notification)
        self._notified_keys.add(notification.dedup_key)
        logger.info(f"Added notification {notification.kind} for {notification.order_number}: {notification.title}")
        self._persist()

    def ingest_server_notification(self, payload: Any) -> Optional[Notification]:
        """
        Add a notification built by the server and delivered over the push channel.

        Expected payload:
            {"title": ..., "message": ..., "link": ...,
             "orderData": {"orderId": ..., "orderNumber": ..., "status": ...}}

        It is de-duplicated against locally synthesized notifications by
        (order number, status). Payloads without an order number are dropped.
        """
        if not isinstance(payload, dict):
            logger.warning(f"Dropping server notification: expected an object, got {type(payload).__name__}")
            return None
        order_data = payload.get("orderData") if isinstance(payload.get("orderData"), dict) else {}
        order_number = order_data.get("orderNumber") or payload.get("orderNumber")
        if not order_number:
            logger.warning("Dropping server notification without an order number")
            return None

        status = order_data.get("status") or payload.get("status")
        order_number = str(order_number)
        if status and (order_number, status) in self._notified_keys:
            logger.info(f"Server notification for {order_number} -> {status} already present, skipping")
            return None

        title, message = render_status_notification(order_number, status)
        try:
            notification = Notification(
                order_id=order_data.get("orderId") or order_number,
                order_number=order_number,
                status=status,
                previous_status=self._last_notified.get(order_number),
                kind=NotificationKind.SERVER,
                title=payload.get("title") or title,
                message=payload.get("message") or message,
                link=payload.get("link") or order_link(order_number),
            )
        except ValidationError as e:
            logger.warning(f"Dropping invalid server notification for {order_number}: {e}")
            return None

        if status:
            self._last_notified[order_number] = status
        self._add(notification)
        return notification

    # =========================================================================
    # Read state
    # =========================================================================

    def mark_as_read(self, notification_id: str) -> bool:
        """Mark one notification as read. Returns False if it does not exist."""
        for index, notification in enumerate(self._notifications):
            if notification.id == notification_id:
                if not notification.read:
                    self._notifications[index] = notification.model_copy(update={"read": True})
                    self._persist()
                return True
        return False

    def mark_all_as_read(self) -> int:
        """Mark every notification as read. Returns how many were unread."""
        unread = self.unread_count
        if unread:
            self._notifications = [
                n if n.read else n.model_copy(update={"read": True})
                for n in self._notifications
            ]
            self._persist()
        return unread

    def remove_notification(self, notification_id: str) -> bool:
        """
        Dismiss one notification.

        The (order, status) key stays recorded, so the same event arriving
        again does not recreate it.
        """
        remaining = [n for n in self._notifications if n.id != notification_id]
        if len(remaining) == len(self._notifications):
            return False
        self._notifications = remaining
        self._persist()
        return True

    def clear_all(self) -> None:
        """Dismiss every notification, keeping de-duplication state."""
        logger.info(f"Clearing {len(self._notifications)} notifications")
        self._notifications = []
        self._persist()

    def reset(self) -> None:
        """Forget notifications and de-duplication state (session teardown)."""
        self._notifications = []
        self._last_notified.clear()
        self._notified_keys.clear()
        if self.state is not None:
            self.state.write_section(SECTION, None)

    # =========================================================================
    # Persistence
    # =========================================================================

    def restore(self) -> int:
        """
        Load persisted notifications and de-duplication state.

        Returns:
            Number of notifications restored
        """
        if self.state is None:
            return 0
        section = self.state.read_section(SECTION)
        if not isinstance(section, dict):
            return 0

        restored = []
        for raw in section.get("items") or []:
            try:
                restored.append(Notification.model_validate(raw))
            except ValidationError as e:
                logger.warning(f"Skipping unreadable persisted notification: {e}")
        self._notifications = restored
        self._last_notified = {
            str(k): str(v) for k, v in (section.get("last_notified") or {}).items()
        }
        self._notified_keys = {
            (str(pair[0]), str(pair[1]))
            for pair in section.get("notified_keys") or []
            if isinstance(pair, (list, tuple)) and len(pair) == 2
        }
        self._notified_keys.update(n.dedup_key for n in restored)
        logger.info(f"Restored {len(restored)} notifications")
        return len(restored)

    def _persist(self) -> None:
        if self.state is None:
            return
        self.state.write_section(SECTION, {
            "items": [
                n.model_dump(mode="json")
                for n in self._notifications[: self.max_stored_notifications]
            ],
            "last_notified": dict(self._last_notified),
            "notified_keys": sorted([list(key) for key in self._notified_keys]),
        })
