"""
Subscriber registry for order cache mutations.

This module provides the pub/sub layer that lets independent UI surfaces
(navigation badge, account page, admin panel) react to order changes without
knowing about each other or about where the change came from.

Design decisions:
- Synchronous delivery: dispatch runs inside the merge that caused it
- Listeners live in an arena (dict keyed by an increasing handle), so removal
  is O(1) and registration order is preserved
- Dispatch iterates over a snapshot, and skips listeners removed mid-dispatch
- A listener that raises is logged and does not stop the others
- No persistence: registrations are ephemeral per session
"""

import itertools
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from shared.models import Order

logger = logging.getLogger("subscriber_registry")


# Type aliases for listener functions
OrderListener = Callable[[Order], None]
OrderPredicate = Callable[[Order], bool]
Unsubscribe = Callable[[], bool]


@dataclass(frozen=True)
class Subscription:
    """
    An opaque registration: a callback plus the handle used to remove it.
    """
    handle: int
    callback: OrderListener
    predicate: Optional[OrderPredicate] = None

    def matches(self, order: Order) -> bool:
        """Absence of a predicate matches every order."""
        return self.predicate is None or bool(self.predicate(order))


class SubscriberRegistry:
    """
    Fan-out of merged orders to registered listeners.

    Example usage:
        registry = SubscriberRegistry()

        unsubscribe = registry.subscribe(
            lambda order: print(order.status),
            predicate=lambda order: order.owner_ref == "user-1",
        )
        registry.publish(order)
        unsubscribe()
    """

    def __init__(self):
        self._subscriptions: dict[int, Subscription] = {}
        self._handles = itertools.count(1)

    def subscribe(
        self,
        callback: OrderListener,
        predicate: Optional[OrderPredicate] = None,
    ) -> Unsubscribe:
        """
        Register a listener for order mutations.

        Args:
            callback: Called with the merged Order
            predicate: Optional filter; the callback only fires for orders it accepts

        Returns:
            A function that removes the registration. Calling it more than
            once is harmless; it returns True only the first time.
        """
        if not callable(callback):
            raise TypeError(f"Listener must be callable, got {type(callback).__name__}")

        handle = next(self._handles)
        self._subscriptions[handle] = Subscription(handle, callback, predicate)
        logger.debug(f"Added listener #{handle} ({len(self._subscriptions)} registered)")

        def unsubscribe() -> bool:
            return self.remove(handle)

        return unsubscribe

    def remove(self, handle: int) -> bool:
        """Remove a registration by handle. Returns False if it was already gone."""
        if self._subscriptions.pop(handle, None) is None:
            return False
        logger.debug(f"Removed listener #{handle} ({len(self._subscriptions)} remaining)")
        return True

    def publish(self, order: Order) -> int:
        """
        Deliver a merged order to every matching listener.

        Returns:
            Number of listeners invoked
        """
        invoked = 0
        for subscription in list(self._subscriptions.values()):
            # Removed by an earlier listener during this dispatch
            if subscription.handle not in self._subscriptions:
                continue
            try:
                if not subscription.matches(order):
                    continue
                invoked += 1
                subscription.callback(order)
            except Exception as e:
                logger.error(
                    f"Listener #{subscription.handle} raised for order {order.order_number}: {e}"
                )

        logger.debug(f"Dispatched {order.order_number} ({order.status}) to {invoked} listeners")
        return invoked

    def clear(self) -> None:
        """Remove every registration."""
        self._subscriptions.clear()

    def __len__(self) -> int:
        return len(self._subscriptions)
