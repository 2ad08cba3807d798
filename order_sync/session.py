"""
Session lifecycle: wires the sync core together for one signed-in client.

Every collaborator is constructed here and injected into the others, so a
test (or a second session) gets fully isolated instances rather than sharing
ambient module state.

Lifecycle:
    session = SyncSession(config, identity)
    await session.start()       # restore, subscribe, connect, initial refresh
    ...
    await session.close()       # or close(logout=True) to forget everything
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

import httpx

from order_sync.notification_store import NotificationStore
from order_sync.order_store import OrderStore
from order_sync.push_client import PushClient
from order_sync.registry import OrderListener, OrderPredicate, SubscriberRegistry, Unsubscribe
from order_sync.rest_client import OrderApiError, OrdersClient
from shared.config import SyncConfig
from shared.models import Order, SessionIdentity
from shared.persistence import JsonFileStorage, MemoryStorage, PersistedState

logger = logging.getLogger("sync_session")


class SyncSession:
    """
    One client session's order cache, notifications and sync channels.

    Attributes:
        registry: Subscriber registry every UI surface subscribes through
        orders: The order cache
        notifications: Notifications derived from cache changes
        rest: REST fetch layer
        push: Push event client
    """

    def __init__(
        self,
        config: Optional[SyncConfig] = None,
        identity: Optional[SessionIdentity] = None,
        storage: Any = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sio_factory: Optional[Callable[[], Any]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Build every collaborator for the session.

        Args:
            config: Runtime configuration (defaults to SyncConfig())
            identity: Who the session belongs to (defaults to a guest)
            storage: Storage backend; defaults to a JSON file under
                config.storage_path, or memory when no path is configured
            transport: httpx transport override for the REST client
            sio_factory: Socket.IO client factory override for the push client
            sleep: Awaitable used for reconnect backoff
        """
        self.config = config or SyncConfig()
        self.identity = identity or SessionIdentity()

        if storage is None:
            if self.config.storage_path is not None:
                storage = JsonFileStorage(self.config.storage_path)
            else:
                storage = MemoryStorage()
        self.state = PersistedState(storage, namespace=self.config.storage_namespace)

        self.registry = SubscriberRegistry()
        self.orders = OrderStore(
            registry=self.registry,
            state=self.state,
            max_stored_orders=self.config.max_stored_orders,
        )
        self.notifications = NotificationStore(
            state=self.state,
            max_stored_notifications=self.config.max_stored_notifications,
            notify_on_create=self.identity.is_admin,
        )
        self.rest = OrdersClient(
            self.orders,
            self.config,
            token=self.identity.token,
            transport=transport,
            owner_ref=self.identity.user_id,
        )
        self.push = PushClient(
            self.orders,
            self.identity,
            self.config,
            notifications=self.notifications,
            sio_factory=sio_factory,
            sleep=sleep,
        )

        self.started = False
        self.last_refresh_at: Optional[datetime] = None
        self.last_refresh_error: Optional[str] = None
        self._remove_reconnect_listener: Optional[Callable[[], bool]] = None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """
        Bring the session up.

        Neither an unreachable push server nor a failed initial refresh is
        fatal: the session then serves whatever was restored from storage.
        """
        if self.started:
            logger.warning("Session already started")
            return

        repaired = self.orders.restore()
        if repaired:
            logger.info(f"Repaired owner references on {repaired} persisted orders")
        self.notifications.restore()
        self.notifications.start(self.registry)
        self._remove_reconnect_listener = self.push.add_reconnect_listener(self._on_reconnect)
        self.started = True
        logger.info(f"Session {self.identity.session_id} started ({self.identity.role})")

        if not await self.push.connect():
            logger.warning("Push channel unavailable, continuing with cached orders and REST refreshes")

        if self.identity.user_id or self.identity.is_admin:
            try:
                await self.refresh()
            except OrderApiError:
                # Already logged by refresh(); the restored cache stays in use
                pass

    async def close(self, logout: bool = False) -> None:
        """
        Tear the session down.

        Args:
            logout: Also forget cached orders, notifications and the persisted blob
        """
        if self._remove_reconnect_listener is not None:
            self._remove_reconnect_listener()
            self._remove_reconnect_listener = None
        await self.push.disconnect()
        self.notifications.stop()
        await self.rest.aclose()

        if logout:
            self.orders.clear()
            self.notifications.reset()
            self.state.clear()
            logger.info(f"Session {self.identity.session_id} logged out, local state cleared")
        self.started = False
        logger.info(f"Session {self.identity.session_id} closed")

    # =========================================================================
    # Operations
    # =========================================================================

    async def refresh(self, force: bool = True) -> list[Order]:
        """
        Re-fetch orders over REST: the whole feed for admins, otherwise the
        user's own orders.

        Raises:
            OrderApiError: The refresh failed; the cache is unchanged
        """
        try:
            if self.identity.is_admin:
                orders = await self.rest.fetch_all_orders()
            else:
                orders = await self.rest.fetch_my_orders(force_refresh=force)
        except OrderApiError as e:
            self.last_refresh_error = str(e)
            logger.warning(f"Order refresh failed, serving cached orders: {e}")
            raise
        self.last_refresh_at = datetime.now(timezone.utc)
        self.last_refresh_error = None
        return orders

    async def _on_reconnect(self) -> None:
        logger.info("Push connection restored, refreshing orders to cover missed events")
        try:
            await self.refresh(force=True)
        except OrderApiError:
            pass

    async def update_status(self, identifier: str, status: str) -> Order:
        """
        Change an order's status from an admin surface and broadcast it.

        Raises:
            OrderApiError: The server rejected or never received the change
        """
        cached = self.orders.resolve(identifier)
        previous_status = cached.status if cached is not None else None
        order = await self.rest.update_order_status(identifier, status)
        await self.push.emit_status_change(order, previous_status)
        return order

    def subscribe(
        self,
        callback: OrderListener,
        predicate: Optional[OrderPredicate] = None,
    ) -> Unsubscribe:
        """Shortcut for registry.subscribe()."""
        return self.registry.subscribe(callback, predicate)

    def my_orders(self) -> list[Order]:
        """Cached orders belonging to the session's user, newest first."""
        if self.identity.is_admin:
            return list(self.orders.list())
        return list(self.orders.list(owner_ref=self.identity.user_id))
