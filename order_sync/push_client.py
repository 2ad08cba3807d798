"""
Push event client: keeps the order cache fresh without polling.

Holds a Socket.IO connection to the storefront backend for the lifetime of a
session. Order events are normalized and merged into the OrderStore; the
store and the subscriber registry take it from there.

Design decisions:
- Built-in Socket.IO reconnection is disabled; reconnects use an explicit
  bounded exponential backoff so that giving up is an observable state
- Missed events are NOT replayed after a reconnect. Reconnect listeners are
  fired instead, and the session answers with a REST refresh
- Malformed events are dropped with a warning and never reach the cache
- A failed registration handshake is logged, not fatal: the connection still
  receives broadcast events

Events handled:
- new-order / order-created      -> OrderStore.merge
- order-updated                  -> OrderStore.merge
- status-notification            -> NotificationStore.ingest_server_notification
"""

import asyncio
import inspect
import itertools
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union
from urllib.parse import urlencode

import socketio
from socketio.exceptions import ConnectionError as SocketConnectionError, SocketIOError

from order_sync.notification_store import NotificationStore
from order_sync.order_store import OrderStore
from shared.config import SyncConfig
from shared.models import Order, SessionIdentity
from shared.normalize import order_to_wire

logger = logging.getLogger("push_client")


# Inbound
NEW_ORDER = "new-order"
ORDER_CREATED = "order-created"
ORDER_UPDATED = "order-updated"
STATUS_NOTIFICATION = "status-notification"
# Outbound
REGISTER = "register"
STATUS_CHANGE = "status-change"

ORDER_EVENTS = (NEW_ORDER, ORDER_CREATED, ORDER_UPDATED)

CONNECT_ERRORS = (SocketConnectionError, OSError)


class ConnectionState(str, Enum):
    """Push connection state, as shown to observers."""
    IDLE = "idle"                   # Not started, or closed on purpose
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"   # Lost or failed, retrying with backoff
    DISCONNECTED = "disconnected"   # Retries exhausted; cache-only until restarted


StateListener = Callable[[ConnectionState], None]
ReconnectListener = Callable[[], Union[None, Awaitable[None]]]


class PushClient:
    """
    Socket.IO client feeding pushed orders into the cache.

    Example:
        push = PushClient(store, identity, config, notifications=notifications)
        push.add_reconnect_listener(lambda: client.fetch_my_orders(force_refresh=True))
        await push.connect()
        ...
        await push.disconnect()
    """

    def __init__(
        self,
        store: OrderStore,
        identity: SessionIdentity,
        config: Optional[SyncConfig] = None,
        notifications: Optional[NotificationStore] = None,
        sio_factory: Optional[Callable[[], Any]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the push client.

        Args:
            store: Order store every pushed order is merged into
            identity: Who is connecting (sent as query parameters and on registration)
            config: Socket URL, backoff and registration settings
            notifications: Receives server-built notifications, if given
            sio_factory: Builds the Socket.IO client (tests inject a fake)
            sleep: Awaitable used for backoff delays
        """
        self.store = store
        self.identity = identity
        self.config = config or SyncConfig()
        self.notifications = notifications
        self._sio_factory = sio_factory or _default_sio_factory
        self._sleep = sleep

        self.state = ConnectionState.IDLE
        self.registered = False
        self.last_error: Optional[str] = None
        self.reconnect_attempt = 0

        self._sio: Any = None
        self._closing = False
        self._reconnect_task: Optional[asyncio.Task] = None

        self._handles = itertools.count(1)
        self._state_listeners: dict[int, StateListener] = {}
        self._reconnect_listeners: dict[int, ReconnectListener] = {}

    # =========================================================================
    # Observers
    # =========================================================================

    def add_state_listener(self, callback: StateListener) -> Callable[[], bool]:
        """Be told about every connection state change. Returns an unsubscribe function."""
        handle = next(self._handles)
        self._state_listeners[handle] = callback
        return lambda: self._state_listeners.pop(handle, None) is not None

    def add_reconnect_listener(self, callback: ReconnectListener) -> Callable[[], bool]:
        """
        Be told after the connection was re-established following a drop.

        The callback may be a coroutine function; it is awaited. Returns an
        unsubscribe function.
        """
        handle = next(self._handles)
        self._reconnect_listeners[handle] = callback
        return lambda: self._reconnect_listeners.pop(handle, None) is not None

    @property
    def reconnect_task(self) -> Optional[asyncio.Task]:
        """The running reconnect loop, if the connection was lost."""
        return self._reconnect_task

    def _set_state(self, state: ConnectionState) -> None:
        if state == self.state:
            return
        logger.info(f"Push connection: {self.state.value} -> {state.value}")
        self.state = state
        for handle, listener in list(self._state_listeners.items()):
            if handle not in self._state_listeners:
                continue
            try:
                listener(state)
            except Exception as e:
                logger.error(f"State listener #{handle} raised: {e}")

    async def _fire_reconnect(self) -> None:
        for handle, listener in list(self._reconnect_listeners.items()):
            if handle not in self._reconnect_listeners:
                continue
            try:
                result = listener()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Reconnect listener #{handle} raised: {e}")

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    @property
    def connect_url(self) -> str:
        query = {"role": self.identity.role, "sessionId": self.identity.session_id}
        if self.identity.user_id:
            query["userId"] = self.identity.user_id
        return f"{self.config.resolved_socket_url}?{urlencode(query)}"

    async def connect(self) -> bool:
        """
        Open the connection, retrying with backoff on failure.

        Returns:
            True once connected, False if retries were exhausted
        """
        self._closing = False
        return await self._connect_loop(reconnecting=False)

    async def disconnect(self) -> None:
        """Close the connection on purpose. No reconnect is attempted."""
        self._closing = True
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        sio, self._sio = self._sio, None
        if sio is not None:
            try:
                await sio.disconnect()
            except SocketIOError as e:
                logger.warning(f"Error while closing push connection: {e}")
        self.registered = False
        self._set_state(ConnectionState.IDLE)

    async def _connect_loop(self, reconnecting: bool) -> bool:
        attempt = 0
        immediate = not reconnecting
        while not self._closing:
            if immediate:
                immediate = False
                self._set_state(ConnectionState.CONNECTING)
            else:
                if attempt >= self.config.max_reconnect_attempts:
                    logger.error(
                        f"Push connection unavailable after {attempt} retries, "
                        f"staying offline: {self.last_error}"
                    )
                    self._set_state(ConnectionState.DISCONNECTED)
                    return False
                attempt += 1
                self.reconnect_attempt = attempt
                delay = self.config.backoff_delay(attempt)
                self._set_state(ConnectionState.RECONNECTING)
                logger.info(
                    f"Reconnecting in {delay:.1f}s "
                    f"(attempt {attempt}/{self.config.max_reconnect_attempts})"
                )
                await self._sleep(delay)
                if self._closing:
                    break

            try:
                await self._open()
            except CONNECT_ERRORS as e:
                self.last_error = str(e) or type(e).__name__
                logger.warning(f"Push connection failed: {self.last_error}")
                continue

            self.reconnect_attempt = 0
            self.last_error = None
            self._set_state(ConnectionState.CONNECTED)
            await self._register()
            return True
        return False

    async def _open(self) -> None:
        sio = self._sio_factory()
        sio.on("disconnect", self._on_disconnect)
        for event in ORDER_EVENTS:
            sio.on(event, self._order_handler(event))
        sio.on(STATUS_NOTIFICATION, self._on_status_notification)

        headers = {}
        if self.identity.token:
            headers["Authorization"] = f"Bearer {self.identity.token}"
        await sio.connect(
            self.connect_url,
            headers=headers,
            transports=["websocket", "polling"],
            wait_timeout=self.config.request_timeout,
        )
        self._sio = sio

    async def _register(self) -> bool:
        """Announce who we are; the server answers with `{success: bool}`."""
        payload = {
            "userId": self.identity.user_id,
            "role": self.identity.role,
            "sessionId": self.identity.session_id,
        }
        try:
            ack = await self._sio.call(REGISTER, payload, timeout=self.config.registration_timeout)
        except SocketIOError as e:
            logger.warning(f"Push registration failed, continuing unregistered: {e or type(e).__name__}")
            self.registered = False
            return False

        success = ack.get("success") if isinstance(ack, dict) else ack
        self.registered = bool(success)
        if self.registered:
            logger.info(f"Registered session {self.identity.session_id} as {self.identity.role}")
        else:
            logger.warning(f"Push server rejected registration: {ack}")
        return self.registered

    def _on_disconnect(self, *args) -> None:
        self.registered = False
        self._sio = None
        if self._closing:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        logger.warning("Push connection lost")
        self._set_state(ConnectionState.RECONNECTING)
        self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect())

    async def _reconnect(self) -> None:
        if await self._connect_loop(reconnecting=True):
            # Events sent while we were away are gone; listeners refresh over REST
            await self._fire_reconnect()

    # =========================================================================
    # Inbound events
    # =========================================================================

    def _order_handler(self, event: str) -> Callable[[Any], None]:
        def handler(data: Any = None) -> None:
            self.handle_event(event, data)
        return handler

    def _on_status_notification(self, data: Any = None) -> None:
        self.handle_event(STATUS_NOTIFICATION, data)

    def handle_event(self, event: str, data: Any) -> Any:
        """
        Apply one inbound push event.

        Never raises: anything unexpected is logged and the event dropped.

        Returns:
            The MergeResult for order events, the Notification for server
            notifications, or None when the event was dropped
        """
        try:
            if event == STATUS_NOTIFICATION:
                if self.notifications is None:
                    logger.debug("Ignoring server notification, no notification store attached")
                    return None
                return self.notifications.ingest_server_notification(data)

            order_payload = data.get("order") if isinstance(data, dict) else None
            if order_payload is None:
                logger.warning(f"Dropping '{event}' event without an order payload")
                return None
            return self.store.merge_raw(order_payload, source=f"push '{event}'")
        except Exception as e:
            logger.error(f"Failed to handle push event '{event}': {e}")
            return None

    # =========================================================================
    # Outbound events
    # =========================================================================

    async def emit_status_change(self, order: Order, previous_status: Optional[str] = None) -> bool:
        """
        Broadcast a status change made from an admin surface.

        Returns:
            False if not connected or the emit failed
        """
        if self._sio is None or self.state != ConnectionState.CONNECTED:
            logger.warning(f"Not connected, status change for {order.order_number} not broadcast")
            return False

        wire = {"_id": order.id, "trackingNumber": order.tracking_number, **order_to_wire(order)}
        try:
            await self._sio.emit(ORDER_UPDATED, {"order": wire})
            await self._sio.emit(STATUS_CHANGE, {
                "orderId": order.id,
                "orderNumber": order.order_number,
                "status": order.status,
                "previousStatus": previous_status,
                "userId": order.owner_ref,
            })
        except SocketIOError as e:
            logger.warning(f"Failed to broadcast status change for {order.order_number}: {e}")
            return False
        logger.info(f"Broadcast {order.order_number}: {previous_status} -> {order.status}")
        return True


def _default_sio_factory() -> socketio.AsyncClient:
    return socketio.AsyncClient(reconnection=False, logger=False, engineio_logger=False)
