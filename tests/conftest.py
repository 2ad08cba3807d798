"""
Shared pytest fixtures for the order sync tests.

These fixtures provide isolated stores, a fast-retrying config, and fakes
for the two network channels (an httpx transport and a Socket.IO client).
"""

import pytest
from socketio.exceptions import ConnectionError as SocketConnectionError

from order_sync.notification_store import NotificationStore
from order_sync.order_store import OrderStore
from order_sync.registry import SubscriberRegistry
from shared.config import SyncConfig
from shared.models import Order, SessionIdentity
from shared.persistence import MemoryStorage, PersistedState


# Epoch ms used as the baseline version throughout the tests
T0 = 1_700_000_000_000


@pytest.fixture
def t0() -> int:
    return T0


# =============================================================================
# Order Fixtures
# =============================================================================

@pytest.fixture
def make_order():
    """
    Factory for canonical orders.

    Defaults to ORD-100, Pending, version T0.
    """
    def factory(order_number: str = "ORD-100", status: str = "Pending", version: int = T0, **fields) -> Order:
        return Order(order_number=order_number, status=status, version=version, **fields)
    return factory


@pytest.fixture
def order_payload():
    """Factory for raw camelCase order payloads, as the backend sends them."""
    def factory(order_number: str = "ORD-100", status: str = "Pending", version: int = T0, **fields) -> dict:
        return {"orderNumber": order_number, "status": status, "version": version, **fields}
    return factory


# =============================================================================
# Store Fixtures
# =============================================================================

@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def state(storage: MemoryStorage) -> PersistedState:
    """Persisted state backed by memory, fresh for each test."""
    return PersistedState(storage, namespace="test-orders")


@pytest.fixture
def registry() -> SubscriberRegistry:
    return SubscriberRegistry()


@pytest.fixture
def order_store(registry: SubscriberRegistry, state: PersistedState) -> OrderStore:
    return OrderStore(registry=registry, state=state)


@pytest.fixture
def notification_store(registry: SubscriberRegistry, state: PersistedState):
    """Notification store already subscribed to the registry."""
    notifications = NotificationStore(state=state)
    notifications.start(registry)
    yield notifications
    notifications.stop()


# =============================================================================
# Session Fixtures
# =============================================================================

@pytest.fixture
def config() -> SyncConfig:
    """Config pointing at a fake backend, with a short retry budget."""
    return SyncConfig(
        api_base_url="http://backend.test/api/v1",
        max_reconnect_attempts=3,
        reconnect_delay=0.01,
        reconnect_delay_max=0.05,
        registration_timeout=1.0,
    )


@pytest.fixture
def identity() -> SessionIdentity:
    """A signed-in customer."""
    return SessionIdentity(user_id="user-1", role="customer", session_id="session-test", token="test-token")


@pytest.fixture
def admin_identity() -> SessionIdentity:
    return SessionIdentity(user_id="admin-1", role="admin", session_id="session-admin", token="admin-token")


@pytest.fixture
def sleeps():
    """Delays requested by the push client's backoff, recorded instead of slept."""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def sleep(delay: float) -> None:
        sleeps.append(delay)
    return sleep


# =============================================================================
# Socket.IO fake
# =============================================================================

class FakeSocket:
    """
    Stand-in for socketio.AsyncClient.

    Records connects, calls and emits; `drop()` simulates the server going
    away, `fire()` delivers an inbound event.
    """

    def __init__(self, factory: "FakeSocketFactory"):
        self.factory = factory
        self.handlers = {}
        self.connected = False
        self.url = None
        self.headers = {}
        self.calls = []
        self.emitted = []

    def on(self, event, handler=None):
        self.handlers[event] = handler

    async def connect(self, url, headers=None, transports=None, wait_timeout=None, **kwargs):
        self.url = url
        self.headers = headers or {}
        if self.factory.failures > 0:
            self.factory.failures -= 1
            raise SocketConnectionError("Connection refused by the server")
        self.connected = True

    async def call(self, event, data=None, timeout=None):
        self.calls.append((event, data))
        if self.factory.register_error is not None:
            raise self.factory.register_error
        return self.factory.ack

    async def emit(self, event, data=None):
        self.emitted.append((event, data))

    async def disconnect(self):
        if self.connected:
            self.connected = False
            self.fire("disconnect", "client disconnect")

    def fire(self, event, *args):
        return self.handlers[event](*args)

    def drop(self):
        self.connected = False
        self.fire("disconnect", "transport close")


class FakeSocketFactory:
    """
    sio_factory for PushClient.

    Attributes:
        failures: Number of upcoming connects that fail
        ack: Registration acknowledgement returned by the server
        register_error: Raised from the registration call instead, if set
    """

    def __init__(self):
        self.sockets: list[FakeSocket] = []
        self.failures = 0
        self.ack = {"success": True}
        self.register_error = None

    def __call__(self) -> FakeSocket:
        socket = FakeSocket(self)
        self.sockets.append(socket)
        return socket

    @property
    def latest(self) -> FakeSocket:
        return self.sockets[-1]


@pytest.fixture
def sio_factory() -> FakeSocketFactory:
    return FakeSocketFactory()
