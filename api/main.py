"""
Local FastAPI application over the order sync session.

UI surfaces (navigation badge, account page, admin panel) read cached
orders, notifications and connection state from here instead of talking to
the storefront backend themselves. Everything is served from the session's
cache; only /sync/refresh reaches out to the backend.

Run with:
    uv run uvicorn api.main:app --reload

Then visit http://localhost:8000/docs for interactive API documentation.

Environment:
    ORDER_SYNC_*        see shared/config.py
    ORDER_SYNC_USER_ID  signed-in user (omit for a guest session)
    ORDER_SYNC_ROLE     customer (default) or admin
    ORDER_SYNC_TOKEN    bearer token for the storefront API
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel

from order_sync.rest_client import OrderApiError
from order_sync.session import SyncSession
from shared.config import ENV_PREFIX, LOG_DATE_FORMAT, LOG_FORMAT, SyncConfig
from shared.models import Notification, Order, SessionIdentity

# Configure logging
logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

logger = logging.getLogger("order_api")


# Response models
class UnreadCount(BaseModel):
    unread: int


class SyncStatus(BaseModel):
    """Connection and freshness state of the session."""
    session_id: str
    role: str
    connection: str
    registered: bool
    reconnect_attempt: int
    last_push_error: Optional[str] = None
    last_refresh_at: Optional[datetime] = None
    last_refresh_error: Optional[str] = None
    cached_orders: int
    unread_notifications: int


class RefreshResult(BaseModel):
    refreshed: int
    orders: list[Order]


# Module-level session (replaced in tests via reset_api_state)
_session: Optional[SyncSession] = None


def _identity_from_env() -> SessionIdentity:
    return SessionIdentity(
        user_id=os.environ.get(f"{ENV_PREFIX}USER_ID") or None,
        role=os.environ.get(f"{ENV_PREFIX}ROLE") or "customer",
        token=os.environ.get(f"{ENV_PREFIX}TOKEN") or None,
    )


def get_session() -> SyncSession:
    """Get the session instance, building it from the environment on first use."""
    global _session
    if _session is None:
        _session = SyncSession(SyncConfig.from_env(), _identity_from_env())
    return _session


def reset_api_state(session: Optional[SyncSession] = None) -> None:
    """Reset API state (for testing)."""
    global _session
    _session = session


# Application lifespan
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the sync session with the app, close it on shutdown."""
    session = get_session()
    logger.info("Starting order sync API")
    await session.start()
    yield
    logger.info("Shutting down")
    await session.close()


# Create the FastAPI app
app = FastAPI(
    title="Order Sync",
    description="""
    Local view of the storefront order cache.

    ## Endpoints

    - `/orders` - Cached orders, resolvable by any identifier
    - `/notifications` - Order notifications and read state
    - `/sync/*` - Push connection state and forced refresh
    """,
    version="1.0.0",
    lifespan=lifespan,
)


# =============================================================================
# Health Check
# =============================================================================

@app.get("/health", tags=["Health"])
def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "order-sync"}


# =============================================================================
# Orders
# =============================================================================

@app.get("/orders", response_model=list[Order], tags=["Orders"])
def list_orders(owner: Optional[str] = None, session: SyncSession = Depends(get_session)):
    """Cached orders, newest first, optionally only those of one owner."""
    return list(session.orders.list(owner_ref=owner))


@app.get("/orders/{identifier}", response_model=Order, tags=["Orders"])
def get_order(identifier: str, session: SyncSession = Depends(get_session)):
    """
    Look up a cached order by order number, server id, temp id or tracking number.
    """
    order = session.orders.resolve(identifier)
    if order is None:
        raise HTTPException(status_code=404, detail=f"Order not found: {identifier}")
    return order


# =============================================================================
# Notifications
# =============================================================================

@app.get("/notifications", response_model=list[Notification], tags=["Notifications"])
def list_notifications(unread_only: bool = False, session: SyncSession = Depends(get_session)):
    """All notifications, newest first."""
    notifications = session.notifications.notifications
    if unread_only:
        notifications = [n for n in notifications if not n.read]
    return notifications


@app.get("/notifications/unread-count", response_model=UnreadCount, tags=["Notifications"])
def unread_count(session: SyncSession = Depends(get_session)):
    """Badge count."""
    return UnreadCount(unread=session.notifications.unread_count)


@app.post("/notifications/read-all", tags=["Notifications"])
def mark_all_read(session: SyncSession = Depends(get_session)):
    marked = session.notifications.mark_all_as_read()
    return {"marked": marked}


@app.post("/notifications/{notification_id}/read", response_model=Notification, tags=["Notifications"])
def mark_read(notification_id: str, session: SyncSession = Depends(get_session)):
    if not session.notifications.mark_as_read(notification_id):
        raise HTTPException(status_code=404, detail=f"Notification not found: {notification_id}")
    return session.notifications.get(notification_id)


@app.delete("/notifications/{notification_id}", tags=["Notifications"])
def remove_notification(notification_id: str, session: SyncSession = Depends(get_session)):
    if not session.notifications.remove_notification(notification_id):
        raise HTTPException(status_code=404, detail=f"Notification not found: {notification_id}")
    return {"removed": notification_id}


@app.delete("/notifications", tags=["Notifications"])
def clear_notifications(session: SyncSession = Depends(get_session)):
    cleared = len(session.notifications.notifications)
    session.notifications.clear_all()
    return {"cleared": cleared}


# =============================================================================
# Sync state
# =============================================================================

@app.get("/sync/status", response_model=SyncStatus, tags=["Sync"])
def sync_status(session: SyncSession = Depends(get_session)):
    """Push connection state and the outcome of the last REST refresh."""
    return SyncStatus(
        session_id=session.identity.session_id,
        role=session.identity.role,
        connection=session.push.state.value,
        registered=session.push.registered,
        reconnect_attempt=session.push.reconnect_attempt,
        last_push_error=session.push.last_error,
        last_refresh_at=session.last_refresh_at,
        last_refresh_error=session.last_refresh_error,
        cached_orders=len(session.orders),
        unread_notifications=session.notifications.unread_count,
    )


@app.post("/sync/refresh", response_model=RefreshResult, tags=["Sync"])
async def refresh(session: SyncSession = Depends(get_session)):
    """
    Force a REST refresh.

    On failure the cache is untouched and still served by the other endpoints.
    """
    try:
        orders = await session.refresh(force=True)
    except OrderApiError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return RefreshResult(refreshed=len(orders), orders=orders)
