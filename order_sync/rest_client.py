"""
REST fetch layer: authoritative order lookups against the storefront API.

Used for initial population of the cache, targeted refreshes (after a push
reconnection, or when the user opens their account page), the anonymous
tracking lookup, and checkout confirmation.

Design decisions:
- Every response uses the `{success, data}` envelope
- A response is fully parsed before anything is merged, so a failed request
  leaves the cache untouched and cached data stays the last known good state
- Items are merged one at a time through OrderStore.merge
- Malformed items inside a good response are dropped individually
- No internal retries: callers decide whether to try again
"""

import asyncio
import logging
import time
from typing import Any, Callable, Optional

import httpx

from order_sync.order_store import OrderStore
from shared.config import SyncConfig
from shared.models import Order
from shared.normalize import MalformedOrderError, normalize_order, order_to_wire, try_normalize_order

logger = logging.getLogger("rest_client")


# =============================================================================
# Errors
# =============================================================================

class OrderApiError(Exception):
    """Base class for failed REST calls."""


class OrderApiNetworkError(OrderApiError):
    """The request never produced a response (connection refused, timeout, ...)."""


class OrderApiHttpError(OrderApiError):
    """The server answered with a non-2xx status."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"HTTP {status_code}: {message}")
        self.status_code = status_code


class OrderApiResponseError(OrderApiError):
    """The server answered 2xx but reported failure or sent an unusable body."""


# =============================================================================
# Client
# =============================================================================

class OrdersClient:
    """
    Async client for the order endpoints.

    Example:
        client = OrdersClient(store, config, token="...")
        orders = await client.fetch_my_orders()
        order = await client.track("ORD-10042")
        await client.aclose()
    """

    def __init__(
        self,
        store: OrderStore,
        config: Optional[SyncConfig] = None,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        owner_ref: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the REST client.

        Args:
            store: Order store every fetched order is merged into
            config: Base URL, timeout and freshness window
            token: Bearer token of the signed-in user, if any
            transport: httpx transport override (tests use httpx.MockTransport)
            owner_ref: Signed-in user whose orders a fresh cache serves
            clock: Monotonic clock used for the freshness window
        """
        self.store = store
        self.config = config or SyncConfig()
        self.token = token
        self.owner_ref = owner_ref
        self._clock = clock
        self._client = httpx.AsyncClient(
            base_url=self.config.api_base_url.rstrip("/"),
            timeout=self.config.request_timeout,
            transport=transport,
        )

        self.last_fetch_at: Optional[float] = None
        self._inflight: Optional[asyncio.Task] = None

    async def aclose(self) -> None:
        await self._client.aclose()

    # =========================================================================
    # Request plumbing
    # =========================================================================

    def _headers(self) -> dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        """
        Perform a request and unwrap the `{success, data}` envelope.

        Raises:
            OrderApiNetworkError, OrderApiHttpError, OrderApiResponseError
        """
        try:
            response = await self._client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.TimeoutException as e:
            raise OrderApiNetworkError(f"{method} {path} timed out") from e
        except httpx.TransportError as e:
            raise OrderApiNetworkError(f"{method} {path} failed: {e}") from e

        if response.is_error:
            raise OrderApiHttpError(response.status_code, _error_message(response))

        try:
            body = response.json()
        except ValueError as e:
            raise OrderApiResponseError(f"{method} {path} returned a non-JSON body") from e

        if not isinstance(body, dict):
            raise OrderApiResponseError(f"{method} {path} returned an unexpected body")
        if body.get("success") is False:
            raise OrderApiResponseError(body.get("error") or body.get("message") or "Request was not successful")
        if "data" not in body:
            raise OrderApiResponseError(f"{method} {path} returned no data")
        return body["data"]

    def _merge_all(self, raw_orders: Any, source: str) -> list[Order]:
        if not isinstance(raw_orders, list):
            raise OrderApiResponseError(f"{source} returned {type(raw_orders).__name__}, expected a list")
        # Parse everything first so a bad envelope never half-updates the cache
        parsed = [order for order in (try_normalize_order(raw, source) for raw in raw_orders) if order]
        return [self.store.merge(order).result for order in parsed]

    # =========================================================================
    # Operations
    # =========================================================================

    @property
    def is_fresh(self) -> bool:
        """Whether the last successful fetch is within the freshness window."""
        if self.last_fetch_at is None:
            return False
        return self._clock() - self.last_fetch_at < self.config.orders_freshness_seconds

    async def fetch_my_orders(self, force_refresh: bool = False) -> list[Order]:
        """
        Refresh the signed-in user's orders from `GET /orders/my-orders`.

        Served from the cache, without a request, while the last fetch is
        fresh. The cached answer holds only orders owned by `owner_ref`, or
        every cached order when the client has no owner. Concurrent callers
        share a single in-flight request.

        Returns:
            The merged (cached) orders
        """
        if not force_refresh and self.is_fresh:
            logger.debug("Using cached orders, last fetch is still fresh")
            return list(self.store.list(owner_ref=self.owner_ref))

        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._fetch_my_orders())
        return await asyncio.shield(self._inflight)

    async def _fetch_my_orders(self) -> list[Order]:
        logger.info("Fetching my orders")
        data = await self._request("GET", "/orders/my-orders")
        merged = self._merge_all(data, source="GET /orders/my-orders")
        self.last_fetch_at = self._clock()
        logger.info(f"Fetched {len(merged)} orders")
        return merged

    async def fetch_all_orders(
        self,
        page: int = 1,
        limit: int = 50,
        status: Optional[str] = None,
    ) -> list[Order]:
        """
        Populate the admin live feed from `GET /orders`.
        """
        params: dict[str, Any] = {"page": page, "limit": limit}
        if status and status != "all":
            params["status"] = status
        data = await self._request("GET", "/orders", params=params)
        merged = self._merge_all(data, source="GET /orders")
        logger.info(f"Fetched {len(merged)} orders for the admin feed (page {page})")
        return merged

    async def track(self, token: str) -> Order:
        """
        Look up a single order by order number or tracking number.

        Works without signing in (anonymous tracking page).

        Raises:
            OrderApiResponseError: If the returned order is malformed
        """
        data = await self._request("GET", f"/orders/track/{token}")
        try:
            order = normalize_order(data)
        except MalformedOrderError as e:
            logger.warning(f"Dropping malformed order from GET /orders/track: {e}")
            raise OrderApiResponseError(f"Tracking lookup for {token} returned a malformed order") from e
        return self.store.merge(order).result

    async def create_order(self, order: Order, payload: Optional[dict] = None) -> Order:
        """
        Place an order: optimistic insert, then `POST /orders`.

        The server's echo (with its assigned id and tracking number) is
        merged, which folds the local temp id into the confirmed record. If
        the request fails the optimistic record stays cached as unconfirmed
        and the error propagates.

        Args:
            order: The locally built order, with its order number
            payload: Request body; defaults to the order itself in wire format
        """
        self.store.upsert_optimistic(order)
        optimistic = self.store.get(order.order_number) or order
        body = payload if payload is not None else order_to_wire(optimistic)

        data = await self._request("POST", "/orders", json=body)
        if isinstance(data, dict) and not (data.get("orderNumber") or data.get("order_number")):
            data = {**data, "orderNumber": order.order_number}
        try:
            confirmed = normalize_order(data)
        except MalformedOrderError as e:
            raise OrderApiResponseError(f"Order creation returned a malformed order: {e}") from e
        # The confirmation of our own write is never older than the write itself
        if confirmed.version < optimistic.version:
            confirmed = confirmed.model_copy(update={"version": optimistic.version})
        result = self.store.merge(confirmed).result
        logger.info(f"Order {result.order_number} confirmed with id {result.id}")
        return result

    async def update_order_status(self, identifier: str, status: str) -> Order:
        """
        Change an order's status (admin), via `PUT /orders/{id}/status`.

        The identifier may be any alias known to the cache; the server id is
        used when available.
        """
        cached = self.store.resolve(identifier)
        order_id = cached.id if cached is not None and cached.id else identifier
        data = await self._request("PUT", f"/orders/{order_id}/status", json={"status": status})
        try:
            updated = normalize_order(data)
        except MalformedOrderError as e:
            raise OrderApiResponseError(f"Status update returned a malformed order: {e}") from e
        return self.store.merge(updated).result


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase or "request failed"
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or response.reason_phrase)
    return response.reason_phrase or "request failed"
