"""
Order cache store: the single source of truth for every UI surface.

Three channels feed orders into this store and they can arrive in any order:
- optimistic writes made locally at checkout, before the server confirms
- authoritative records returned by REST fetches
- push events emitted whenever someone changes an order's status

They may even reference the same order by different identifiers (a local
temporary id, the server id, a tracking number). The store converges them
into exactly one record per order number.

Design decisions:
- Keyed by order number, the one identifier every representation carries
- Last-writer-wins by `version`, never by arrival order
- Whole-record replacement, so subscribers never see a half-applied update
- An alias table maps every other identifier (server id, temp id, tracking
  number) back to the order number
- Persistence is best-effort; a failed write is logged and ignored
"""

import logging
from typing import Any, Iterator, Optional
from uuid import uuid4

from order_sync.registry import SubscriberRegistry
from shared.models import MergeResult, Order, is_expected_transition
from shared.normalize import (
    OWNER_FIELDS,
    normalize_owner_ref,
    prepare_for_storage,
    try_normalize_order,
)
from shared.persistence import PersistedState

logger = logging.getLogger("order_store")


SECTION = "orders"


def new_temp_id() -> str:
    """Generate a client-side temporary order id."""
    return f"tmp-{uuid4().hex[:12]}"


def repair_owner_refs(raw_orders: list[dict]) -> int:
    """
    Run the owner-reference normalization pass over raw legacy records.

    Each record is fixed in place so that the canonical `owner_ref` field
    is set from whichever legacy spelling it carried.

    Returns:
        Number of records that were changed
    """
    fixed = 0
    for raw in raw_orders:
        if raw.get("owner_ref") or raw.get("ownerRef"):
            continue
        owner = normalize_owner_ref(raw)
        if owner is None:
            continue
        raw["owner_ref"] = owner
        fixed += 1
        logger.debug(
            f"Set ownerRef for {raw.get('orderNumber') or raw.get('_id')} "
            f"from one of {OWNER_FIELDS}"
        )
    return fixed


class OrderListing:
    """
    A restartable view over the cached orders, newest version first.

    Every iteration takes a fresh snapshot, so a listing can be iterated
    again after the cache has changed.
    """

    def __init__(
        self,
        store: "OrderStore",
        owner_ref: Optional[str] = None,
        customer_email: Optional[str] = None,
    ):
        self._store = store
        self.owner_ref = owner_ref
        self.customer_email = customer_email

    def _matches(self, order: Order) -> bool:
        if self.owner_ref is None and self.customer_email is None:
            return True
        if self.owner_ref is not None and order.owner_ref == self.owner_ref:
            return True
        if self.customer_email is not None and order.customer_email == self.customer_email:
            return True
        return False

    def __iter__(self) -> Iterator[Order]:
        snapshot = sorted(self._store._records.values(), key=lambda o: o.version, reverse=True)
        for order in snapshot:
            if self._matches(order):
                yield order

    def __len__(self) -> int:
        return sum(1 for _ in self)


class OrderStore:
    """
    In-process table of orders with atomic merge semantics.

    Example usage:
        store = OrderStore(registry=registry, state=persisted_state)

        store.upsert_optimistic(local_order)      # at checkout
        result = store.merge(server_order)        # from REST or push
        if result.changed:
            ...                                   # subscribers were already notified
    """

    def __init__(
        self,
        registry: Optional[SubscriberRegistry] = None,
        state: Optional[PersistedState] = None,
        max_stored_orders: int = 100,
    ):
        """
        Initialize the order store.

        Args:
            registry: Subscriber registry notified on every change (defaults to a new one)
            state: Persisted state to write through to (None keeps orders in memory only)
            max_stored_orders: Most recent orders kept in persisted state
        """
        self.registry = registry if registry is not None else SubscriberRegistry()
        self.state = state
        self.max_stored_orders = max_stored_orders

        self._records: dict[str, Order] = {}
        # Any identifier (server id, temp id, tracking number) -> order number
        self._aliases: dict[str, str] = {}
        # Client temp id -> server-confirmed id
        self._confirmed_ids: dict[str, str] = {}

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, order_number: str) -> Optional[Order]:
        """Get an order by its order number."""
        return self._records.get(order_number)

    def resolve(self, identifier: str) -> Optional[Order]:
        """
        Find an order by any identifier it has ever been known by.

        Accepts the order number, server id, client temp id, or tracking
        number, so callers still holding a pre-confirmation id keep working.
        """
        order = self._records.get(identifier)
        if order is not None:
            return order
        order_number = self._aliases.get(identifier)
        if order_number is None:
            return None
        return self._records.get(order_number)

    def confirmed_id(self, temp_id: str) -> Optional[str]:
        """Get the server id that replaced a client temp id, if confirmed."""
        return self._confirmed_ids.get(temp_id)

    def list(
        self,
        owner_ref: Optional[str] = None,
        customer_email: Optional[str] = None,
    ) -> OrderListing:
        """
        List cached orders, optionally filtered by owner or customer email.

        An order matches if either filter matches.
        """
        return OrderListing(self, owner_ref=owner_ref, customer_email=customer_email)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, order_number: str) -> bool:
        return order_number in self._records

    # =========================================================================
    # Writes
    # =========================================================================

    def upsert_optimistic(self, order: Order) -> bool:
        """
        Insert a locally originated order before the server has confirmed it.

        A temp id is generated if the order has none. The insert is a silent
        no-op when a record with the same order number already has a higher
        version or has already been confirmed by the server.

        Returns:
            True if the cache changed
        """
        if order.client_temp_id is None:
            order = order.model_copy(update={"client_temp_id": new_temp_id()})

        existing = self._records.get(order.order_number)
        if existing is not None:
            if existing.version > order.version or (existing.is_confirmed and not order.is_confirmed):
                logger.debug(f"Optimistic insert for {order.order_number} superseded by cached record")
                return False
            if existing == order:
                return False

        logger.info(f"Optimistic insert: {order.order_number} ({order.status}, temp id {order.client_temp_id})")
        self._replace(order)
        return True

    def merge(self, incoming: Order) -> MergeResult:
        """
        Reconcile an incoming order with the cached record of the same order number.

        1. No cached record: the incoming order is inserted.
        2. Incoming version >= cached version: the whole record is replaced,
           unless it is identical (no change reported).
        3. Otherwise the incoming order is stale and discarded.

        Identity is folded either way: the incoming order's identifiers become
        aliases, and a cached temp id is carried onto a confirmed replacement.
        Subscribers are notified only when the cache changed.
        """
        existing = self._records.get(incoming.order_number)
        if existing is None:
            logger.info(f"Inserted {incoming.order_number} ({incoming.status}, v{incoming.version})")
            self._replace(incoming)
            return MergeResult(changed=True, result=incoming, inserted=True)

        if existing.client_temp_id and incoming.client_temp_id is None:
            incoming = incoming.model_copy(update={"client_temp_id": existing.client_temp_id})
        self._register_aliases(incoming)

        if incoming.version < existing.version:
            logger.debug(
                f"Discarded stale {incoming.order_number}: "
                f"v{incoming.version} < cached v{existing.version}"
            )
            return MergeResult(changed=False, result=existing)

        if incoming == existing:
            return MergeResult(changed=False, result=existing)

        if incoming.status != existing.status and not is_expected_transition(existing.status, incoming.status):
            logger.warning(
                f"Unexpected status transition for {incoming.order_number}: "
                f"{existing.status} -> {incoming.status} (accepted, server is authoritative)"
            )

        logger.info(
            f"Merged {incoming.order_number}: {existing.status} -> {incoming.status} "
            f"(v{existing.version} -> v{incoming.version})"
        )
        self._replace(incoming)
        return MergeResult(changed=True, result=incoming)

    def merge_raw(self, payload: Any, source: str) -> Optional[MergeResult]:
        """
        Normalize a raw payload and merge it.

        Malformed payloads are dropped with a logged warning and return None.
        """
        order = try_normalize_order(payload, source)
        if order is None:
            return None
        return self.merge(order)

    def clear(self) -> None:
        """Wholesale reset, used on logout. Subscribers are not notified."""
        logger.info(f"Clearing {len(self._records)} cached orders")
        self._records.clear()
        self._aliases.clear()
        self._confirmed_ids.clear()
        if self.state is not None:
            self.state.write_section(SECTION, None)

    # =========================================================================
    # Persistence
    # =========================================================================

    def restore(self) -> int:
        """
        Load persisted orders, repairing owner references along the way.

        Older write paths stored the owner under several different field
        names; every restored record is run through the same normalization
        as live payloads. Restored orders are not published.

        Returns:
            Number of records whose owner reference had to be repaired
        """
        if self.state is None:
            return 0
        section = self.state.read_section(SECTION)
        if not isinstance(section, dict):
            return 0

        records = [raw for raw in section.get("records") or [] if isinstance(raw, dict)]
        repaired = repair_owner_refs(records)
        for raw in records:
            order = try_normalize_order(raw, source="persisted state")
            if order is None:
                continue
            existing = self._records.get(order.order_number)
            if existing is None or existing.version <= order.version:
                self._records[order.order_number] = order
                self._register_aliases(order)

        for alias, order_number in (section.get("aliases") or {}).items():
            if order_number in self._records:
                self._aliases.setdefault(alias, order_number)
        self._confirmed_ids.update(section.get("confirmed_ids") or {})

        logger.info(f"Restored {len(self._records)} orders ({repaired} owner references repaired)")
        if repaired:
            self._persist()
        return repaired

    def _replace(self, order: Order) -> None:
        self._records[order.order_number] = order
        self._register_aliases(order)
        self.registry.publish(order)
        self._persist()

    def _register_aliases(self, order: Order) -> None:
        for identifier in order.known_ids[1:]:
            self._aliases[identifier] = order.order_number
        if order.client_temp_id and order.id:
            self._confirmed_ids[order.client_temp_id] = order.id

    def _persist(self) -> None:
        if self.state is None:
            return
        newest = sorted(self._records.values(), key=lambda o: o.version, reverse=True)
        kept = newest[: self.max_stored_orders]
        kept_numbers = {order.order_number for order in kept}
        self.state.write_section(SECTION, {
            "records": [prepare_for_storage(order).model_dump(mode="json") for order in kept],
            "aliases": {k: v for k, v in self._aliases.items() if v in kept_numbers},
            "confirmed_ids": dict(self._confirmed_ids),
        })
