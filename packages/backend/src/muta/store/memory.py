"""In-memory order store — a dict keyed by order id.

Learn: Python dicts keep insertion order, and re-assigning an existing key
does not move it. That gives us a free, stable secondary sort key: orders
with equal sort values come out in the order they were created.

Every read returns a copy (model_copy) so callers can never mutate the
stored objects behind the store's back.
"""

import math
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Optional

import structlog

from muta.errors import DuplicateKeyError
from muta.schemas.order import Order, OrderPage, OrderStatus
from muta.store.base import (
    BulkFailure,
    BulkResult,
    OrderFilters,
    OrderRepository,
    PageRequest,
)

logger = structlog.get_logger()

# Fields a caller may change through update(). id and last_updated are
# owned by the store.
MUTABLE_FIELDS = frozenset({"address", "status", "collector_name"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _sort_value(order: Order, field_name: str) -> Any:
    value = getattr(order, field_name)
    if isinstance(value, OrderStatus):
        return value.value
    return value


class InMemoryOrderStore(OrderRepository):
    """Authoritative order collection for a single process."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._orders: dict[str, Order] = {}
        self._clock = clock

    # ─── Create ──────────────────────────────────────────

    def create(self, order: Order) -> Order:
        if order.id in self._orders:
            logger.warning("store.duplicate_id", order_id=order.id)
            raise DuplicateKeyError(f"Order with ID {order.id} already exists")

        stored = order.model_copy(update={"last_updated": self._clock()})
        self._orders[order.id] = stored
        logger.debug("store.created", order_id=order.id)
        return stored.model_copy()

    # ─── Read ────────────────────────────────────────────

    def find_by_id(self, order_id: str) -> Optional[Order]:
        order = self._orders.get(order_id)
        return order.model_copy() if order else None

    def find_all(self) -> list[Order]:
        return [o.model_copy() for o in self._orders.values()]

    def query_by_filters(
        self,
        filters: OrderFilters,
        page: Optional[PageRequest] = None,
    ) -> OrderPage:
        """Status filter → search → sort → slice.

        Learn: Search is OR across id, collector name and address, and is
        case-insensitive. Sorting defaults to newest first (last_updated desc).
        """
        page = page or PageRequest(page_size=None)
        orders = list(self._orders.values())

        if filters.status is not None:
            orders = [o for o in orders if o.status == filters.status]

        if filters.search:
            term = filters.search.lower()
            orders = [
                o for o in orders
                if term in o.id.lower()
                or term in o.collector_name.lower()
                or term in o.address.lower()
            ]

        sort_field = page.sort_field or "last_updated"
        orders.sort(
            key=lambda o: _sort_value(o, sort_field),
            reverse=page.sort_direction != "asc",
        )

        total = len(orders)
        if page.page_size:
            start = (page.page - 1) * page.page_size
            items = orders[start:start + page.page_size]
            total_pages = math.ceil(total / page.page_size)
            page_size = page.page_size
        else:
            items = orders
            total_pages = 1
            page_size = total

        return OrderPage(
            items=[o.model_copy() for o in items],
            page=page.page,
            page_size=page_size,
            total_matching=total,
            total_pages=total_pages,
        )

    def count_by_status(self) -> dict[OrderStatus, int]:
        counts = {status: 0 for status in OrderStatus}
        for order in self._orders.values():
            counts[order.status] += 1
        return counts

    def total_count(self) -> int:
        return len(self._orders)

    # ─── Update ──────────────────────────────────────────

    def update(self, order_id: str, changes: Mapping[str, Any]) -> Optional[Order]:
        existing = self._orders.get(order_id)
        if existing is None:
            logger.debug("store.update_missing", order_id=order_id)
            return None

        merged = {
            **existing.model_dump(),
            **{k: v for k, v in changes.items() if k in MUTABLE_FIELDS},
            "id": existing.id,
            "last_updated": self._clock(),
        }
        updated = Order.model_validate(merged)
        self._orders[order_id] = updated
        logger.debug("store.updated", order_id=order_id, fields=sorted(changes))
        return updated.model_copy()

    # ─── Delete ──────────────────────────────────────────

    def delete(self, order_id: str) -> bool:
        if self._orders.pop(order_id, None) is None:
            logger.debug("store.delete_missing", order_id=order_id)
            return False
        logger.debug("store.deleted", order_id=order_id)
        return True

    # ─── Bulk ────────────────────────────────────────────

    def create_many(self, orders: Iterable[Order]) -> BulkResult[Order]:
        result: BulkResult[Order] = BulkResult()
        for order in orders:
            try:
                result.succeeded.append(self.create(order))
            except DuplicateKeyError as e:
                result.failed.append(BulkFailure(key=order.id, reason=e.message))
        if result.failed:
            logger.warning(
                "store.bulk_create_partial",
                created=result.count,
                failed=len(result.failed),
            )
        return result

    def update_many(
        self, updates: Iterable[tuple[str, Mapping[str, Any]]]
    ) -> BulkResult[Order]:
        result: BulkResult[Order] = BulkResult()
        for order_id, changes in updates:
            updated = self.update(order_id, changes)
            if updated is None:
                result.failed.append(BulkFailure(key=order_id, reason="Order not found"))
            else:
                result.succeeded.append(updated)
        return result

    def delete_many(self, order_ids: Iterable[str]) -> BulkResult[str]:
        result: BulkResult[str] = BulkResult()
        for order_id in order_ids:
            if self.delete(order_id):
                result.succeeded.append(order_id)
            else:
                result.failed.append(BulkFailure(key=order_id, reason="Order not found"))
        return result
