"""Order service — the single mutation gateway for orders.

Learn: This is the CORE of the platform. Every order mutation is:
1. Validated (ids are server-generated, bulk sizes are capped)
2. Applied to the store (synchronous, runs to completion — no locks needed)
3. Announced with exactly ONE notification of the matching kind

Notification is fire-and-report, not transactional: if the notifier
blows up, the error is logged and remembered for the health check, and
the mutation still counts as successful for the caller.

Deletes fetch the order BEFORE deleting it — the deletion event carries
that snapshot, and after the delete there is nothing left to look up.
"""

import secrets
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence

import structlog

from muta.errors import DuplicateKeyError, ServiceUnavailableError, ValidationError
from muta.realtime.notifier import OrderNotifier
from muta.schemas.order import (
    MAX_BULK_ITEMS,
    LastError,
    Order,
    OrderCreate,
    OrderPage,
    OrderStatus,
    ServiceHealth,
)
from muta.services.sample_data import sample_orders
from muta.store.base import (
    BulkFailure,
    BulkResult,
    OrderFilters,
    OrderRepository,
    PageRequest,
)

logger = structlog.get_logger()

# Health thresholds: seconds since the last internal error
UNHEALTHY_WINDOW = 10
DEGRADED_WINDOW = 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_order_id() -> str:
    """Time-ordered prefix + 32 random bits, e.g. ORD-1718000000000-9f2c41ab."""
    return f"ORD-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


class OrderService:
    """Business logic for order CRUD, queries and change fan-out."""

    def __init__(
        self,
        store: OrderRepository,
        notifier: OrderNotifier,
        snapshot_size: int = 50,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.notifier = notifier
        self.snapshot_size = snapshot_size
        self._clock = clock
        self.started_at = clock()
        self.last_error: Optional[LastError] = None

    def record_error(self, message: str, error: Exception) -> None:
        self.last_error = LastError(message=f"{message}: {error}", timestamp=self._clock())

    async def _notify(self, send: Callable[[Order], Awaitable[Any]], order: Order) -> None:
        try:
            await send(order)
        except Exception as e:
            logger.exception("orders.notify_failed", order_id=order.id)
            self.record_error("Failed to notify order change", e)

    def _new_order(self, data: OrderCreate) -> Order:
        return Order(
            id=generate_order_id(),
            address=data.address,
            status=data.status,
            collector_name=data.collector_name,
            last_updated=self._clock(),
        )

    # ─── Create ──────────────────────────────────────────

    async def create_order(self, data: OrderCreate) -> Order:
        try:
            order = self.store.create(self._new_order(data))
        except DuplicateKeyError as e:
            self.record_error("Failed to create order", e)
            raise

        await self._notify(self.notifier.order_created, order)
        logger.info("orders.created", order_id=order.id, status=order.status.value)
        return order

    # ─── Read ────────────────────────────────────────────

    async def get_order(self, order_id: str) -> Optional[Order]:
        return self.store.find_by_id(order_id)

    async def list_orders(
        self,
        filters: Optional[OrderFilters] = None,
        page: Optional[PageRequest] = None,
    ) -> OrderPage:
        return self.store.query_by_filters(filters or OrderFilters(), page or PageRequest())

    async def search_orders(self, term: str, page: Optional[PageRequest] = None) -> OrderPage:
        if not term or not term.strip():
            raise ValidationError("Search term is required")
        return self.store.search(term, page or PageRequest())

    async def get_order_stats(self) -> dict[OrderStatus, int]:
        return self.store.count_by_status()

    async def get_initial_snapshot(self) -> OrderPage:
        """First page of the default sort — the baseline pushed to new viewers."""
        return self.store.query_by_filters(
            OrderFilters(),
            PageRequest(page=1, page_size=self.snapshot_size),
        )

    # ─── Update ──────────────────────────────────────────

    async def update_order(self, order_id: str, changes: Mapping[str, Any]) -> Optional[Order]:
        """Partial update. Returns None (and sends nothing) if the order is gone."""
        if not changes:
            raise ValidationError("No update data provided")

        order = self.store.update(order_id, changes)
        if order is None:
            logger.info("orders.update_missing", order_id=order_id)
            return None

        await self._notify(self.notifier.order_updated, order)
        logger.info("orders.updated", order_id=order_id, fields=sorted(changes))
        return order

    # ─── Delete ──────────────────────────────────────────

    async def delete_order(self, order_id: str) -> bool:
        snapshot = self.store.find_by_id(order_id)
        if snapshot is None:
            return False

        if not self.store.delete(order_id):
            return False

        await self._notify(self.notifier.order_deleted, snapshot)
        logger.info("orders.deleted", order_id=order_id)
        return True

    # ─── Bulk (best effort, one event per succeeded element) ──

    @staticmethod
    def _check_batch(items: Sequence, label: str) -> None:
        if not items:
            raise ValidationError(f"{label.capitalize()} array is required and cannot be empty")
        if len(items) > MAX_BULK_ITEMS:
            raise ValidationError(f"Cannot process more than {MAX_BULK_ITEMS} {label} at once")

    async def create_orders(self, items: Sequence[OrderCreate]) -> BulkResult[Order]:
        self._check_batch(items, "orders")

        result = self.store.create_many([self._new_order(d) for d in items])
        for order in result.succeeded:
            await self._notify(self.notifier.order_created, order)

        logger.info("orders.bulk_created", requested=len(items), created=result.count)
        return result

    async def update_orders(
        self, updates: Sequence[tuple[str, Mapping[str, Any]]]
    ) -> BulkResult[Order]:
        """Resolve every referenced order first, then apply what can be applied."""
        self._check_batch(updates, "updates")

        rejected: list[BulkFailure] = []
        applicable: list[tuple[str, Mapping[str, Any]]] = []
        for order_id, changes in updates:
            if not changes:
                rejected.append(BulkFailure(key=order_id, reason="No update data provided"))
            elif self.store.find_by_id(order_id) is None:
                rejected.append(BulkFailure(key=order_id, reason="Order not found"))
            else:
                applicable.append((order_id, changes))

        result = self.store.update_many(applicable)
        result.failed = rejected + result.failed
        for order in result.succeeded:
            await self._notify(self.notifier.order_updated, order)

        logger.info("orders.bulk_updated", requested=len(updates), updated=result.count)
        return result

    async def delete_orders(self, order_ids: Sequence[str]) -> BulkResult[str]:
        self._check_batch(order_ids, "ids")

        # Snapshots must be taken before the deletes
        snapshots: dict[str, Order] = {}
        for order_id in order_ids:
            if order_id not in snapshots:
                order = self.store.find_by_id(order_id)
                if order is not None:
                    snapshots[order_id] = order

        result = self.store.delete_many(order_ids)
        for order_id in result.succeeded:
            await self._notify(self.notifier.order_deleted, snapshots[order_id])

        logger.info("orders.bulk_deleted", requested=len(order_ids), deleted=result.count)
        return result

    async def seed_sample_orders(self, count: int) -> list[Order]:
        """Create `count` random orders (startup demo data)."""
        created: list[Order] = []
        batch = sample_orders(count)
        for start in range(0, len(batch), MAX_BULK_ITEMS):
            result = await self.create_orders(batch[start:start + MAX_BULK_ITEMS])
            created.extend(result.succeeded)
        logger.info("orders.sample_data_seeded", count=len(created))
        return created

    # ─── Health ──────────────────────────────────────────

    async def get_service_health(self) -> ServiceHealth:
        """healthy / degraded / unhealthy from how recent the last error is."""
        try:
            now = self._clock()
            status = "healthy"
            if self.last_error is not None:
                age = (now - self.last_error.timestamp).total_seconds()
                if age < DEGRADED_WINDOW:
                    status = "degraded"
                if age < UNHEALTHY_WINDOW:
                    status = "unhealthy"

            return ServiceHealth(
                status=status,
                total_orders=self.store.total_count(),
                active_connections=self.notifier.connection_count(),
                uptime=(now - self.started_at).total_seconds(),
                last_error=self.last_error,
            )
        except Exception as e:
            logger.exception("orders.health_check_failed")
            self.record_error("Failed to get service health", e)
            raise ServiceUnavailableError("Health check failed") from e
