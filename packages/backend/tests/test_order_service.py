"""OrderService tests — mutation → exactly one event, bulk, health.

Learn: The notifier is replaced with a recorder, so each test can assert
on exactly which events a mutation produced (and that a failing notifier
never fails the mutation).
"""

import re

import pytest

from muta.errors import ServiceUnavailableError, ValidationError
from muta.events.types import ORDER_CREATED, ORDER_DELETED, ORDER_UPDATED
from muta.schemas.order import ORDER_ID_PATTERN, OrderCreate, OrderStatus
from muta.services.order_service import OrderService, generate_order_id
from muta.store.base import OrderFilters, PageRequest
from muta.store.memory import InMemoryOrderStore


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.events: list[tuple[str, object]] = []
        self.fail = fail

    async def _record(self, event_type, order):
        if self.fail:
            raise ConnectionError("fan-out broke")
        self.events.append((event_type, order))
        return 1

    async def order_created(self, order):
        return await self._record(ORDER_CREATED, order)

    async def order_updated(self, order):
        return await self._record(ORDER_UPDATED, order)

    async def order_deleted(self, order):
        return await self._record(ORDER_DELETED, order)

    def connection_count(self) -> int:
        return 2


def _new(address="Calle 50 #12, Obarrio", status=OrderStatus.PENDING, collector="Ana Martínez"):
    return OrderCreate(address=address, status=status, collector_name=collector)


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def svc(notifier, clock):
    return OrderService(InMemoryOrderStore(clock=clock), notifier, snapshot_size=5, clock=clock)


# ─── Ids ────────────────────────────────────────────────


def test_generated_ids_are_unique_and_valid():
    ids = {generate_order_id() for _ in range(1000)}
    assert len(ids) == 1000
    assert all(re.match(ORDER_ID_PATTERN, i) for i in ids)
    assert all(i.startswith("ORD-") for i in ids)


# ─── Create ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_emits_exactly_one_event(svc, notifier):
    order = await svc.create_order(_new())

    assert notifier.events == [(ORDER_CREATED, order)]
    assert await svc.get_order(order.id) == order


@pytest.mark.asyncio
async def test_create_never_reuses_ids(svc):
    orders = [await svc.create_order(_new()) for _ in range(50)]
    assert len({o.id for o in orders}) == 50
    assert svc.store.total_count() == 50


@pytest.mark.asyncio
async def test_notify_failure_does_not_fail_create(clock):
    svc = OrderService(InMemoryOrderStore(clock=clock), RecordingNotifier(fail=True), clock=clock)

    order = await svc.create_order(_new())

    assert svc.store.find_by_id(order.id) is not None
    assert svc.last_error is not None
    assert "fan-out broke" in svc.last_error.message


# ─── Update ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_update_emits_event_with_merged_order(svc, notifier, clock):
    order = await svc.create_order(_new())
    clock.advance(10)

    updated = await svc.update_order(order.id, {"status": OrderStatus.COMPLETED})

    assert updated.status == OrderStatus.COMPLETED
    assert updated.address == order.address
    assert updated.collector_name == order.collector_name
    assert updated.last_updated > order.last_updated
    assert notifier.events[-1] == (ORDER_UPDATED, updated)


@pytest.mark.asyncio
async def test_update_missing_returns_none_without_event(svc, notifier):
    assert await svc.update_order("ORD-missing", {"status": "completed"}) is None
    assert notifier.events == []


@pytest.mark.asyncio
async def test_update_with_no_changes_rejected(svc):
    order = await svc.create_order(_new())
    with pytest.raises(ValidationError):
        await svc.update_order(order.id, {})


# ─── Delete ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_delete_sends_pre_delete_snapshot(svc, notifier):
    order = await svc.create_order(_new())

    assert await svc.delete_order(order.id) is True

    assert notifier.events[-1] == (ORDER_DELETED, order)
    assert await svc.get_order(order.id) is None


@pytest.mark.asyncio
async def test_delete_missing_emits_nothing(svc, notifier):
    assert await svc.delete_order("ORD-missing") is False
    assert notifier.events == []


# ─── Queries ────────────────────────────────────────────


@pytest.mark.asyncio
async def test_search_requires_term(svc):
    with pytest.raises(ValidationError):
        await svc.search_orders("   ")


@pytest.mark.asyncio
async def test_list_and_stats(svc):
    await svc.create_order(_new(status=OrderStatus.PENDING))
    await svc.create_order(_new(status=OrderStatus.EN_ROUTE))
    await svc.create_order(_new(status=OrderStatus.EN_ROUTE, address="Via España #3, Paitilla"))

    page = await svc.list_orders(OrderFilters(status=OrderStatus.EN_ROUTE), PageRequest())
    assert page.total_matching == 2

    stats = await svc.get_order_stats()
    assert stats[OrderStatus.EN_ROUTE] == 2
    assert stats[OrderStatus.CANCELLED] == 0

    found = await svc.search_orders("españa")
    assert found.total_matching == 1


@pytest.mark.asyncio
async def test_initial_snapshot_is_first_page_newest_first(svc, clock):
    created = []
    for _ in range(8):
        created.append(await svc.create_order(_new()))
        clock.advance(1)

    snapshot = await svc.get_initial_snapshot()

    assert snapshot.total_matching == 8
    assert [o.id for o in snapshot.items] == [o.id for o in reversed(created)][:5]


# ─── Bulk ───────────────────────────────────────────────


@pytest.mark.asyncio
async def test_bulk_create_one_event_per_order(svc, notifier):
    result = await svc.create_orders([_new(), _new(), _new()])

    assert result.count == 3
    assert result.failed == []
    assert [e[0] for e in notifier.events] == [ORDER_CREATED] * 3
    assert [e[1] for e in notifier.events] == result.succeeded


@pytest.mark.asyncio
@pytest.mark.parametrize("size", [0, 101])
async def test_bulk_size_limits(svc, size):
    with pytest.raises(ValidationError):
        await svc.create_orders([_new()] * size)
    with pytest.raises(ValidationError):
        await svc.delete_orders(["ORD-00000001"] * size)


@pytest.mark.asyncio
async def test_bulk_update_collects_failures(svc, notifier):
    a = await svc.create_order(_new())
    notifier.events.clear()

    result = await svc.update_orders([
        (a.id, {"status": OrderStatus.IN_PROCESS}),
        ("ORD-missing", {"status": OrderStatus.IN_PROCESS}),
        (a.id, {}),
    ])

    assert [o.id for o in result.succeeded] == [a.id]
    assert {f.key for f in result.failed} == {"ORD-missing", a.id}
    assert result.requested == 3
    assert notifier.events == [(ORDER_UPDATED, result.succeeded[0])]


@pytest.mark.asyncio
async def test_bulk_delete_notifies_with_snapshots(svc, notifier):
    a = await svc.create_order(_new())
    b = await svc.create_order(_new())
    notifier.events.clear()

    result = await svc.delete_orders([a.id, "ORD-missing", b.id])

    assert result.succeeded == [a.id, b.id]
    assert [f.key for f in result.failed] == ["ORD-missing"]
    assert notifier.events == [(ORDER_DELETED, a), (ORDER_DELETED, b)]


@pytest.mark.asyncio
async def test_seed_sample_orders_handles_large_counts(svc):
    created = await svc.seed_sample_orders(230)
    assert len(created) == 230
    assert svc.store.total_count() == 230


# ─── Health ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health_healthy_without_errors(svc, clock):
    await svc.create_order(_new())
    clock.advance(42)

    health = await svc.get_service_health()

    assert health.status == "healthy"
    assert health.total_orders == 1
    assert health.active_connections == 2
    assert health.uptime == 42
    assert health.last_error is None


@pytest.mark.asyncio
async def test_health_degrades_with_error_recency(svc, clock):
    svc.record_error("Boom", RuntimeError("x"))

    assert (await svc.get_service_health()).status == "unhealthy"
    clock.advance(15)
    assert (await svc.get_service_health()).status == "degraded"
    clock.advance(60)
    assert (await svc.get_service_health()).status == "healthy"


@pytest.mark.asyncio
async def test_health_failure_raises_service_unavailable(svc):
    def broken():
        raise RuntimeError("store offline")

    svc.store.total_count = broken

    with pytest.raises(ServiceUnavailableError):
        await svc.get_service_health()
