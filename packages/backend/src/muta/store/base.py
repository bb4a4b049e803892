"""Order repository contract — the one interface every order backend implements.

Learn: The contract is synchronous on purpose. The in-memory store never
blocks, so there is nothing to await. A database-backed store would get
its own async contract; the coordinator (OrderService) is already async,
so callers above it would not change.

Value objects used across the contract:
- OrderFilters: what to match (status, free-text search)
- PageRequest: which slice, sorted how
- BulkResult: per-element outcome of a best-effort bulk operation
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Generic, Iterable, Mapping, Optional, TypeVar

from muta.schemas.order import Order, OrderPage, OrderStatus

T = TypeVar("T")


@dataclass
class OrderFilters:
    status: Optional[OrderStatus] = None
    search: Optional[str] = None


@dataclass
class PageRequest:
    """Pagination + sorting. page_size of 0/None means "everything"."""

    page: int = 1
    page_size: Optional[int] = 20
    sort_field: Optional[str] = None  # attribute name, e.g. "collector_name"
    sort_direction: str = "desc"


@dataclass
class BulkFailure:
    key: str  # order id
    reason: str


@dataclass
class BulkResult(Generic[T]):
    """Outcome of a best-effort bulk call — never an aggregate exception."""

    succeeded: list[T] = field(default_factory=list)
    failed: list[BulkFailure] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.succeeded)

    @property
    def requested(self) -> int:
        return len(self.succeeded) + len(self.failed)


class OrderRepository(ABC):
    """Authoritative keyed collection of orders.

    Only a duplicate id on create raises. Every other "missing" outcome is
    a None / False / empty result so the caller decides what absence means.
    """

    @abstractmethod
    def create(self, order: Order) -> Order:
        """Insert a new order. Raises DuplicateKeyError if the id exists."""

    @abstractmethod
    def find_by_id(self, order_id: str) -> Optional[Order]:
        ...

    @abstractmethod
    def find_all(self) -> list[Order]:
        ...

    @abstractmethod
    def update(self, order_id: str, changes: Mapping[str, Any]) -> Optional[Order]:
        """Shallow-merge changes into the order. None if it doesn't exist."""

    @abstractmethod
    def delete(self, order_id: str) -> bool:
        ...

    @abstractmethod
    def query_by_filters(
        self,
        filters: OrderFilters,
        page: Optional[PageRequest] = None,
    ) -> OrderPage:
        """Filter by status, then search, then sort, then slice."""

    @abstractmethod
    def count_by_status(self) -> dict[OrderStatus, int]:
        """Counts for every status, zero-filled."""

    @abstractmethod
    def total_count(self) -> int:
        ...

    def search(self, term: str, page: Optional[PageRequest] = None) -> OrderPage:
        return self.query_by_filters(OrderFilters(search=term), page)

    # ─── Bulk (best effort) ──────────────────────────────

    @abstractmethod
    def create_many(self, orders: Iterable[Order]) -> BulkResult[Order]:
        ...

    @abstractmethod
    def update_many(
        self, updates: Iterable[tuple[str, Mapping[str, Any]]]
    ) -> BulkResult[Order]:
        ...

    @abstractmethod
    def delete_many(self, order_ids: Iterable[str]) -> BulkResult[str]:
        ...
