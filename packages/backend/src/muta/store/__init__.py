"""Order storage.

Learn: Everything above the store talks to the OrderRepository contract.
InMemoryOrderStore is the only backend today:

    store = InMemoryOrderStore()
    page = store.query_by_filters(OrderFilters(search="main"), PageRequest())
"""

from muta.store.base import (
    BulkFailure,
    BulkResult,
    OrderFilters,
    OrderRepository,
    PageRequest,
)
from muta.store.memory import InMemoryOrderStore

__all__ = [
    "BulkFailure",
    "BulkResult",
    "InMemoryOrderStore",
    "OrderFilters",
    "OrderRepository",
    "PageRequest",
]
