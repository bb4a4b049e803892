"""Pydantic schemas for orders.

Learn: Python attributes are snake_case, the JSON wire format is camelCase
(collectorName, lastUpdated, pageSize...). The alias generator on CamelModel
handles the mapping both ways; populate_by_name lets Python code keep
using the snake_case names.

- Order: the stored entity (returned by the store and the API)
- OrderCreate / OrderUpdate: request bodies for POST / PUT
- Bulk*Request: bulk endpoints have their own schemas, capped at 100 items
- OrderPage: one page of a filtered, sorted query
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

MAX_BULK_ITEMS = 100
ORDER_ID_PATTERN = r"^[A-Za-z0-9_-]{8,50}$"


class CamelModel(BaseModel):
    model_config = {"alias_generator": to_camel, "populate_by_name": True}


class OrderStatus(str, Enum):
    PENDING = "pending"
    EN_ROUTE = "en-route"
    IN_PROCESS = "in-process"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Wire name → attribute name for ?sortBy=
SORTABLE_FIELDS: dict[str, str] = {
    "id": "id",
    "address": "address",
    "status": "status",
    "collectorName": "collector_name",
    "lastUpdated": "last_updated",
}


# ─── Entity ──────────────────────────────────────────────

class Order(CamelModel):
    id: str
    address: str
    status: OrderStatus
    collector_name: str
    last_updated: datetime


# ─── Requests ────────────────────────────────────────────

class OrderCreate(CamelModel):
    address: str = Field(..., min_length=5, max_length=200)
    status: OrderStatus
    collector_name: str = Field(..., min_length=2, max_length=100)


class OrderUpdate(CamelModel):
    """Partial update — only fields present in the body are applied."""
    address: Optional[str] = Field(None, min_length=5, max_length=200)
    status: Optional[OrderStatus] = None
    collector_name: Optional[str] = Field(None, min_length=2, max_length=100)

    def changes(self) -> dict[str, Any]:
        """Fields the caller actually sent, excluding explicit nulls."""
        return {
            k: v for k, v in self.model_dump(exclude_unset=True).items()
            if v is not None
        }


class BulkCreateRequest(CamelModel):
    orders: list[OrderCreate] = Field(..., min_length=1, max_length=MAX_BULK_ITEMS)


class BulkUpdateItem(CamelModel):
    id: str = Field(..., pattern=ORDER_ID_PATTERN)
    data: OrderUpdate


class BulkUpdateRequest(CamelModel):
    updates: list[BulkUpdateItem] = Field(..., min_length=1, max_length=MAX_BULK_ITEMS)


class BulkDeleteRequest(CamelModel):
    ids: list[str] = Field(..., min_length=1, max_length=MAX_BULK_ITEMS)


# ─── Responses ───────────────────────────────────────────

class OrderPage(CamelModel):
    items: list[Order]
    page: int
    page_size: int
    total_matching: int
    total_pages: int


class BulkFailureRead(CamelModel):
    key: str
    reason: str


class BulkSummary(CamelModel):
    requested: int
    succeeded: int
    failed: int


class BulkOrdersRead(CamelModel):
    succeeded: list[Order]
    failed: list[BulkFailureRead]
    summary: BulkSummary


class BulkDeleteRead(CamelModel):
    succeeded: list[str]
    failed: list[BulkFailureRead]
    summary: BulkSummary


class LastError(CamelModel):
    message: str
    timestamp: datetime


class ServiceHealth(CamelModel):
    status: str  # healthy | degraded | unhealthy
    total_orders: int
    active_connections: int
    uptime: float  # seconds
    last_error: Optional[LastError] = None
