"""Order API routes.

Learn: These routes are the HTTP interface to OrderService. The service
does the work (id generation, notification, bulk bookkeeping); routes
translate query params into filters/pages and absence into 404.

Key patterns:
- Fixed paths (/stats, /health, /search, /bulk) are declared BEFORE
  /orders/{order_id}, otherwise FastAPI would match them as ids
- PUT is a partial update (only the fields sent are applied)
- List responses carry X-Total-Count / X-Page / X-Total-Pages
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, Request, Response
from fastapi.responses import JSONResponse

from muta.errors import NotFoundError
from muta.schemas.order import (
    ORDER_ID_PATTERN,
    SORTABLE_FIELDS,
    BulkCreateRequest,
    BulkDeleteRead,
    BulkDeleteRequest,
    BulkOrdersRead,
    BulkUpdateRequest,
    Order,
    OrderCreate,
    OrderPage,
    OrderStatus,
    OrderUpdate,
    ServiceHealth,
)
from muta.services.order_service import OrderService
from muta.store.base import BulkResult, OrderFilters, PageRequest

router = APIRouter()


def _order_svc(request: Request) -> OrderService:
    return request.app.state.order_service


def _page_request(
    page: int = Query(1, ge=1, le=1000),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder", pattern="^(asc|desc)$"),
) -> PageRequest:
    """Paging/sorting params shared by list and search. Unknown sortBy is ignored."""
    return PageRequest(
        page=page,
        page_size=page_size,
        sort_field=SORTABLE_FIELDS.get(sort_by) if sort_by else None,
        sort_direction=sort_order,
    )


def _set_page_headers(response: Response, page: OrderPage) -> None:
    response.headers["X-Total-Count"] = str(page.total_matching)
    response.headers["X-Page"] = str(page.page)
    response.headers["X-Total-Pages"] = str(page.total_pages)


def _bulk_body(result: BulkResult) -> dict:
    return {
        "succeeded": result.succeeded,
        "failed": [{"key": f.key, "reason": f.reason} for f in result.failed],
        "summary": {
            "requested": result.requested,
            "succeeded": result.count,
            "failed": len(result.failed),
        },
    }


# ═══════════════════════════════════════════════════════════
# Queries
# ═══════════════════════════════════════════════════════════


@router.get("/orders", response_model=OrderPage)
async def list_orders(
    response: Response,
    status: Optional[str] = Query(None, description="Filter by status"),
    search: Optional[str] = Query(None, max_length=100),
    page: PageRequest = Depends(_page_request),
    svc: OrderService = Depends(_order_svc),
):
    """List orders, filtered, sorted and paginated. An unknown status is ignored."""
    valid_statuses = {s.value for s in OrderStatus}
    filters = OrderFilters(
        status=OrderStatus(status) if status in valid_statuses else None,
        search=(search.strip() or None) if search else None,
    )
    result = await svc.list_orders(filters, page)
    _set_page_headers(response, result)
    return result


@router.get("/orders/stats", response_model=dict[str, int])
async def order_stats(svc: OrderService = Depends(_order_svc)):
    """Order count per status (every status present, zeros included)."""
    counts = await svc.get_order_stats()
    return {status.value: n for status, n in counts.items()}


@router.get("/orders/health", response_model=ServiceHealth)
async def order_service_health(svc: OrderService = Depends(_order_svc)):
    """Service health; 503 when unhealthy so load balancers notice."""
    health = await svc.get_service_health()
    status_code = 503 if health.status == "unhealthy" else 200
    return JSONResponse(
        status_code=status_code,
        content=health.model_dump(mode="json", by_alias=True),
    )


@router.get("/orders/search", response_model=OrderPage)
async def search_orders(
    response: Response,
    search: str = Query(..., min_length=1, max_length=100),
    page: PageRequest = Depends(_page_request),
    svc: OrderService = Depends(_order_svc),
):
    """Case-insensitive search over id, collector name and address."""
    result = await svc.search_orders(search, page)
    _set_page_headers(response, result)
    return result


# ═══════════════════════════════════════════════════════════
# Bulk
# ═══════════════════════════════════════════════════════════


@router.post("/orders/bulk", response_model=BulkOrdersRead, status_code=201)
async def bulk_create_orders(
    body: BulkCreateRequest,
    svc: OrderService = Depends(_order_svc),
):
    result = await svc.create_orders(body.orders)
    return _bulk_body(result)


@router.put("/orders/bulk", response_model=BulkOrdersRead)
async def bulk_update_orders(
    body: BulkUpdateRequest,
    svc: OrderService = Depends(_order_svc),
):
    result = await svc.update_orders([(u.id, u.data.changes()) for u in body.updates])
    return _bulk_body(result)


@router.delete("/orders/bulk", response_model=BulkDeleteRead)
async def bulk_delete_orders(
    body: BulkDeleteRequest,
    svc: OrderService = Depends(_order_svc),
):
    result = await svc.delete_orders(body.ids)
    return _bulk_body(result)


# ═══════════════════════════════════════════════════════════
# Single order
# ═══════════════════════════════════════════════════════════


@router.post("/orders", response_model=Order, status_code=201)
async def create_order(
    body: OrderCreate,
    svc: OrderService = Depends(_order_svc),
):
    """Create an order. The server assigns id and lastUpdated."""
    return await svc.create_order(body)


@router.get("/orders/{order_id}", response_model=Order)
async def get_order(
    order_id: str = Path(..., pattern=ORDER_ID_PATTERN),
    svc: OrderService = Depends(_order_svc),
):
    order = await svc.get_order(order_id)
    if order is None:
        raise NotFoundError("Order")
    return order


@router.put("/orders/{order_id}", response_model=Order)
async def update_order(
    body: OrderUpdate,
    order_id: str = Path(..., pattern=ORDER_ID_PATTERN),
    svc: OrderService = Depends(_order_svc),
):
    """Partial update. Only the fields present in the body change."""
    order = await svc.update_order(order_id, body.changes())
    if order is None:
        raise NotFoundError("Order")
    return order


@router.delete("/orders/{order_id}", status_code=204)
async def delete_order(
    order_id: str = Path(..., pattern=ORDER_ID_PATTERN),
    svc: OrderService = Depends(_order_svc),
):
    if not await svc.delete_order(order_id):
        raise NotFoundError("Order")
    return Response(status_code=204)
