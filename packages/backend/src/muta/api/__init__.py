"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Order routes live under /api. The liveness check (/health) and the
endpoint index (/api) are mounted at the root by health_router — load
balancers probe /health without knowing the API prefix.
"""

from fastapi import APIRouter

from muta.api.health import router as health_router
from muta.api.orders import router as orders_router

api_router = APIRouter(prefix="/api")

api_router.include_router(orders_router, tags=["orders"])

__all__ = ["api_router", "health_router"]
