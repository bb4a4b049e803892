"""Liveness check and endpoint index.

Learn: /health answers as long as the process is up. It reports uptime
and WebSocket session stats; order-level health (recent errors, 503 when
unhealthy) lives at /api/orders/health.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Request

from muta import __version__

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Process liveness plus connection stats."""
    state = request.app.state
    return {
        "status": "ok",
        "version": __version__,
        "environment": state.settings.environment,
        "uptime": (datetime.now(timezone.utc) - state.started_at).total_seconds(),
        "connections": state.notifier.stats(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/api")
async def api_index():
    """Discoverable list of endpoints."""
    return {
        "name": "Muta Orders API",
        "version": __version__,
        "endpoints": {
            "orders": "/api/orders",
            "search": "/api/orders/search",
            "stats": "/api/orders/stats",
            "health": "/api/orders/health",
            "bulk": "/api/orders/bulk",
            "websocket": "/ws/orders",
        },
    }
