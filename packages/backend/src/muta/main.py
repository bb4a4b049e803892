"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. All in-memory state (store, session registry, notifier,
admission control, order service) is built here and hung on app.state,
so every test gets a fresh world by calling create_app() again.

Lifespan manages startup/shutdown (sample data, session sweeper).
Middleware, CORS, exception handlers and routers are all registered here.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from muta import __version__
from muta.api import api_router, health_router
from muta.config import Settings, settings
from muta.errors import AppError, error_payload
from muta.log import configure_logging
from muta.realtime.admission import AdmissionControl
from muta.realtime.heartbeat import SessionSweeper
from muta.realtime.notifier import OrderNotifier
from muta.realtime.sessions import SessionRegistry
from muta.services.order_service import OrderService
from muta.store.memory import InMemoryOrderStore

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs
    at shutdown.
    """
    cfg: Settings = app.state.settings
    logger.info(
        "muta.starting",
        version=__version__,
        environment=cfg.environment,
        port=cfg.port,
        ws_auth=cfg.ws_api_key is not None,
    )

    if cfg.seed_sample_orders > 0:
        await app.state.order_service.seed_sample_orders(cfg.seed_sample_orders)

    sweeper = SessionSweeper(app.state.admission, interval=cfg.ws_sweep_interval)
    sweeper_task = asyncio.create_task(sweeper.run_loop())

    yield

    logger.info("muta.shutdown", sessions=len(app.state.registry))
    await app.state.notifier.notify_system_status("shutting_down")

    sweeper.stop()
    sweeper_task.cancel()
    try:
        await sweeper_task
    except asyncio.CancelledError:
        pass


# ─── Exception handlers ──────────────────────────────────


def _field_errors(exc: RequestValidationError) -> list[dict[str, str]]:
    """Field path + message for each failure. The rejected input is never echoed."""
    fields = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ())]
        field = ".".join(loc[1:]) if len(loc) > 1 else ".".join(loc)
        fields.append({"field": field, "message": err.get("msg", "Invalid value")})
    return fields


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("http.app_error", code=exc.code, message=exc.message)
        else:
            logger.info("http.client_error", code=exc.code, message=exc.message)
        body = error_payload(exc.status_code, exc.code, exc.message)
        if exc.details:
            body["details"] = exc.details
        return JSONResponse(status_code=exc.status_code, content=body)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        fields = _field_errors(exc)
        message = "; ".join(f"{f['field']}: {f['message']}" for f in fields)
        body = error_payload(400, "VALIDATION_ERROR", message or "Invalid request")
        body["details"] = fields
        return JSONResponse(status_code=400, content=body)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("http.unhandled_error", error=str(exc))
        request.app.state.order_service.record_error("Unhandled request error", exc)
        return JSONResponse(
            status_code=500,
            content=error_payload(500, "INTERNAL_ERROR", "Internal server error"),
        )


def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    """Build and return the FastAPI application."""
    cfg = app_settings or settings
    configure_logging(cfg.log_level, cfg.log_format)

    app = FastAPI(
        title="Muta Orders",
        description="Real-time order synchronization backend",
        version=__version__,
        debug=cfg.debug,
        lifespan=lifespan,
    )

    # ── Shared state (one instance per app) ──────────────────
    registry = SessionRegistry()
    notifier = OrderNotifier(registry)
    app.state.settings = cfg
    app.state.started_at = datetime.now(timezone.utc)
    app.state.registry = registry
    app.state.notifier = notifier
    app.state.admission = AdmissionControl.from_settings(registry, cfg)
    app.state.order_service = OrderService(
        InMemoryOrderStore(),
        notifier,
        snapshot_size=cfg.initial_snapshot_size,
    )

    register_exception_handlers(app)

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: CORS → RateLimit → Security → RequestId → handler

    from muta.middleware.rate_limit import RateLimitMiddleware
    from muta.middleware.request_id import RequestIdMiddleware
    from muta.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RateLimitMiddleware, default_rpm=cfg.rate_limit_rpm)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With", "Accept", "X-Request-ID"],
        expose_headers=["X-Total-Count", "X-Page", "X-Total-Pages", "X-Request-ID"],
    )

    # Mount routes
    app.include_router(health_router, tags=["health"])
    app.include_router(api_router)

    from muta.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: muta.main:app)
app = create_app()
