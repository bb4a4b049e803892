"""Rate limiting middleware — in-process fixed window per IP.

Learn: One counter per (IP, minute). The server is a single process with
all state in memory, so the counters live in a dict instead of Redis;
old minutes are dropped whenever the window rolls over.

/health is never limited — load balancers poll it constantly.
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from muta.errors import RateLimitExceededError, error_payload

logger = structlog.get_logger()

EXEMPT_PATHS = {"/health"}


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-IP, per-minute request limit."""

    def __init__(self, app, default_rpm: int = 100):
        super().__init__(app)
        self.default_rpm = default_rpm
        self._window = 0
        self._counts: dict[str, int] = {}

    def _hit(self, client_ip: str) -> int:
        window = int(time.time() // 60)
        if window != self._window:
            self._window = window
            self._counts.clear()
        self._counts[client_ip] = self._counts.get(client_ip, 0) + 1
        return self._counts[client_ip]

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        count = self._hit(client_ip)
        rpm = self.default_rpm

        if count > rpm:
            logger.warning(
                "security.rate_limit_exceeded",
                ip=client_ip,
                path=request.url.path,
                user_agent=request.headers.get("user-agent"),
            )
            return JSONResponse(
                status_code=429,
                content=error_payload(
                    429,
                    RateLimitExceededError.code,
                    "Too many requests from this IP, please try again later",
                ),
                headers={"Retry-After": "60"},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(rpm)
        response.headers["X-RateLimit-Remaining"] = str(max(0, rpm - count))
        return response
