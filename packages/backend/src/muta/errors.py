"""Error taxonomy shared by the store, services, routes and WebSocket layer.

Learn: Every error knows its HTTP status and a stable machine code, so the
exception handlers in main.py can render any of them the same way.
"Not found" is NOT raised by the store — it returns None/False and the
route decides whether absence is a 404.
"""

from datetime import datetime, timezone
from http import HTTPStatus
from typing import Optional


class AppError(Exception):
    """Base class for expected, client-facing errors."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(AppError):
    """Malformed or out-of-range input."""

    status_code = 400
    code = "VALIDATION_ERROR"


class AuthenticationError(AppError):
    status_code = 401
    code = "UNAUTHORIZED"


class OriginRejectedError(AppError):
    """WebSocket handshake from an origin outside the allow-list."""

    status_code = 403
    code = "ORIGIN_REJECTED"


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str = "Resource"):
        super().__init__(f"{resource} not found")


class DuplicateKeyError(AppError):
    status_code = 409
    code = "DUPLICATE_KEY"


class RateLimitExceededError(AppError):
    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"


class ClientBlockedError(RateLimitExceededError):
    """A blocked session tried to send another message."""

    code = "CLIENT_BLOCKED"


class ServiceUnavailableError(AppError):
    status_code = 503
    code = "SERVICE_UNAVAILABLE"


def error_payload(status_code: int, code: str, message: str) -> dict:
    """The JSON body every error response shares."""
    return {
        "error": HTTPStatus(status_code).phrase,
        "message": message,
        "code": code,
        "statusCode": status_code,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
