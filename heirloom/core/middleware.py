"""Middleware for correlation IDs and request logging."""
import uuid
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from heirloom.core.logging import StructuredLogger, get_logger

# =============================================================================
# Correlation ID Middleware
# =============================================================================

CORRELATION_ID_HEADER = "X-Request-ID"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Middleware to handle correlation IDs for request tracing.

    - Extracts X-Request-ID from incoming requests
    - Generates a new ID if not present
    - Adds the ID to response headers
    - Makes the ID available in request state
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get(CORRELATION_ID_HEADER)
        if not correlation_id:
            correlation_id = str(uuid.uuid4())

        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers[CORRELATION_ID_HEADER] = correlation_id

        return response


def get_correlation_id(request: Request) -> str:
    """Get correlation ID from request state."""
    return getattr(request.state, "correlation_id", str(uuid.uuid4()))


# =============================================================================
# Request Logging Middleware
# =============================================================================


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to log all requests with correlation IDs and timing.
    """

    def __init__(self, app, logger: StructuredLogger | None = None, exclude_paths: list[str] | None = None):
        super().__init__(app)
        self.logger = logger or get_logger(__name__)
        self.exclude_paths = exclude_paths or ["/health", "/metrics"]

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if any(request.url.path.startswith(p) for p in self.exclude_paths):
            return await call_next(request)

        start_time = time.time()
        correlation_id = get_correlation_id(request)

        response = await call_next(request)

        duration_ms = (time.time() - start_time) * 1000

        self.logger.info(
            "request",
            correlation_id=correlation_id,
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else "unknown",
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )

        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"

        return response
