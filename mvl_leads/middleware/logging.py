"""
Logging middleware for request/response logging.

Logs every HTTP request with timing and records the request metrics.
"""
import time
import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from mvl_leads.routes.metrics import track_request

logger = structlog.get_logger()


def route_template(request: Request) -> str:
    """Matched route path (e.g. /api/contact/status), falling back to the raw path."""
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to log all HTTP requests with timing and context.

    Adds: route, method, client_ip, duration_ms, status to every log.
    Lead fields are never logged here; handlers log submission ids only.
    """

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        request_logger = logger.bind(
            route=request.url.path,
            method=request.method,
            client_ip=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)
        except Exception as e:
            duration = time.time() - start_time
            track_request(request.method, route_template(request), 500, duration)
            request_logger.error(
                "request_failed",
                status_code=500,
                duration_ms=round(duration * 1000, 2),
                error=str(e)
            )
            raise

        duration = time.time() - start_time
        track_request(request.method, route_template(request), response.status_code, duration)

        request_logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 2)
        )

        return response
