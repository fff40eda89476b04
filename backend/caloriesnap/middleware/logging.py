"""
CalorieSnap Backend: Access Log Middleware
===========================================

What:  One log line per request on the "caloriesnap.access" logger.
How:   Measures wall time around the downstream call and picks the level
       from the status code (5xx ERROR, 4xx WARNING, else INFO).

Logged: method, path, status, duration, client IP, request ID.
Never logged: request bodies (image bytes) and headers.

GET /health is skipped; container probes hit it every few seconds.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from caloriesnap.middleware.request_id import current_request_id

access_logger = logging.getLogger("caloriesnap.access")

QUIET_PATHS = frozenset({"/health"})


def _level_for(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - started) * 1000

        client_ip = request.client.host if request.client else "unknown"
        rid = current_request_id()
        status = response.status_code

        access_logger.log(
            _level_for(status),
            "%s %s %d %.1fms [%s] from %s",
            request.method,
            path,
            status,
            duration_ms,
            rid,
            client_ip,
            extra={
                "request_id": rid,
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
            },
        )
        return response
