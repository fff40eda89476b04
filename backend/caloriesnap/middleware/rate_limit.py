"""
CalorieSnap Backend: Rate Limiting Middleware
==============================================

What:  Per-IP sliding window limit on the /api/ routes.
How:   Keeps a deque of request timestamps per client IP. Timestamps older
       than the window are popped from the left; when the deque is full
       the request is answered with 429 and a Retry-After header.

Image serving (/uploads/...) and /health are not limited: <img> tags and
probes would otherwise eat the analysis budget.

Single-process only. The counters live in this worker's memory.
"""

import logging
import time
from collections import deque
from typing import Callable, Deque, Dict

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from caloriesnap.exceptions import RateLimitExceededError
from caloriesnap.middleware.request_id import current_request_id

logger = logging.getLogger(__name__)

LIMITED_PREFIX = "/api/"


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app: ASGIApp,
        max_requests: int = 100,
        window_seconds: int = 3600,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}

    def _retry_after(self, client_ip: str, now: float):
        """Seconds until a slot frees up, or None when the request is allowed."""
        hits = self._hits.setdefault(client_ip, deque())
        cutoff = now - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()

        if len(hits) >= self.max_requests:
            return int(hits[0] + self.window_seconds - now) + 1

        hits.append(now)
        return None

    def _forget_idle(self, now: float) -> None:
        cutoff = now - self.window_seconds
        idle = [ip for ip, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for ip in idle:
            del self._hits[ip]

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if not request.url.path.startswith(LIMITED_PREFIX):
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        now = self._clock()
        retry_after = self._retry_after(client_ip, now)

        if retry_after is not None:
            exc = RateLimitExceededError(retry_after=retry_after)
            logger.warning(
                "Rate limit exceeded for %s: %d requests in %ds",
                client_ip,
                self.max_requests,
                self.window_seconds,
            )
            return JSONResponse(
                status_code=exc.status_code,
                content={
                    "error": exc.message,
                    "details": f"Retry after {retry_after} seconds",
                    "request_id": current_request_id(),
                },
                headers={"Retry-After": str(retry_after)},
            )

        if len(self._hits) > 1000:
            self._forget_idle(now)

        return await call_next(request)
