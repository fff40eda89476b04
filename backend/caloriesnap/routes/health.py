"""
CalorieSnap Backend: Health Check Route
========================================

What:  Health endpoint for monitoring and container probes.
How:   Checks upload storage reachability and whether the analysis webhook
       is configured. The webhook itself is not called: every call runs
       a full AI analysis.

Status levels:
    healthy:   storage reachable and webhook configured
    degraded:  either check failed (still HTTP 200)
"""

import logging
import time

from fastapi import APIRouter, Request

from caloriesnap import __version__
from caloriesnap.schemas.meal import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(request: Request) -> HealthResponse:
    state = request.app.state
    storage = state.file_service.storage

    storage_ok = await storage.health_check()
    if not storage_ok:
        logger.warning("Health check: %s storage unavailable", storage.mode)

    webhook_configured = bool(state.gateway.webhook_url)

    return HealthResponse(
        status="healthy" if storage_ok and webhook_configured else "degraded",
        version=__version__,
        storage_mode=storage.mode,
        storage="available" if storage_ok else "unavailable",
        webhook_configured=webhook_configured,
        analyses_stored=await state.result_store.count(),
        uptime_seconds=round(time.time() - _start_time, 2),
    )
