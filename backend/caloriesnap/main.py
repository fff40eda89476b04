"""
CalorieSnap Backend: FastAPI Application Factory
=================================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() builds the storage backend, file service, analysis
       gateway and result store, hangs them on app.state, then registers
       middleware, exception handlers and routers.
Who:   uvicorn (uvicorn caloriesnap.main:app) and the test suite, which
       calls create_app() with its own Settings and webhook transport.

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                      FastAPI App                         │
    │                                                          │
    │  app.state:                                              │
    │    file_service ──▶ ObjectStorage (local disk │ S3)      │
    │    gateway      ──▶ n8n webhook (httpx)                  │
    │    result_store ──▶ InMemoryResultStore                  │
    │                                                          │
    │  Exception Handlers:                                     │
    │    InputError→400  PayloadTooLarge→413  NotFound→404     │
    │    AnalysisError→500 {"error": "Failed to analyze meal"} │
    └──────────────────────────────────────────────────────────┘
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from caloriesnap import __version__
from caloriesnap.config import Settings, settings as default_settings
from caloriesnap.exceptions import (
    AnalysisError,
    CalorieSnapError,
    FileStorageError,
    InputError,
    NotFoundError,
    RateLimitExceededError,
)
from caloriesnap.middleware.logging import RequestLoggingMiddleware
from caloriesnap.middleware.rate_limit import RateLimitMiddleware
from caloriesnap.middleware.request_id import RequestIDMiddleware, current_request_id
from caloriesnap.routes import analysis, health, uploads
from caloriesnap.services.analysis_gateway import AnalysisGateway
from caloriesnap.services.file_service import FileService
from caloriesnap.services.local_storage import LocalObjectStorage
from caloriesnap.services.result_store import InMemoryResultStore
from caloriesnap.services.s3_storage import S3ObjectStorage
from caloriesnap.services.storage_base import ObjectStorage

logger = logging.getLogger(__name__)

ANALYSIS_FAILED = "Failed to analyze meal"


# ══════════════════════════════════════════════════════════════════════════
# Logging Setup
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(level: str = "INFO") -> None:
    """
    Configure the root logger once for the whole process.

    Format: 2025-01-15T12:00:00 [INFO] caloriesnap.access: POST /api/analyze-meal 200 ...
    """
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Our access middleware replaces uvicorn's access log
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Component Wiring
# ══════════════════════════════════════════════════════════════════════════

def build_storage(config: Settings) -> ObjectStorage:
    if config.storage_mode == "s3":
        return S3ObjectStorage(
            bucket=config.s3_bucket or "",
            region=config.s3_region,
            endpoint_url=config.s3_endpoint_url,
            upload_url_expiry=config.s3_upload_url_expiry,
        )
    return LocalObjectStorage(storage_root=config.storage_root)


def _lifespan_for(config: Settings):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        setup_logging(config.log_level)
        logger.info("=" * 60)
        logger.info("CalorieSnap Backend %s starting up...", __version__)

        # Logged only; analyze-meal reports a missing webhook per request
        try:
            config.validate_required_for_production()
        except ValueError as e:
            logger.error("Configuration error: %s", str(e))

        logger.info("Storage mode: %s", app.state.file_service.storage.mode)
        logger.info("Server ready at http://%s:%d", config.backend_host, config.backend_port)
        logger.info("=" * 60)

        yield

        stored = await app.state.result_store.count()
        logger.info("CalorieSnap Backend shutting down (%d analyses in memory discarded)", stored)

    return lifespan


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or current_request_id()


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map application exceptions to JSON error responses.

    Error body: {"error": <message>, "request_id": <id>} plus "details" for
    500s. Analysis failures always carry the fixed error string and put the
    stage message in "details"; the stage context is only logged.
    """

    @app.exception_handler(InputError)
    async def handle_input_error(request: Request, exc: InputError):
        rid = _request_id(request)
        logger.warning("[%s] Input error: %s", rid, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "request_id": rid},
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        rid = _request_id(request)
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = first.get("msg", "Invalid request")
        if field:
            message = f"Invalid request field '{field}': {message}"
        logger.warning("[%s] Request validation failed: %s", rid, message)
        return JSONResponse(status_code=400, content={"error": message, "request_id": rid})

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return JSONResponse(
            status_code=404,
            content={"error": exc.message, "request_id": _request_id(request)},
        )

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError):
        return JSONResponse(
            status_code=429,
            content={
                "error": exc.message,
                "details": f"Retry after {exc.retry_after} seconds",
                "request_id": _request_id(request),
            },
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(FileStorageError)
    async def handle_file_storage_error(request: Request, exc: FileStorageError):
        rid = _request_id(request)
        logger.error("[%s] File storage error: %s | Context: %s", rid, exc.message, exc.context)
        return JSONResponse(
            status_code=500,
            content={"error": "File storage error", "details": exc.message, "request_id": rid},
        )

    @app.exception_handler(AnalysisError)
    async def handle_analysis_error(request: Request, exc: AnalysisError):
        rid = _request_id(request)
        logger.error(
            "[%s] Meal analysis failed at %s stage: %s | Context: %s",
            rid,
            exc.stage,
            exc.message,
            exc.context,
        )
        return JSONResponse(
            status_code=500,
            content={"error": ANALYSIS_FAILED, "details": exc.message, "request_id": rid},
        )

    @app.exception_handler(CalorieSnapError)
    async def handle_app_error(request: Request, exc: CalorieSnapError):
        rid = _request_id(request)
        logger.error("[%s] %s: %s | Context: %s", rid, type(exc).__name__, exc.message, exc.context)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "request_id": rid},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = _request_id(request)
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "details": "An unexpected error occurred. Please try again.",
                "request_id": rid,
            },
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(
    config: Optional[Settings] = None,
    storage: Optional[ObjectStorage] = None,
    webhook_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        config:            Settings to use (defaults to the env-derived singleton)
        storage:           ObjectStorage override (defaults to the configured mode)
        webhook_transport: httpx transport for the webhook and image downloads

    Returns:
        Fully configured FastAPI instance.
    """
    config = config or default_settings

    app = FastAPI(
        title="CalorieSnap API",
        description=(
            "Meal photo nutrition estimator. Upload a photo of a meal and get the "
            "recognized food items with calories, protein, carbs and fat."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=_lifespan_for(config),
    )

    file_service = FileService(
        storage=storage or build_storage(config),
        max_file_size=config.max_file_size,
        public_base_url=config.public_base_url,
    )
    app.state.settings = config
    app.state.file_service = file_service
    app.state.gateway = AnalysisGateway(
        file_service=file_service,
        webhook_url=config.webhook_url,
        webhook_timeout=config.webhook_timeout,
        image_fetch_timeout=config.image_fetch_timeout,
        transport=webhook_transport,
    )
    app.state.result_store = InMemoryResultStore()

    # ── Middleware (last added runs first) ────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(
        RateLimitMiddleware,
        max_requests=config.rate_limit_requests,
        window_seconds=config.rate_limit_window,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(uploads.router)
    app.include_router(analysis.router)
    app.include_router(health.router)

    return app


app = create_app()
