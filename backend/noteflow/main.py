"""
NoteFlow Backend - FastAPI Application Factory
================================================

What:  Creates and configures the FastAPI application.
How:   create_app() assembles middleware, exception handlers and routes; the
       lifespan wires the intake pipeline onto app.state.
Who:   uvicorn (`uvicorn noteflow.main:app`).

Application Architecture:
    ┌─────────────────────────────────────────────────────┐
    │                   FastAPI App                       │
    │                                                     │
    │  Middleware:  Request ID → Access Log → CORS →      │
    │               Upload size guard                     │
    │                                                     │
    │  Routes:                                            │
    │  ┌──────────────────┐ ┌──────────────┐ ┌─────────┐  │
    │  │ /api/notes (CRUD)│ │ .../download │ │ /health │  │
    │  └──────────────────┘ └──────────────┘ └─────────┘  │
    │                                                     │
    │  app.state:                                         │
    │    database    Database handle                      │
    │    components  scratch, compressor, object store,   │
    │                intake service, shared HTTP client   │
    └─────────────────────────────────────────────────────┘

Lifecycle:
    Startup:
    1. Configure logging
    2. Validate configuration; an unconfigured remote store stops startup
    3. Build the intake components and the database handle
    Shutdown:
    1. Close the shared HTTP client
    2. Dispose the database engine
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from noteflow import __version__
from noteflow.config import Settings, settings as default_settings
from noteflow.database import Database
from noteflow.dependencies import build_components
from noteflow.exceptions import (
    DatabaseError,
    FileStorageError,
    IntakeError,
    IntakeFailure,
    NoteFlowError,
    NotFoundError,
    RecordStoreUnavailableError,
    UploadRejectedError,
    ValidationError,
)
from noteflow.logging_config import setup_logging
from noteflow.middleware.logging import RequestLoggingMiddleware
from noteflow.middleware.request_id import RequestIDMiddleware, request_id_var
from noteflow.middleware.upload_limit import UploadSizeGuardMiddleware
from noteflow.routes import health, notes

logger = logging.getLogger(__name__)

# Seconds a client should wait before re-submitting after a transient upload failure
UPLOAD_RETRY_AFTER_SECONDS = 30


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════


def make_lifespan(settings: Settings):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        setup_logging(settings.log_level)
        logger.info("=" * 60)
        logger.info("NoteFlow Backend %s starting up...", __version__)

        # ConfigurationError propagates: the server must not start without storage
        settings.validate_required_for_production()

        app.state.database = Database.from_settings(settings)
        app.state.components = build_components(settings)
        logger.info(
            "Intake ready: store=%s compressor=%s backing=%s hard_limit=%d",
            app.state.components.object_store.name,
            app.state.components.compressor.name,
            settings.intake_backing,
            settings.hard_limit_bytes,
        )
        logger.info("=" * 60)

        try:
            yield
        finally:
            logger.info("NoteFlow Backend shutting down...")
            await app.state.components.aclose()
            await app.state.database.dispose()
            logger.info("Shutdown complete.")

    return lifespan


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════


def _error(status_code: int, error: str, message: str, details: Optional[dict] = None, headers=None):
    content = {"error": error, "message": message, "request_id": request_id_var.get("")}
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def intake_status(exc: IntakeError) -> int:
    """HTTP status for an orchestrator failure."""
    if exc.kind == IntakeFailure.EMPTY_FILE:
        return 400
    if exc.kind in (IntakeFailure.TOO_LARGE, IntakeFailure.STILL_TOO_LARGE):
        return 413
    if exc.kind == IntakeFailure.COMPRESSION_UNAVAILABLE:
        return 422
    if isinstance(exc.cause, UploadRejectedError):
        return 502
    return 503


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map the exception hierarchy to JSON error responses.

        ValidationError              → 400
        NotFoundError                → 404
        IntakeError                  → 400 / 413 / 422 / 502 / 503 (intake_status)
        RecordStoreUnavailableError  → 503
        DatabaseError                → 500 (generic message)
        FileStorageError             → 500
        NoteFlowError (base)         → 500
        Exception (fallback)         → 500

    5xx bodies never carry internal context; it is logged instead.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        return _error(400, "validation_error", exc.message, exc.context)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return _error(404, "not_found", exc.message)

    @app.exception_handler(IntakeError)
    async def handle_intake_error(request: Request, exc: IntakeError):
        status = intake_status(exc)
        rid = request_id_var.get("")
        if status >= 500:
            logger.error("[%s] Upload failed: %s | cause: %r", rid, exc.message, exc.cause)
            headers = {"Retry-After": str(UPLOAD_RETRY_AFTER_SECONDS)} if status == 503 else None
            return _error(status, exc.kind.value, exc.message, {"kind": exc.kind.value}, headers)
        logger.warning("[%s] Upload refused (%s): %s", rid, exc.kind.value, exc.message)
        return _error(status, exc.kind.value, exc.message, exc.context)

    @app.exception_handler(RecordStoreUnavailableError)
    async def handle_record_store_unavailable(request: Request, exc: RecordStoreUnavailableError):
        logger.error("[%s] Record store unavailable: %s", request_id_var.get(""), exc.context)
        retry_after = {"Retry-After": str(UPLOAD_RETRY_AFTER_SECONDS)}
        return _error(503, "service_unavailable", exc.message, headers=retry_after)

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error("[%s] Database error: %s | Context: %s", request_id_var.get(""), exc.message, exc.context)
        return _error(500, "server_error", "An internal error occurred. Please try again later.")

    @app.exception_handler(FileStorageError)
    async def handle_file_storage_error(request: Request, exc: FileStorageError):
        logger.error("[%s] File storage error: %s | Context: %s", request_id_var.get(""), exc.message, exc.context)
        return _error(500, "server_error", exc.message)

    @app.exception_handler(NoteFlowError)
    async def handle_noteflow_error(request: Request, exc: NoteFlowError):
        logger.error("[%s] %s: %s | Context: %s", request_id_var.get(""), type(exc).__name__, exc.message, exc.context)
        return _error(500, "server_error", exc.message)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("[%s] Unexpected error: %s", request_id_var.get(""), str(exc), exc_info=True)
        return _error(
            500,
            "internal_server_error",
            "An unexpected error occurred. Please try again or contact support.",
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build a configured FastAPI instance.

    Tests pass their own Settings and override the dependencies in
    noteflow.dependencies instead of running the lifespan.
    """
    settings = settings or default_settings
    app = FastAPI(
        title="NoteFlow API",
        description="Share study notes. Large PDFs are compressed before they are stored.",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=make_lifespan(settings),
    )

    # Last added runs first: RequestID → Logging → CORS → Upload size guard
    app.add_middleware(UploadSizeGuardMiddleware, max_body_bytes=settings.max_request_body_bytes)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(notes.router)
    app.include_router(health.router)
    return app


app = create_app()
