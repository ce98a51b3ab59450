"""
DeepWiki Backend — FastAPI Application Factory
================================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() wires middleware, exception handlers and routers; the
       lifespan handler owns the Database client and storage backend.
Who:   uvicorn (uvicorn deepwiki.main:app).

Lifecycle:
    Startup:
    1. Configure logging
    2. Validate configuration (missing R2 credentials are logged)
    3. Build the Database client (retry bounds are checked here) and init it
    4. Build the storage backend and WikiService
    Shutdown:
    1. Dispose the Database client (close pooled connections)

Exception → status:
    ValidationError 400 | NotFoundError 404 | ConflictError 409
    RetryLimitExceeded / ConnectionClosedError 503
    DatabaseError / StorageError / anything else 500
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from deepwiki import __version__
from deepwiki.config import Settings, settings as default_settings
from deepwiki.database import create_database
from deepwiki.exceptions import (
    ConflictError,
    ConnectionClosedError,
    DatabaseError,
    DeepWikiError,
    NotFoundError,
    RetryLimitExceeded,
    StorageError,
    ValidationError,
)
from deepwiki.middleware.logging import RequestLoggingMiddleware
from deepwiki.middleware.request_id import (
    RequestIDLogFilter,
    RequestIDMiddleware,
    request_id_var,
)
from deepwiki.routes import health, pages, wikis
from deepwiki.services.storage_service import create_storage
from deepwiki.services.wiki_service import WikiService

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(log_level: str) -> None:
    """
    Configure the root logger once at startup.

    Format: 2026-01-15T12:00:00 [WARNING] deepwiki.retry [a1b2c3d4]: Database server closed...
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIDLogFilter())
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s [%(request_id)s]: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[handler],
        force=True,
    )

    # Third-party libraries log every operation at INFO/DEBUG
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("boto3").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    config: Settings = app.state.settings

    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging(config.log_level)
    logger.info("=" * 60)
    logger.info("DeepWiki Backend %s starting up...", __version__)

    try:
        config.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", str(e))
        logger.error("Fix the configuration and restart the server.")

    # An inverted backoff range raises here and aborts startup
    database = create_database(config)
    database.init()
    storage = create_storage(config)

    app.state.database = database
    app.state.storage = storage
    app.state.wiki_service = WikiService(database, storage, config)

    logger.info("Storage backend: %s", config.storage_backend)
    logger.info("Server ready at http://%s:%d", config.backend_host, config.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("DeepWiki Backend shutting down...")
    await database.dispose()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error(
    status_code: int,
    error: str,
    message: str,
    details: Optional[dict] = None,
    headers: Optional[dict] = None,
) -> JSONResponse:
    content = {"error": error, "message": message, "request_id": request_id_var.get("")}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map application exceptions to JSON error responses.

    Starlette picks the handler for the most specific class in the
    exception's MRO, so RetryLimitExceeded gets 503 even though it is a
    DatabaseError.

    Internal details (SQL, bucket names, keys) are logged, never returned.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("Validation error: %s", exc.message)
        return _error(400, "validation_error", exc.message, details=exc.context)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return _error(404, "not_found", exc.message)

    @app.exception_handler(ConflictError)
    async def handle_conflict(request: Request, exc: ConflictError):
        logger.warning("Conflict: %s", exc.message)
        return _error(409, "conflict", exc.message)

    @app.exception_handler(RetryLimitExceeded)
    async def handle_retry_limit(request: Request, exc: RetryLimitExceeded):
        logger.error("Database retry limit exceeded after %d attempts", exc.attempts)
        return _error(
            503,
            "service_unavailable",
            exc.message,
            headers={"Retry-After": "1"},
        )

    @app.exception_handler(ConnectionClosedError)
    async def handle_connection_closed(request: Request, exc: ConnectionClosedError):
        logger.error("Database connection closed: %s", exc.context)
        return _error(
            503,
            "service_unavailable",
            exc.message,
            headers={"Retry-After": "1"},
        )

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error(
            "Database error: %s | Context: %s",
            exc.message,
            exc.context,
        )
        return _error(
            500,
            "server_error",
            "An internal error occurred. Please try again later.",
        )

    @app.exception_handler(StorageError)
    async def handle_storage_error(request: Request, exc: StorageError):
        logger.error(
            "Storage error: %s | Context: %s",
            exc.message,
            exc.context,
        )
        return _error(500, "server_error", exc.message)

    @app.exception_handler(DeepWikiError)
    async def handle_app_error(request: Request, exc: DeepWikiError):
        logger.error(
            "Application error: %s | Context: %s",
            exc.message,
            exc.context,
        )
        return _error(500, "server_error", exc.message)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("Unexpected error: %s", str(exc), exc_info=True)
        return _error(
            500,
            "internal_server_error",
            "An unexpected error occurred. Please try again or contact support.",
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    """
    Assemble the application.

    Args:
        app_settings: Settings to run with; the environment-loaded settings
                      when omitted.
    """
    config = app_settings or default_settings

    app = FastAPI(
        title="DeepWiki API",
        description="Markdown wikis with page version history and rollback.",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = config

    # Middleware runs in reverse order of addition:
    # RequestID → Logging → GZip → CORS → route
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Total-Count", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(wikis.router)
    app.include_router(pages.router)
    app.include_router(health.router)

    return app


app = create_app()
