"""Library API: FastAPI entry point.

Registers middleware, routers, exception handlers and lifecycle hooks.
Each vertical adds its own router under /api/{vertical}/.
"""

import os
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.middleware import RequestContextMiddleware, get_request_id
from core import database
from core.logging import configure_logging
from verticals.library.config import config
from verticals.library.errors import (
    CatalogViolation,
    CycleDetected,
    EntityNotFound,
    LendingValidationError,
    LibraryError,
    MissingCondition,
    PolicyViolation,
    StockUpdateConflict,
)

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS", "http://localhost:3000,http://localhost:3001"
).split(",")
DEBUG = os.getenv("DEBUG", "true").lower() == "true"

# Most specific first; the first isinstance match wins.
_STATUS_CODES: list[tuple[type[LibraryError], int]] = [
    (LendingValidationError, 422),
    (EntityNotFound, 404),
    (PolicyViolation, 409),
    (CatalogViolation, 409),
    (StockUpdateConflict, 503),
    (CycleDetected, 500),
    (MissingCondition, 500),
]


def status_code_for(exc: LibraryError) -> int:
    for error_type, status_code in _STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 400


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup/shutdown hooks."""
    configure_logging(level=config.logging.level, json_output=config.logging.json_output)

    if DEBUG:
        # dev convenience: create tables and seed the default policy
        import verticals.library.models.db_models  # noqa: F401
        from verticals.library.catalog import CatalogService

        await database.init_db()
        async with database.get_session_context() as session:
            await CatalogService(session).seed_default_conditions()

    logger.info("api.started", debug=DEBUG)
    yield
    await database.close_db()
    logger.info("api.stopped")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Library",
    description="Library catalog and borrowing eligibility engine",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Request id binding for structured logs
app.add_middleware(RequestContextMiddleware)


@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error("api.error", code=exc.code, error=exc.message)
    body = exc.to_dict()
    request_id = get_request_id()
    if request_id:
        body["request_id"] = request_id
    return JSONResponse(status_code=status_code, content=body)


# ---------------------------------------------------------------------------
# Routers: verticals register here
# ---------------------------------------------------------------------------

from verticals.library.router import router as library_router  # noqa: E402

app.include_router(library_router, prefix="/api/library", tags=["Library"])


# ---------------------------------------------------------------------------
# Health & root
# ---------------------------------------------------------------------------

@app.get("/health")
async def health():
    return {"status": "healthy", "version": "0.1.0"}


@app.get("/")
async def root():
    return {
        "name": "Library",
        "version": "0.1.0",
        "docs": "/docs",
        "verticals": ["library"],
    }
