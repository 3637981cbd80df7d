"""Sampark FastAPI application entry point.

Creates the FastAPI app, configures middleware and error handling,
includes routers, and manages the lifecycle of the backend collaborators
(database engine, cache, grievance lifecycle service).
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from config.settings import settings
from src.api.router import api_router
from src.services.errors import SamparkError

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Structured logging configuration
# ---------------------------------------------------------------------------


def _configure_logging() -> None:
    """Set up structlog with JSON or console rendering based on settings."""
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(settings.log_level.lower()),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build every collaborator once and tear it down on shutdown.

    On startup:
      1. Create the database engine and session factory (tables too,
         when enabled)
      2. Create the cache manager and the per-user caches
      3. Create the tracking-code allocator and the lifecycle service
      4. Store everything on ``app.state``

    On shutdown:
      - Close the cache connection pool and dispose of the engine.
    """
    _configure_logging()
    logger.info("app.startup", env=settings.env)

    app.state.start_time = time.time()

    # -- 1. Database --------------------------------------------------------
    from src.db.session import build_engine, build_session_factory, create_tables

    engine = build_engine(settings)
    if settings.create_tables_on_startup:
        await create_tables(engine)
    session_factory = build_session_factory(engine)
    app.state.engine = engine
    app.state.session_factory = session_factory

    # -- 2. Cache -----------------------------------------------------------
    from src.services.cache import CacheManager
    from src.services.grievance_cache import DraftFormCache, GrievanceListCache

    cache = CacheManager(
        redis_url=settings.redis_url or None,
        namespace="sampark:",
        inmemory_fallback=settings.draft_cache_inmemory_fallback,
    )
    # Without Redis every list read goes to the database; other workers
    # could never invalidate a process-local copy.
    list_cache_manager = CacheManager(
        redis_url=settings.redis_url or None,
        namespace="sampark:",
        inmemory_fallback=False,
    )
    app.state.cache = cache
    logger.info("app.cache_initialised", redis=bool(settings.redis_url))

    # -- 3. Lifecycle service -----------------------------------------------
    from src.services.grievance_lifecycle import GrievanceLifecycleService
    from src.services.tracking_code import TrackingCodeAllocator

    app.state.lifecycle = GrievanceLifecycleService(
        session_factory=session_factory,
        allocator=TrackingCodeAllocator(max_attempts=settings.tracking_code_max_attempts),
        list_cache=GrievanceListCache(list_cache_manager, ttl_seconds=settings.grievance_list_cache_ttl),
        drafts=DraftFormCache(cache, ttl_seconds=settings.draft_form_cache_ttl),
        max_page_size=settings.admin_max_page_size,
    )
    logger.info("app.startup_complete")

    yield

    # -- Shutdown -----------------------------------------------------------
    logger.info("app.shutdown_start")
    app.state.lifecycle = None
    await cache.close()
    await list_cache_manager.close()
    await engine.dispose()
    logger.info("app.shutdown_complete")


# ---------------------------------------------------------------------------
# FastAPI application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Sampark API",
    description=(
        "Sampark -- civic grievance submission and tracking. Citizens report "
        "municipal issues and follow them by tracking code; administrators "
        "triage and update their status."
    ),
    version="0.1.0",
    lifespan=lifespan,
    default_response_class=ORJSONResponse,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)

# -- CORS middleware --------------------------------------------------------
# Session cookies require credentials, which rules out a wildcard origin.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


# -- Domain errors ----------------------------------------------------------


@app.exception_handler(SamparkError)
async def sampark_error_handler(request: Request, exc: SamparkError) -> ORJSONResponse:
    if exc.status_code >= 500:
        logger.error("api.request_failed", path=request.url.path, error=type(exc).__name__, detail=exc.message)
    else:
        logger.info("api.request_rejected", path=request.url.path, error=type(exc).__name__, detail=exc.message)
    return ORJSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# -- Include routers -------------------------------------------------------
app.include_router(api_router)


@app.get("/")
async def root() -> dict:
    """API information endpoint."""
    return {
        "name": "Sampark API",
        "version": app.version,
        "docs": "/docs",
        "health": "/api/v1/health",
        "endpoints": {
            "grievance": "/api/v1/grievance",
            "admin": "/api/v1/admin",
        },
    }
