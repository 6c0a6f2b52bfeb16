"""FastAPI application entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import timedelta

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.exceptions import HTTPException as StarletteHTTPException

from clinicq.api.v1.router import api_router
from clinicq.config import settings
from clinicq.core.clock import get_clock
from clinicq.core.exceptions import AppException
from clinicq.core.locks import get_lock_manager
from clinicq.core.redis_client import check_redis_connection, close_redis_connection
from clinicq.database import AsyncSessionLocal, check_database_connection, engine
from clinicq.middleware.error_handler import (
    app_exception_handler,
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from clinicq.middleware.logging import LoggingMiddleware, configure_logging
from clinicq.scheduling.sweeper import AppointmentSweeper, SweeperRunner
from clinicq.services.notification_service import get_notification_dispatcher

# Configure logging
configure_logging()
logger = structlog.get_logger()


def build_sweeper_runner() -> SweeperRunner:
    """Background sweeper wired to the process-wide collaborators."""
    sweeper = AppointmentSweeper(
        AsyncSessionLocal,
        clock=get_clock(),
        locks=get_lock_manager(),
        dispatcher=get_notification_dispatcher(),
    )
    return SweeperRunner(
        sweeper,
        sweep_interval=timedelta(minutes=settings.sweep_interval_minutes),
        reminder_interval=timedelta(minutes=settings.reminder_interval_minutes),
        cutoff=settings.end_of_day_cutoff,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    # Startup
    logger.info(
        "application_startup",
        environment=settings.environment,
        clinic_timezone=settings.clinic_timezone,
        lock_backend=settings.lock_backend,
    )

    if await check_database_connection():
        logger.info("database_connected")
    else:
        logger.error("database_connection_failed")

    if settings.uses_redis_locks or settings.schedule_cache_enabled:
        if await check_redis_connection():
            logger.info("redis_connected")
        else:
            logger.error("redis_connection_failed")

    runner = None
    if settings.sweeper_enabled:
        runner = build_sweeper_runner()
        runner.start()
    app.state.sweeper_runner = runner

    yield

    # Shutdown
    logger.info("application_shutdown")

    if runner is not None:
        await runner.stop()

    await engine.dispose()
    logger.info("database_connections_closed")

    await close_redis_connection()
    logger.info("redis_connection_closed")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Clinic appointment slot scheduling and queue engine",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add logging middleware
app.add_middleware(LoggingMiddleware)

# Add exception handlers
app.add_exception_handler(AppException, app_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(Exception, general_exception_handler)  # type: ignore[arg-type]

# Include API router
app.include_router(api_router, prefix=settings.api_v1_prefix)

# Setup Prometheus instrumentation
Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_instrument_requests_inprogress=True,
    excluded_handlers=["/docs", "/redoc", "/openapi.json", "/metrics"],
    inprogress_name="http_requests_inprogress",
    inprogress_labels=True,
).instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """
    Root endpoint.

    Returns:
        Welcome message
    """
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "clinicq.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_level=settings.log_level.lower(),
    )
