"""
FastAPI Application Entry Point.

This is the main application file for the Ride-Sharing Backend.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from rideshare.app.core.config import settings
from rideshare.app.api.v1.router import router as api_v1_router
from rideshare.app.db.session import engine, Base
from rideshare.app.core.observability import ObservabilityMiddleware, setup_logging
from rideshare.app.core.redis_client import ping_redis
from rideshare.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from rideshare.app.models.audit_log import AuditLog  # noqa: F401
from rideshare.app.models.route import Route  # noqa: F401
from rideshare.app.models.stop_point import StopPoint  # noqa: F401
from rideshare.app.models.trip import Trip  # noqa: F401
from rideshare.app.models.trip_request import TripRequest  # noqa: F401


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Configures logging.
    2. Creates database tables on startup.
    3. Disposes the engine pool on shutdown.
    """
    setup_logging()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Ride-sharing coordination: routes, trips and seat requests",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status, application information and Redis reachability
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "up" if await ping_redis() else "down",
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to the Ride-Sharing Backend API",
        "docs": "/docs",
        "health": "/health",
    }
