"""
FastAPI application factory and configuration.

This module creates the FastAPI application instance,
configures exception handlers and lifespan events.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from portal_auth.adapters.repository.pools import DatabasePools
from portal_auth.api.errors import register_error_handlers
from portal_auth.api.v1 import router as v1_router
from portal_auth.config.settings import get_settings

logger = logging.getLogger(__name__)

# OpenAPI tags for documentation grouping
tags_metadata = [
    {
        "name": "v1",
        "description": "Portal authentication API v1 - Signup, login, TFA, sessions, "
        "password reset and email change for every portal",
    },
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    FastAPI lifespan context manager.

    Manages application startup and shutdown:
    - Configures logging
    - Creates the global and regional connection pools on startup
    - Runs migrations on startup
    - Closes every pool on shutdown
    """
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    logger.info("Starting application (region %s)...", settings.current_region.value)
    pools = DatabasePools.open(settings)

    logger.info("Running database migrations...")
    pools.migrate()

    # Store pools in app state for dependency injection
    app.state.pools = pools

    logger.info("Application startup complete")

    yield

    # Shutdown
    logger.info("Shutting down application...")
    pools.close()


app = FastAPI(
    title="portal-auth",
    description="Multi-portal authentication API - Token lifecycle, TFA and regional sessions",
    version="0.1.0",
    openapi_tags=tags_metadata,
    lifespan=lifespan,
)

register_error_handlers(app)

# Include v1 API routes
app.include_router(v1_router, prefix="/v1")


@app.get("/health")
def health_check(request: Request) -> dict[str, str]:
    """
    Health check endpoint with database validation.

    Returns 200 OK if the application and every database are reachable.
    Raises exception if a database connection fails.
    """
    pools: DatabasePools = request.app.state.pools
    with pools.global_pool.connection() as conn:
        conn.execute("SELECT 1")
    for pool in pools.regional_pools.values():
        with pool.connection() as conn:
            conn.execute("SELECT 1")

    return {"status": "healthy"}
