"""Pickup API service.

FastAPI application providing:
- Customer and pharmacy operations on pickup requests
- Lifecycle state machine enforcement through the lifecycle service
- Pharmacy dashboard stats

This module provides the app factory pattern for creating configured
FastAPI instances suitable for testing and production deployment.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from pharmapickup.api.middleware import ErrorHandlerMiddleware, RequestIDMiddleware
from pharmapickup.api.routers import pharmacy_router, pickups_router
from pharmapickup.services.events import (
    LifecycleEventDispatcher,
    build_dispatcher,
    close_dispatcher,
    log_lifecycle_event,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from pharmapickup.core.config import Settings

logger = logging.getLogger(__name__)

# Application metadata
API_TITLE = "Pharmacy Pickup API"
API_DESCRIPTION = """
Pickup request lifecycle service.

Customers ask a pharmacy to prepare medication for pickup; the pharmacy
confirms, back-orders, prepares, readies and completes the request, or
rejects it. Either side may cancel.

## Identity

Every call carries `X-Actor-Id` and `X-Actor-Role` (`CUSTOMER` or
`PHARMACY`), resolved by the gateway in front of this service.

## Documentation

- OpenAPI schema: `/api/openapi.json`
- Swagger UI: `/api/docs`
- ReDoc: `/api/redoc`
"""


def create_app(
    settings: Settings | None = None,
    dispatcher: LifecycleEventDispatcher | None = None,
) -> FastAPI:
    """Create and configure a FastAPI application instance.

    This factory function creates a FastAPI app with:
    - Pickup and pharmacy routers mounted under /api
    - Request ID middleware for request correlation
    - Error handling middleware for consistent JSON responses
    - OpenAPI documentation at /api/docs and /api/redoc

    Args:
        settings: Optional Settings instance. Without it, lifecycle rules
            fall back to their defaults.
        dispatcher: Lifecycle event dispatcher. Built from settings when
            omitted, or with only the audit log subscriber when there are
            no settings either.

    Returns:
        Configured FastAPI application ready to serve requests.
    """
    version = "0.1.0"
    if settings:
        version = settings.app_version

    if dispatcher is None:
        if settings is not None:
            dispatcher = build_dispatcher(settings)
        else:
            dispatcher = LifecycleEventDispatcher()
            dispatcher.subscribe(log_lifecycle_event)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        from pharmapickup.db import close_engine

        await close_dispatcher(app.state.dispatcher)
        await close_engine()

    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=version,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )

    # Store settings and dispatcher in app state for access in routes
    app.state.settings = settings
    app.state.dispatcher = dispatcher

    _add_middleware(app)
    _include_routers(app)

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint for container orchestration.

        Returns:
            Status dictionary indicating the service is healthy.
        """
        return {"status": "healthy"}

    logger.info("Pickup API application created (version=%s)", version)

    return app


def _add_middleware(app: FastAPI) -> None:
    """Add middleware to the application.

    The last middleware added is the outermost. Request ID wraps the error
    handler so error responses carry the request id too.

    Args:
        app: The FastAPI application instance.
    """
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestIDMiddleware)


def _include_routers(app: FastAPI) -> None:
    """Include API routers under the /api prefix.

    Args:
        app: The FastAPI application instance.
    """
    app.include_router(pickups_router, prefix="/api")
    app.include_router(pharmacy_router, prefix="/api")
