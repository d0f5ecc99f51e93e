"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers) to
improve testability and separation of concerns compared to a monolithic main.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from anonchat.api.routes import admin_router, health_router, session_router
from anonchat.core.config import settings
from anonchat.core.dependencies import close_store
from anonchat.core.exception_handlers import setup_exception_handlers
from anonchat.core.logging import configure_logging
from anonchat.core.middleware import request_context_middleware
from anonchat.core.openapi import apply_openapi_customizations

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "app.startup",
        extra={
            "app_env": settings.app_env,
            "store_backend": settings.store.backend,
            "rate_limit_enabled": settings.rate_limit.enabled,
        },
    )
    yield
    await close_store()
    logger.info("app.shutdown")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Anonymous Chat Gate",
        description=(
            "Anonymous identity and rate limiting for a chat service: session "
            "bootstrap by client address, multi-window sliding rate limits, a "
            "daily message quota per session, and merge of anonymous sessions."
        ),
        version="0.1.0",
        debug=settings.app.debug,
        lifespan=lifespan,
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
    )

    # Middleware
    app.middleware("http")(request_context_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(session_router, prefix="/v1")
    app.include_router(admin_router, prefix="/v1")
    app.include_router(health_router)

    # OpenAPI customizations (security schemes, tags, exemptions)
    apply_openapi_customizations(app)

    return app
