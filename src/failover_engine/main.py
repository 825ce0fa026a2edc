"""FastAPI application entry-point.

Serves the engine's status surface: health, provider status, admin reset,
and Prometheus metrics.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI

from failover_engine.adapters.inbound.rest.routers import health_router, providers_router
from failover_engine.config import Settings, get_settings
from failover_engine.dependencies import build_engine
from failover_engine.shared.errors import register_exception_handlers
from failover_engine.shared.middleware import RequestContextMiddleware
from failover_engine.shared.observability import configure_logging
from failover_engine.shared.providers.engine import RateLimitEngine

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifecycle — startup & shutdown hooks."""
    settings: Settings = app.state.settings
    engine: RateLimitEngine = app.state.engine
    configure_logging(
        log_level=settings.log_level,
        json_logs=settings.is_production,
    )
    logger.info(
        "application_starting",
        env=settings.app_env.value,
        providers=list(engine.registry.provider_ids),
    )

    yield

    engine.close()
    logger.info("application_shutdown")


def create_app(
    settings: Settings | None = None,
    engine: RateLimitEngine | None = None,
) -> FastAPI:
    """Application factory — creates a fully configured FastAPI instance."""
    settings = settings or get_settings()

    app = FastAPI(
        title="Provider Failover Engine",
        description=(
            "Tracks model-provider quotas and cooldowns and reports which "
            "provider sessions should route to."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.engine = engine or build_engine(settings)

    app.add_middleware(RequestContextMiddleware)
    register_exception_handlers(app)

    api_v1 = "/api/v1"
    app.include_router(health_router, prefix=api_v1)
    app.include_router(providers_router, prefix=api_v1)

    return app


def run() -> None:
    """Console entry-point: serve the status API with uvicorn."""
    settings = get_settings()
    uvicorn.run(
        "failover_engine.main:create_app",
        factory=True,
        host=settings.app_host,
        port=settings.app_port,
        log_level=settings.log_level.lower(),
    )
