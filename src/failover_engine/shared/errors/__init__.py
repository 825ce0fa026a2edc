"""Global exception handlers — map domain errors to HTTP responses."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import structlog

from failover_engine.domain.exceptions import (
    ConfigurationError,
    DomainError,
    NoProviderAvailableError,
    UnknownProviderError,
)

logger = structlog.get_logger(__name__)


def _error(status_code: int, exc: DomainError) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"code": exc.code, "message": exc.message},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all domain→HTTP exception mappings."""

    @app.exception_handler(UnknownProviderError)
    async def handle_unknown_provider(request: Request, exc: UnknownProviderError) -> JSONResponse:
        return _error(404, exc)

    @app.exception_handler(NoProviderAvailableError)
    async def handle_no_provider(request: Request, exc: NoProviderAvailableError) -> JSONResponse:
        logger.warning("no_provider_http", message=exc.message)
        return _error(503, exc)

    @app.exception_handler(ConfigurationError)
    async def handle_configuration(request: Request, exc: ConfigurationError) -> JSONResponse:
        logger.error("configuration_error_http", message=exc.message)
        return _error(422, exc)

    @app.exception_handler(DomainError)
    async def handle_domain(request: Request, exc: DomainError) -> JSONResponse:
        return _error(400, exc)
