"""FastAPI application for HookRelay."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from hookrelay.config import Settings
from hookrelay.exceptions import (
    AuthenticationError,
    HookRelayError,
    NotFoundError,
    RegistryUnavailable,
    ValidationError,
)
from hookrelay.logging import configure_logging, get_logger
from hookrelay.service import HookRelayService

from .router import API_VERSION, router, set_service

logger = get_logger(__name__)


def _build_lifespan(
    settings: Settings,
) -> Callable[[FastAPI], AbstractAsyncContextManager[None]]:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Initialize storage and the retry worker on startup; stop them on shutdown."""
        configure_logging(level=settings.log_level, format=settings.log_format)
        logger.info(
            "Starting HookRelay API",
            retry_mode=settings.retry_mode,
            log_level=settings.log_level,
        )

        service = HookRelayService.create(settings)
        await service.initialize(start_worker=settings.worker_enabled)
        set_service(service)

        yield

        await service.close()
        set_service(None)
        logger.info("HookRelay API stopped")

    return lifespan


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create a FastAPI application.

    Args:
        settings: Optional settings. Uses environment if None.

    Returns:
        Configured FastAPI application.

    Example:
        ```python
        from hookrelay.api import create_app

        app = create_app()
        # Run with: uvicorn hookrelay.api:app --reload
        ```
    """
    if settings is None:
        settings = Settings()

    app = FastAPI(
        title="HookRelay",
        description="Signed webhook delivery with retries and a delivery ledger.",
        version=API_VERSION,
        lifespan=_build_lifespan(settings),
        docs_url="/docs",
        redoc_url="/redoc",
    )

    if settings.cors_enabled:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allow_origins,
            allow_methods=settings.cors_allow_methods,
            allow_headers=settings.cors_allow_headers,
        )

    register_exception_handlers(app)
    app.include_router(router, prefix="/api/v1")

    return app


def register_exception_handlers(app: FastAPI) -> None:
    """Map HookRelay exceptions to HTTP responses."""

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        logger.warning(
            "Validation error", field=exc.field, error=exc.message, path=str(request.url)
        )
        return JSONResponse(status_code=400, content=exc.to_dict())

    @app.exception_handler(NotFoundError)
    async def not_found_error_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        logger.info(
            "Resource not found",
            resource_type=exc.resource_type,
            resource_id=exc.resource_id,
            path=str(request.url),
        )
        return JSONResponse(status_code=404, content=exc.to_dict())

    @app.exception_handler(AuthenticationError)
    async def authentication_error_handler(
        request: Request, exc: AuthenticationError
    ) -> JSONResponse:
        logger.warning("Authentication failed", error=exc.message, path=str(request.url))
        return JSONResponse(
            status_code=401,
            content=exc.to_dict(),
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(RegistryUnavailable)
    async def registry_unavailable_handler(
        request: Request, exc: RegistryUnavailable
    ) -> JSONResponse:
        logger.error("Registry unavailable", error=exc.message, path=str(request.url))
        return JSONResponse(status_code=503, content=exc.to_dict())

    @app.exception_handler(HookRelayError)
    async def hookrelay_error_handler(request: Request, exc: HookRelayError) -> JSONResponse:
        """Handle all other HookRelay errors with 500 status."""
        logger.error("HookRelay error", error=exc.message, code=exc.code, path=str(request.url))
        return JSONResponse(status_code=500, content=exc.to_dict())


# Default app instance for uvicorn
app = create_app()
