"""FastAPI application."""

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import cast

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.app.api.routes.documents import router as documents_router
from backend.app.api.routes.health import router as health_router
from backend.app.api.routes.metrics import router as metrics_router
from backend.app.api.routes.query import router as query_router
from backend.app.api.routes.usage import router as usage_router
from backend.app.config import Settings, get_settings
from backend.app.errors import (
    ConfigurationError,
    IngestionConflict,
    LimitExceeded,
    NotFoundError,
    ProviderError,
    RagError,
    StoreError,
    ValidationError,
)
from backend.app.services import RagServices
from backend.app.utils.logging import configure_logging

ServicesFactory = Callable[[Settings], Awaitable[RagServices]]

# Most specific first
_STATUS_BY_ERROR: tuple[tuple[type[RagError], int], ...] = (
    (NotFoundError, 404),
    (IngestionConflict, 409),
    (LimitExceeded, 429),
    (ValidationError, 422),
    (ConfigurationError, 500),
    (ProviderError, 502),
    (StoreError, 503),
)


def status_for_error(error: RagError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status_code
    return 500


async def rag_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Map domain errors to HTTP responses. Registered for RagError only."""
    error = cast(RagError, exc)
    body: dict[str, object] = {"error": error.kind, "detail": error.message}
    if isinstance(error, LimitExceeded):
        body.update({"event_type": error.event_type, "used": error.used, "limit": error.limit})
    return JSONResponse(status_code=status_for_error(error), content=body)


def create_app(services_factory: ServicesFactory | None = None) -> FastAPI:
    """Build the application.

    Args:
        services_factory: Builds services at startup (default: SQL-backed
            services from settings)
    """
    factory = services_factory or RagServices.create

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        settings = get_settings()
        configure_logging(settings.log_level)

        services = await factory(settings)
        app.state.services = services
        try:
            await services.worker.resume_pending()
            services.worker.start()
            yield
        finally:
            await services.close()

    app = FastAPI(title="Team Docs RAG API", version="0.1.0", lifespan=lifespan)
    app.add_exception_handler(RagError, rag_error_handler)

    # Register routes
    app.include_router(health_router, tags=["health"])
    app.include_router(metrics_router, tags=["metrics"])
    app.include_router(documents_router)
    app.include_router(query_router)
    app.include_router(usage_router)

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {"message": "Team Docs RAG API", "version": "0.1.0"}

    return app


app = create_app()
