"""
ReasonBank - Main Application Entry Point
=========================================

Initializes the FastAPI application with routes, error mapping and the
learning core.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from reasonbank.api.v1.metrics import router as metrics_router
from reasonbank.api.v1.router import api_router
from reasonbank.core.config import settings
from reasonbank.core.database import create_db_and_tables, dispose_engine
from reasonbank.core.errors import (
    EmbeddingQualityError,
    LearningError,
    NotFound,
    RecordValidationError,
    StoreUnavailable,
)
from reasonbank.services.reasoning_bank import ReasoningBank

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan context manager.

    - Startup: create tables (dev convenience) for the Postgres backend
    - Shutdown: close pooled connections
    """
    bank: ReasoningBank = app.state.reasoning_bank
    uses_postgres = bank.store.repository.backend == "postgres"

    if uses_postgres and settings.APP_ENV != "test":
        try:
            await create_db_and_tables()
        except Exception as e:
            logger.warning(f"Could not create database tables: {e} - continuing without database")

    yield

    if uses_postgres:
        await dispose_engine()


def _error_response(status_code: int, exc: LearningError, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": type(exc).__name__, **extra},
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound):
        return _error_response(status.HTTP_404_NOT_FOUND, exc)

    @app.exception_handler(RecordValidationError)
    async def validation_handler(request: Request, exc: RecordValidationError):
        return _error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, exc)

    @app.exception_handler(EmbeddingQualityError)
    async def embedding_handler(request: Request, exc: EmbeddingQualityError):
        return _error_response(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            exc,
            reason=exc.reason,
            variance=exc.variance,
            l2_norm=exc.l2_norm,
        )

    @app.exception_handler(StoreUnavailable)
    async def unavailable_handler(request: Request, exc: StoreUnavailable):
        return _error_response(status.HTTP_503_SERVICE_UNAVAILABLE, exc, attempts=exc.attempts)


def create_application(bank: Optional[ReasoningBank] = None) -> FastAPI:
    """
    Application factory function.

    Args:
        bank: Learning core to serve; built from settings when omitted

    Returns:
        FastAPI: Configured application instance
    """
    app = FastAPI(
        title=settings.APP_NAME,
        description="Reasoning pattern memory with spiking activation",
        version="1.0.0",
        openapi_url=f"{settings.API_PREFIX}/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    logging.getLogger("reasonbank").setLevel(settings.LOG_LEVEL.upper())
    app.state.reasoning_bank = bank or ReasoningBank.from_repository()

    register_exception_handlers(app)

    # Health check endpoint (no auth required)
    @app.get("/health", tags=["Health"])
    async def health_check():
        return {
            "status": "healthy",
            "app": settings.APP_NAME,
            "version": "1.0.0",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    app.include_router(metrics_router, prefix="")
    app.include_router(api_router, prefix=settings.API_PREFIX)

    return app


# Create application instance
app = create_application()
