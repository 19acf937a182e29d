"""Hedvac Tip Bot - FastAPI operator application."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from hedvac.core.config import get_settings
from hedvac.core.exceptions import (
    AccountNotFoundError,
    ExternalServiceUnavailableError,
    HedvacError,
    InsufficientFundsError,
    LootClaimError,
)
from hedvac.storage.factory import close_ledger_store, get_ledger_store


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler.

    Startup: Initialize the ledger store
    Shutdown: Close store connections
    """
    # Startup
    await get_ledger_store().initialize()
    yield
    # Shutdown
    await close_ledger_store()


def _status_for(exc: HedvacError) -> int:
    if isinstance(exc, AccountNotFoundError):
        return 404
    if isinstance(exc, LootClaimError):
        return 404 if exc.reason == LootClaimError.NOT_FOUND else 409
    if isinstance(exc, InsufficientFundsError):
        return 409
    if isinstance(exc, ExternalServiceUnavailableError):
        return 503
    return 400


async def hedvac_error_handler(request: Request, exc: HedvacError) -> JSONResponse:
    """Every domain error says which precondition failed."""
    return JSONResponse(
        status_code=_status_for(exc),
        content={"detail": exc.message, "error": type(exc).__name__, "details": exc.details},
    )


def create_app(with_lifespan: bool = True) -> FastAPI:
    """Application factory.

    Returns:
        Configured FastAPI application instance
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Custodial Hedera tip bot operator API",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan if with_lifespan else None,
    )

    app.add_exception_handler(HedvacError, hedvac_error_handler)

    # Include routers
    from hedvac.api.ledger import router as ledger_router
    from hedvac.api.promotions import router as promotions_router

    app.include_router(ledger_router, prefix="/api")
    app.include_router(promotions_router, prefix="/api")

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy", "backend": settings.ledger_backend}

    return app


# Application instance
app = create_app()
