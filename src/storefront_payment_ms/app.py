"""FastAPI Application for the Payment Microservice."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from storefront_payment_ms.features.payments.presentation.dependencies import (
    get_circuit_breakers,
)
from storefront_payment_ms.features.payments.presentation.router import (
    router as payments_router,
)
from storefront_payment_ms.features.reconciliation.presentation.router import (
    get_reconciler,
    router as reconciliation_router,
)
from storefront_payment_ms.features.webhooks.presentation.router import (
    router as webhooks_router,
)
from storefront_payment_ms.shared.core.logging import configure_logging
from storefront_payment_ms.shared.core.settings import get_settings
from storefront_payment_ms.shared.infrastructure.database import close_db, init_db
from storefront_payment_ms.shared.presentation.exception_handlers import (
    register_exception_handlers,
)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan events."""
    # Startup
    settings = get_settings()
    configure_logging(settings)
    logger.info(
        "payment_service_starting",
        host=settings.host,
        port=settings.port,
        provider=settings.payment_provider,
    )

    await init_db()

    reconciler = get_reconciler() if settings.reconciliation_enabled else None
    if reconciler is not None:
        await reconciler.start()

    yield

    # Shutdown
    if reconciler is not None:
        await reconciler.stop()
    await close_db()
    get_reconciler.cache_clear()
    logger.info("payment_service_stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Storefront Payment Microservice",
        description=(
            "Payment orchestration for the storefront: idempotent charges, retries with "
            "circuit breaking, verified gateway webhooks, refunds and reconciliation"
        ),
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register exception handlers
    register_exception_handlers(app)

    # Register routers
    app.include_router(payments_router, prefix="/api/payments", tags=["Payments"])
    app.include_router(webhooks_router, prefix="/api/webhooks", tags=["Webhooks"])
    app.include_router(
        reconciliation_router, prefix="/api/reconciliation", tags=["Reconciliation"]
    )

    # Health endpoints
    @app.get("/", tags=["Health"])
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {"service": "Storefront Payment Microservice", "status": "running"}

    @app.get("/health", tags=["Health"])
    async def health_check() -> dict[str, object]:
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": "payment-ms",
            "provider": settings.payment_provider,
            "circuit_breakers": get_circuit_breakers().snapshot(),
        }

    return app


app = create_app()
