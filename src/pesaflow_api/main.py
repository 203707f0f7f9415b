"""API composition root."""
from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pesaflow_core import PesaflowSettings, load_settings
from pesaflow_core.logging_config import setup_logging
from pesaflow_checkout.orchestrator import CheckoutOrchestrator

from .lifespan import lifespan
from .middleware import StructuredLoggingMiddleware, register_exception_handlers
from .routers import payments

API_VERSION = "0.1.0"

logger = logging.getLogger("pesaflow.api")


def create_app(
    settings: PesaflowSettings | None = None,
    orchestrator: CheckoutOrchestrator | None = None,
    configure_logging: bool = True,
) -> FastAPI:
    settings = settings or load_settings()
    if configure_logging:
        setup_logging(level=settings.log_level, json_format=settings.json_logs)

    orchestrator = orchestrator or CheckoutOrchestrator.from_settings(settings)

    app = FastAPI(
        title="Pesaflow Payment API",
        version=API_VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.orchestrator = orchestrator

    app.add_middleware(StructuredLoggingMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-ID"],
    )

    register_exception_handlers(app)

    app.dependency_overrides[payments.get_deps] = lambda: payments.PaymentsDependencies(  # type: ignore[arg-type]
        orchestrator=orchestrator,
    )
    app.include_router(payments.router)

    @app.get("/health", tags=["health"])
    async def health():
        return {
            "status": "ok",
            "version": API_VERSION,
            "environment": settings.environment,
            "gateway": orchestrator.connector.gateway_name,
        }

    logger.info(
        f"API initialized with storage backend: {'PostgreSQL' if settings.use_postgres else 'Memory'}"
    )
    return app
