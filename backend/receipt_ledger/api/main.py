"""Entry point for the FastAPI application.

This module constructs the FastAPI app, includes the receipt router and
sets up startup and shutdown events. When run with uvicorn it loads
configuration from ``receipt_ledger.core.config``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from receipt_ledger.api.error_handlers import (
    generic_exception_handler,
    receipt_exception_handler,
    validation_exception_handler,
)
from receipt_ledger.api.routes.receipts import router as receipts_router
from receipt_ledger.core.config import settings
from receipt_ledger.core.errors import ReceiptError
from receipt_ledger.core.observability import init_sentry

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    logger.info("Starting up...")
    if init_sentry("api"):
        logger.info("Sentry SDK initialized (api)")
    if not settings.OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY not set; receipt processing will be unavailable")
    if not settings.LEDGER_API_URL:
        logger.warning("LEDGER_API_URL not set; bootstrap gate disabled and commits will fail")
    yield
    logger.info("Shutting down...")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Receipt Ledger API",
        version="1.0.0",
        lifespan=lifespan,
    )

    # In development allow all origins; otherwise use the configured list
    env_is_dev = (settings.ENVIRONMENT or "development").lower() == "development"
    allow_origins = ["*"] if env_is_dev else list(settings.BACKEND_CORS_ORIGINS or [])
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=not env_is_dev,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register custom exception handlers
    app.add_exception_handler(ReceiptError, receipt_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(receipts_router)

    @app.api_route("/health", methods=["GET", "HEAD"])
    async def health_check():
        """Health check endpoint (supports GET & HEAD)."""
        return {"status": "healthy"}

    return app


app = create_app()
