"""ASGI entry point: builds the checkout API and manages its background workers."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from src.api.middleware.error_handler import APIError, api_error_handler, error_handler_middleware
from src.api.middleware.latency_logging import latency_logging_middleware
from src.api.middleware.request_size import request_size_limit_middleware
from src.api.routes import coupons, health, invoices, orders
from src.core.config import Settings, get_settings
from src.core.stripe import configure_stripe
from src.services.notification_dispatcher import (
    init_notification_dispatcher,
    shutdown_notification_dispatcher,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
API_V1_ROUTERS = (orders.router, coupons.router, invoices.router)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Configure Stripe and run the notification worker while the app serves.

    Queued emails get a bounded time to go out on shutdown.
    """
    settings = get_settings()
    logger.info("Starting %s (%s)", settings.app_name, settings.app_env)

    if configure_stripe():
        logger.info("Stripe configured (test mode: %s)", settings.is_stripe_test_mode)

    await init_notification_dispatcher()
    try:
        yield
    finally:
        await shutdown_notification_dispatcher()
        logger.info("Stopped %s", settings.app_name)


def _install_middleware(app: FastAPI, settings: Settings) -> None:
    # Content-Disposition carries the invoice PDF filename
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["Content-Disposition"],
    )

    # Last added runs first: size check, latency logging, error rendering
    for dispatch in (error_handler_middleware, latency_logging_middleware, request_size_limit_middleware):
        app.add_middleware(BaseHTTPMiddleware, dispatch=dispatch)


def _include_routers(app: FastAPI) -> None:
    # Health checks at the root, everything else under /api/v1
    app.include_router(health.router)

    api_router = APIRouter(prefix=API_PREFIX)
    for router in API_V1_ROUTERS:
        api_router.include_router(router)
    app.include_router(api_router)


def create_app() -> FastAPI:
    """Build the application.

    OpenAPI docs are served only with ``DEBUG`` on.

    Returns:
        FastAPI: Configured application instance.
    """
    settings = get_settings()
    docs_enabled = settings.debug

    app = FastAPI(
        title="Commerce Checkout API",
        description="Cart checkout, coupons, Stripe payment reconciliation and invoicing",
        version="0.1.0",
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
        lifespan=lifespan,
    )
    app.add_exception_handler(APIError, api_error_handler)

    _install_middleware(app, settings)
    _include_routers(app)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run("src.main:app", host=settings.host, port=settings.port, reload=settings.debug)
