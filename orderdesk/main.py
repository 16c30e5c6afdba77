"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from orderdesk.api.middleware.error_handler import error_handler_middleware
from orderdesk.api.middleware.latency_logging import latency_logging_middleware
from orderdesk.api.middleware.request_size import request_size_limit_middleware
from orderdesk.api.routes import admin, health, orders, webhooks
from orderdesk.core.config import get_settings
from orderdesk.core.container import ServiceContainer, build_container

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the service container on startup unless one was injected.

    Args:
        app: FastAPI application instance.

    Yields:
        None: Control back to the application.
    """
    settings = get_settings()
    logger.info("Starting %s in %s mode", settings.app_name, settings.app_env)

    if app.state.container is None:
        app.state.container = build_container(settings)

    yield

    logger.info("Shutting down %s", settings.app_name)


def create_app(container: ServiceContainer | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        container: Pre-built services; built from settings at startup when omitted.

    Returns:
        FastAPI: Configured application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Orderdesk API",
        description="Order intake, payment reconciliation and kitchen status tracking",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Errors are formatted before the latency logger sees the response
    app.add_middleware(BaseHTTPMiddleware, dispatch=error_handler_middleware)
    app.add_middleware(BaseHTTPMiddleware, dispatch=latency_logging_middleware)
    app.add_middleware(BaseHTTPMiddleware, dispatch=request_size_limit_middleware)

    app.include_router(health.router)

    api_v1_router = APIRouter(prefix="/api/v1")
    api_v1_router.include_router(orders.router)
    api_v1_router.include_router(admin.router)
    api_v1_router.include_router(webhooks.router)
    app.include_router(api_v1_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "orderdesk.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
