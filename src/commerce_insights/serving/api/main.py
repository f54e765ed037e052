"""
FastAPI Application Factory

Creates and configures the read-only analytics API.
"""

from typing import Any, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from commerce_insights.config import get_settings
from commerce_insights.engine import AnalyticsEngine
from commerce_insights.exceptions import CommerceInsightsError, FetchCancelledError
from commerce_insights.serving.api.middleware import RequestLoggingMiddleware
from commerce_insights.serving.api.routes import analytics_router, health_router

logger = structlog.get_logger(__name__)


async def upstream_error_handler(request: Request, exc: CommerceInsightsError) -> JSONResponse:
    """Upstream failures surface as explicit errors, never as zeroed metrics."""
    status_code = 503 if isinstance(exc, FetchCancelledError) else 502
    logger.error(
        "Upstream failure while serving request",
        path=request.url.path,
        code=exc.code,
        upstream_status=exc.status,
        error=str(exc),
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def create_api_app(engine: Optional[AnalyticsEngine] = None, lifespan: Any = None) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        engine: Engine serving the analytics routes; the lifespan may set it later
        lifespan: Optional lifespan context manager

    Returns:
        Configured FastAPI app instance
    """
    settings = get_settings()

    app = FastAPI(
        title="Commerce Insights API",
        description="Read-only commerce analytics aggregated across sources",
        version=settings.version,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )
    app.state.engine = engine

    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(RequestLoggingMiddleware)

    app.add_exception_handler(CommerceInsightsError, upstream_error_handler)

    app.include_router(health_router, prefix="/api/v1", tags=["Health"])
    app.include_router(analytics_router, prefix="/api/v1/analytics", tags=["Analytics"])

    @app.get("/api/v1/info")
    async def api_info():
        """API information endpoint."""
        return {
            "name": settings.app_name,
            "version": settings.version,
            "environment": settings.app_env,
        }

    return app
