"""
FastAPI Application

Main entry point for the Commerce Insights API.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from commerce_insights.config import get_settings
from commerce_insights.config.logging import configure_logging
from commerce_insights.engine import AnalyticsEngine
from commerce_insights.serving.api import create_api_app
from commerce_insights.serving.cache import CacheManager, close_cache, init_cache

settings = get_settings()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    configure_logging()

    logger.info("Starting Commerce Insights API", environment=settings.app_env)

    backend = await init_cache()
    app.state.engine = AnalyticsEngine(
        cache=CacheManager("collections", default_ttl=settings.cache.ttl_seconds, backend=backend),
    )

    yield

    logger.info("Shutting down...")
    await close_cache()


app = create_api_app(lifespan=lifespan)


def run() -> None:
    """Serve the API with uvicorn using configured host and port."""
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    run()
