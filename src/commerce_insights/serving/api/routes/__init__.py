"""
API Routes
"""
from .analytics import router as analytics_router
from .health import router as health_router

__all__ = ["analytics_router", "health_router"]
