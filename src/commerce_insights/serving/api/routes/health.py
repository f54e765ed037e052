"""
Health Check Endpoints

Liveness and readiness probes. Upstream services are not called from here;
readiness covers the cache backend and engine wiring only.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from commerce_insights.config import get_settings
from commerce_insights.serving.cache import get_cache_backend

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    version: str
    environment: str
    timestamp: datetime
    checks: Dict[str, Any]


async def _cache_check() -> Dict[str, Any]:
    backend_name = get_settings().cache.backend
    try:
        await get_cache_backend().ping()
    except Exception as e:
        return {"status": "unhealthy", "backend": backend_name, "error": str(e)}
    return {"status": "healthy", "backend": backend_name}


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Cache reachability and engine wiring; ``degraded`` when either fails."""
    settings = get_settings()
    checks = {
        "cache": await _cache_check(),
        "engine": {"status": "healthy" if request.app.state.engine is not None else "unhealthy"},
        "session_analytics": {"enabled": settings.session_analytics.enabled},
    }
    unhealthy = any(check.get("status") == "unhealthy" for check in checks.values())

    return HealthResponse(
        status="degraded" if unhealthy else "healthy",
        version=settings.version,
        environment=settings.app_env,
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )


@router.get("/health/live")
async def liveness_check() -> Dict[str, str]:
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness_check(request: Request) -> JSONResponse:
    """503 until the lifespan has built the engine and cache."""
    ready = request.app.state.engine is not None and (await _cache_check())["status"] == "healthy"
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ready" if ready else "not_ready"},
    )
