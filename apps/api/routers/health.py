"""
Health check endpoints.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
import redis.asyncio as redis

from config import settings
from database import engine
from services.connectors.registry import connector_capabilities, platform_catalogue

router = APIRouter()


async def _database_status() -> str:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        return f"down: {str(e)}"
    return "up"


async def _oauth_state_backend() -> str:
    """Where pending authorizations live right now: ``redis`` or ``memory``."""
    if not settings.REDIS_URL:
        return "memory"
    try:
        r = redis.from_url(settings.REDIS_URL)
        try:
            await r.ping()
        finally:
            await r.aclose()
    except Exception:
        return "memory"
    return "redis"


@router.get("/health")
async def health_check():
    """
    Health check endpoint.
    Reports database reachability, the pending-authorization backend and
    which platforms have OAuth credentials configured.
    """
    database = await _database_status()
    return {
        "status": "healthy" if database == "up" else "degraded",
        "api": "up",
        "database": database,
        "oauth_state_backend": await _oauth_state_backend(),
        "platforms": connector_capabilities(),
    }


@router.get("/health/ready")
async def readiness_check():
    """Ready once at least one platform has OAuth credentials."""
    configured = [entry["id"] for entry in platform_catalogue() if entry["configured"]]
    if not configured:
        return JSONResponse(
            status_code=503,
            content={"ready": False, "configured_platforms": []},
        )
    return {"ready": True, "configured_platforms": configured}


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}
