"""
Health check endpoints.
"""

from typing import List

from fastapi import APIRouter
from fastapi.responses import JSONResponse
import redis.asyncio as redis
from sqlalchemy import text

from config import settings, validate_security_settings

router = APIRouter()


async def _database_status() -> str:
    from database import engine

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        return f"down: {e}"
    return "up"


async def _redis_status() -> str:
    try:
        client = redis.from_url(settings.REDIS_URL)
        await client.ping()
        await client.aclose()
    except Exception as e:
        return f"down: {e}"
    return "up"


def _missing_configuration() -> List[str]:
    """Settings that must be set before sign-in and sessions can work."""
    missing = []
    if not (settings.FIREBASE_API_KEY or "").strip():
        missing.append("FIREBASE_API_KEY")
    try:
        validate_security_settings()
    except ValueError:
        missing.append("JWT_SECRET")
    return missing


@router.get("/health")
async def health_check():
    """
    Health check endpoint.
    Reports the document database, redis (rate limits) and external providers.
    """
    health_status = {
        "status": "healthy",
        "api": "up",
        "database": await _database_status(),
        "redis": await _redis_status(),
        "credential_provider": "configured" if settings.FIREBASE_API_KEY else "missing",
        "text_generation": "configured" if settings.OPENROUTER_API_KEY else "missing",
    }
    # Redis only backs rate limits, which fall back to local counters.
    if health_status["database"] != "up":
        health_status["status"] = "degraded"
    return health_status


@router.get("/health/ready")
async def readiness_check():
    """Kubernetes-style readiness check."""
    missing = _missing_configuration()
    if missing:
        return JSONResponse(
            status_code=503,
            content={"ready": False, "missing": missing},
        )
    return {"ready": True}


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness check."""
    return {"alive": True}
