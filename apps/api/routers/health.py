"""
Health check endpoints.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
import redis.asyncio as redis

from config import settings
import database

router = APIRouter()


async def _check_database() -> str:
    try:
        async with database.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return "up"
    except Exception as e:
        return f"down: {str(e)}"


@router.get("/health")
async def health_check():
    """
    Health check endpoint.
    Database is required; Redis only backs rate limiting, so its loss degrades.
    """
    health_status = {
        "status": "healthy",
        "api": "up",
        "database": await _check_database(),
        "redis": "unknown",
        "stripe_webhook": "configured" if settings.STRIPE_WEBHOOK_SECRET else "missing",
    }
    if health_status["database"] != "up":
        health_status["status"] = "degraded"

    try:
        r = redis.from_url(settings.REDIS_URL)
        await r.ping()
        await r.aclose()
        health_status["redis"] = "up"
    except Exception as e:
        health_status["redis"] = f"down: {str(e)}"
        health_status["status"] = "degraded"

    return health_status


@router.get("/health/ready")
async def readiness_check():
    """Kubernetes-style readiness probe."""
    database_state = await _check_database()
    if database_state != "up":
        return JSONResponse(
            status_code=503,
            content={"ready": False, "database": database_state},
        )
    return {"ready": True}


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}
