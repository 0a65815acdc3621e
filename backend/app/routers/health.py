"""Health check endpoints for load balancers and monitoring."""

import logging
from datetime import datetime

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.config import settings
from app.database import engine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Lightweight health check for load balancer (no DB check)."""
    return {
        "status": "ok",
        "service": "Mostrador",
        "timestamp": datetime.utcnow().isoformat(),
        "environment": settings.environment,
    }


@router.get("/health/ready")
async def readiness_check():
    """Readiness check: 200 only if the database answers.

    The permission store lives in the database, so an unready service would
    fail every guarded request with 503 anyway.
    """
    checks = {"service": "ok", "database": "unknown"}
    overall_healthy = True

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Readiness check failed: {e}")
        checks["database"] = f"error: {str(e)[:100]}"
        overall_healthy = False

    return JSONResponse(
        status_code=status.HTTP_200_OK if overall_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if overall_healthy else "unhealthy",
            "service": "Mostrador",
            "checks": checks,
            "timestamp": datetime.utcnow().isoformat(),
        },
    )
