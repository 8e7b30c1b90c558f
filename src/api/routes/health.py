"""Health check endpoints."""

import structlog
from fastapi import APIRouter, Response
from sqlalchemy import text

from src.db.client import get_db_session
from src.kernel.time import utc_now

router = APIRouter()
logger = structlog.get_logger()

# Track startup time
_startup_time = utc_now()


@router.get("/health")
async def health_check():
    """
    Basic health check endpoint.
    Returns 200 if the service is running.
    """
    now = utc_now()
    return {
        "status": "healthy",
        "service": "contact-identity",
        "version": "0.1.0",
        "timestamp": now.isoformat(),
        "uptime_seconds": (now - _startup_time).total_seconds(),
    }


@router.get("/ready")
async def readiness_check(response: Response):
    """
    Readiness check endpoint.
    Verifies the database is reachable.
    """
    checks = {"postgres": False}

    try:
        async with get_db_session() as session:
            await session.execute(text("SELECT 1"))
            checks["postgres"] = True
    except Exception as e:
        logger.warning("PostgreSQL health check failed", error=str(e))

    all_healthy = all(checks.values())
    if not all_healthy:
        response.status_code = 503

    return {
        "status": "ready" if all_healthy else "degraded",
        "checks": checks,
        "timestamp": utc_now().isoformat(),
    }


@router.get("/live")
async def liveness_check():
    """
    Liveness check for Kubernetes.
    Returns 200 if the process is alive.
    """
    return {"status": "alive"}
