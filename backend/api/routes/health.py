"""Health check endpoint.

Liveness plus a database ping; used by load balancers and k8s probes.
"""

import time
from typing import Any

import structlog
from fastapi import APIRouter
from sqlalchemy import text

from app.config import get_settings

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.monotonic()


@router.get("/health", response_model=dict[str, Any])
async def health_check() -> dict[str, Any]:
    """Report app version, uptime and database connectivity."""
    from db.session import engine

    settings = get_settings()
    checks: dict[str, str] = {}

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        checks["database"] = "unavailable"

    return {
        "status": "ok" if all(v == "ok" for v in checks.values()) else "degraded",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
        "checks": checks,
    }
