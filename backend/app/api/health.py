"""Health check endpoints."""

from fastapi import APIRouter, Response, status
from sqlalchemy import text

from backend.app.core.database import engine

router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness_check(response: Response):
    """
    Readiness check - verify dependencies are available.
    Fails if critical dependencies (DB, event bus) are down.
    """
    health_status = {
        "status": "ready",
        "checks": {
            "database": "unknown",
            "event_bus": "unknown",
        }
    }

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        health_status["checks"]["database"] = "ok"
    except Exception as e:
        health_status["checks"]["database"] = f"failed: {str(e)}"
        health_status["status"] = "not_ready"

    try:
        from backend.app.events.bus import get_event_bus
        bus = get_event_bus()
        health_status["checks"]["event_bus"] = f"ok ({bus.subscriber_count} subscribers)"
    except RuntimeError as e:
        health_status["checks"]["event_bus"] = f"failed: {str(e)}"
        health_status["status"] = "not_ready"

    if health_status["status"] != "ready":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return health_status
