"""
Server-Sent Events (SSE) endpoint for real-time change push.

Family sessions and the operator console subscribe to one table with
routing filters and receive every matching ChangeEvent as it is committed.
Events are cues to re-fetch; delivery is best effort.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional, Set

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import get_settings
from backend.app.core.database import get_db
from backend.app.core.exceptions import PermissionDeniedError
from backend.app.core.security import User, get_current_user
from backend.app.events.bus import get_event_bus
from backend.app.services import family_service, incident_service

logger = logging.getLogger(__name__)
router = APIRouter()

# Track active SSE connections
_active_connections: Set[str] = set()
settings = get_settings()

FAMILY_TABLES = {
    "incidents",
    "incident_locations",
    "incident_acknowledgements",
    "live_locations",
    "places",
    "place_events",
}
STAFF_TABLES = {"sla_breaches", "tracked_interactions"}


async def authorize_stream(
    db: AsyncSession,
    user: User,
    table: str,
    family_group_id: Optional[str],
    incident_id: Optional[str],
    user_id: Optional[str],
) -> None:
    """Staff may watch anything; members need a filter that scopes to their family, incident or self."""
    if table not in FAMILY_TABLES | STAFF_TABLES:
        raise HTTPException(status_code=404, detail=f"Unknown stream: {table}")
    if user.is_staff:
        return
    if table in STAFF_TABLES:
        raise PermissionDeniedError(f"Stream '{table}' is restricted to operators")
    if family_group_id:
        await family_service.require_family_access(db, family_group_id, user)
    elif incident_id:
        await incident_service.get_incident_for(db, incident_id, user)
    elif user_id != user.id:
        raise PermissionDeniedError("Stream requires a family_group_id, incident_id or your own user_id filter")


async def change_event_generator(
    request: Request,
    table: str,
    connection_id: str,
    family_group_id: Optional[str] = None,
    incident_id: Optional[str] = None,
    user_id: Optional[str] = None,
):
    """
    Subscribe on first iteration and relay bus events to the client. Includes:
    - Heartbeat comment every N seconds to keep the connection alive
    - Idle timeout when no real event arrives for a while
    """
    subscription = get_event_bus().subscribe(
        table, family_group_id=family_group_id, incident_id=incident_id, user_id=user_id,
    )
    _active_connections.add(connection_id)
    logger.info(f"SSE connection opened: {connection_id} (total: {len(_active_connections)})")

    heartbeat_interval = settings.sse_heartbeat_interval_seconds
    idle_timeout = settings.sse_max_idle_seconds
    last_data_time = datetime.now(timezone.utc).timestamp()  # Tracks real data events only

    try:
        yield ": connected\n\n"
        while True:
            # Check if client disconnected
            if await request.is_disconnected():
                logger.info(f"SSE client disconnected: {connection_id}")
                break

            now = datetime.now(timezone.utc).timestamp()
            # Check idle timeout (based on last REAL data, not heartbeats)
            if now - last_data_time > idle_timeout:
                logger.info(f"SSE connection idle timeout ({idle_timeout}s): {connection_id}")
                yield ": idle_timeout\n\n"
                break

            event = await subscription.get(timeout=heartbeat_interval)
            if event is None:
                yield ": heartbeat\n\n"
                continue

            last_data_time = datetime.now(timezone.utc).timestamp()
            yield event.to_sse()
    finally:
        # Cleanup on disconnect (whether client or timeout)
        subscription.close()
        _active_connections.discard(connection_id)
        logger.info(f"SSE connection closed: {connection_id} (remaining: {len(_active_connections)})")


@router.get("/stream/{table}")
async def stream_changes(
    table: str,
    request: Request,
    family_group_id: Optional[str] = Query(None),
    incident_id: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    SSE endpoint: streams change events of one table matching the filters.

    Features:
    - Sends heartbeat every N seconds to keep connection alive
    - Closes connection after a period without events
    - Returns HTTP 503 if max concurrent connections exceeded
    """
    # Check connection limit before setting up the stream
    if len(_active_connections) >= settings.sse_max_connections:
        raise HTTPException(
            status_code=503,
            detail=f"SSE service at capacity (max {settings.sse_max_connections} connections)"
        )

    await authorize_stream(db, current_user, table, family_group_id, incident_id, user_id)

    connection_id = f"{current_user.id}:{table}:{id(request)}"

    return StreamingResponse(
        change_event_generator(
            request, table, connection_id,
            family_group_id=family_group_id, incident_id=incident_id, user_id=user_id,
        ),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )
