"""
Operator Console API Router (Call-Centre Hub).

Queue of open incidents, manual transitions and priority triage.
All endpoints require the operator:console scope.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Security
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.incidents import _to_response
from backend.app.core.database import get_db
from backend.app.core.security import OPERATOR_CONSOLE, User, get_current_user
from backend.app.schemas.incidents import IncidentResponse, PriorityUpdate, TransitionRequest
from backend.app.services import operator_console

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/queue", response_model=List[IncidentResponse])
async def get_queue(
    limit: int = Query(200, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[OPERATOR_CONSOLE]),
):
    """Open incidents (active, acknowledged), critical first then oldest first."""
    return [_to_response(i) for i in await operator_console.list_queue(db, limit)]


@router.get("/queue/summary")
async def get_queue_summary(
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[OPERATOR_CONSOLE]),
):
    """Queue counts by status and priority band."""
    return await operator_console.queue_summary(db)


@router.get("/guidance")
async def get_response_guidance(
    current_user: User = Security(get_current_user, scopes=[OPERATOR_CONSOLE]),
):
    """Canned response-time guidance per priority band."""
    return operator_console.response_guidance()


@router.post("/incidents/{incident_id}/acknowledge", response_model=IncidentResponse)
async def acknowledge_incident(
    incident_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[OPERATOR_CONSOLE]),
):
    """active → acknowledged. 409 if the incident is not active."""
    incident = await operator_console.acknowledge(db, incident_id, current_user)
    return _to_response(incident)


@router.post("/incidents/{incident_id}/close", response_model=IncidentResponse)
async def close_incident(
    incident_id: str,
    payload: Optional[TransitionRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[OPERATOR_CONSOLE]),
):
    """open → closed. 409 if the incident is already terminal."""
    incident = await operator_console.close(db, incident_id, current_user, payload.reason if payload else None)
    return _to_response(incident)


@router.patch("/incidents/{incident_id}/priority", response_model=IncidentResponse)
async def set_incident_priority(
    incident_id: str,
    payload: PriorityUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[OPERATOR_CONSOLE]),
):
    """Triage: set the incident's priority band."""
    incident = await operator_console.set_priority(db, incident_id, payload.priority, current_user)
    return _to_response(incident)
