"""
SOS Incident Lifecycle API Router.

active → acknowledged → resolved / canceled / closed. Terminal statuses are
final; live writes (location samples, acknowledgements) are rejected with
409 once the incident has left the open states. History stays readable.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, Security
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.database import get_db
from backend.app.core.security import INCIDENT_READ, INCIDENT_WRITE, User, get_current_user
from backend.app.models.incident_orm import IncidentAcknowledgementORM, IncidentORM
from backend.app.schemas.incidents import (
    AcknowledgeRequest,
    AcknowledgementResponse,
    AuditTrailEntry,
    IncidentCreate,
    IncidentDetail,
    IncidentResponse,
    IncidentStatus,
    LocationSampleIn,
    LocationSampleResponse,
    TransitionRequest,
)
from backend.app.services import audit_service, incident_service

logger = logging.getLogger(__name__)
router = APIRouter()


def _to_response(incident: IncidentORM) -> IncidentResponse:
    return IncidentResponse(
        id=incident.id,
        user_id=incident.user_id,
        family_group_id=incident.family_group_id,
        status=IncidentStatus(incident.status),
        priority=incident.priority,
        emergency_type=incident.emergency_type,
        source=incident.source,
        address=incident.address,
        metadata=incident.metadata_,
        resolved_by=incident.resolved_by,
        resolved_at=incident.resolved_at,
        created_at=incident.created_at,
        updated_at=incident.updated_at,
    )


def _ack_response(ack: IncidentAcknowledgementORM, already: bool = False) -> AcknowledgementResponse:
    response = AcknowledgementResponse.model_validate(ack)
    response.already_acknowledged = already
    return response


@router.post("/", response_model=IncidentResponse, status_code=201)
async def create_incident(
    payload: IncidentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[INCIDENT_WRITE]),
):
    """Trigger an SOS. An initial location sample is stored when coordinates are given."""
    incident = await incident_service.create_incident(db, current_user, payload)
    return _to_response(incident)


@router.get("/", response_model=List[IncidentResponse])
async def list_incidents(
    family_group_id: Optional[str] = Query(None),
    status: Optional[List[IncidentStatus]] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[INCIDENT_READ]),
):
    """List incidents visible to the caller, newest first."""
    statuses = [s.value for s in status] if status else None
    incidents = await incident_service.list_incidents(db, current_user, family_group_id, statuses, limit)
    return [_to_response(i) for i in incidents]


@router.get("/{incident_id}", response_model=IncidentDetail)
async def get_incident(
    incident_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[INCIDENT_READ]),
):
    """Incident detail with current location and acknowledgements."""
    incident = await incident_service.get_incident_for(db, incident_id, current_user)
    current = await incident_service.current_location(db, incident.id)
    acks = await incident_service.list_acknowledgements(db, incident.id)
    return IncidentDetail(
        **_to_response(incident).model_dump(),
        current_location=LocationSampleResponse.model_validate(current) if current else None,
        acknowledgements=[_ack_response(a) for a in acks],
    )


@router.post("/{incident_id}/locations", response_model=LocationSampleResponse, status_code=201)
async def append_location(
    incident_id: str,
    payload: LocationSampleIn,
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[INCIDENT_WRITE]),
):
    """Append a live location sample. 409 once the incident is closed."""
    sample = await incident_service.append_location(db, incident_id, payload, current_user)
    return LocationSampleResponse.model_validate(sample)


@router.get("/{incident_id}/locations", response_model=List[LocationSampleResponse])
async def list_locations(
    incident_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[INCIDENT_READ]),
):
    """Full location history, oldest first."""
    incident = await incident_service.get_incident_for(db, incident_id, current_user)
    samples = await incident_service.list_locations(db, incident.id)
    return [LocationSampleResponse.model_validate(s) for s in samples]


@router.get("/{incident_id}/locations/current", response_model=LocationSampleResponse)
async def current_location(
    incident_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[INCIDENT_READ]),
):
    incident = await incident_service.get_incident_for(db, incident_id, current_user)
    sample = await incident_service.current_location(db, incident.id)
    if sample is None:
        raise HTTPException(status_code=404, detail="No location recorded for this incident")
    return LocationSampleResponse.model_validate(sample)


@router.post("/{incident_id}/acknowledge", response_model=AcknowledgementResponse, status_code=201)
async def acknowledge_incident(
    incident_id: str,
    response: Response,
    payload: Optional[AcknowledgeRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[INCIDENT_WRITE]),
):
    """
    Family acknowledgement ("Received & On It").
    Idempotent per responder: a repeat returns the existing row with 200.
    """
    message = payload.message if payload else None
    ack, already = await incident_service.acknowledge(db, incident_id, current_user, message)
    if already:
        response.status_code = 200
    return _ack_response(ack, already)


@router.get("/{incident_id}/acknowledgements", response_model=List[AcknowledgementResponse])
async def list_acknowledgements(
    incident_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[INCIDENT_READ]),
):
    incident = await incident_service.get_incident_for(db, incident_id, current_user)
    return [_ack_response(a) for a in await incident_service.list_acknowledgements(db, incident.id)]


@router.post("/{incident_id}/resolve", response_model=IncidentResponse)
async def resolve_incident(
    incident_id: str,
    payload: Optional[TransitionRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[INCIDENT_WRITE]),
):
    """Mark the emergency as resolved. 409 if it is already terminal."""
    incident = await incident_service.resolve(db, incident_id, current_user, payload.reason if payload else None)
    return _to_response(incident)


@router.post("/{incident_id}/cancel", response_model=IncidentResponse)
async def cancel_incident(
    incident_id: str,
    payload: Optional[TransitionRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[INCIDENT_WRITE]),
):
    """Cancel a false alarm. 409 if it is already terminal."""
    incident = await incident_service.cancel(db, incident_id, current_user, payload.reason if payload else None)
    return _to_response(incident)


@router.get("/{incident_id}/audit-trail", response_model=List[AuditTrailEntry])
async def get_audit_trail(
    incident_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[INCIDENT_READ]),
):
    """Chronological audit trail for the incident."""
    incident = await incident_service.get_incident_for(db, incident_id, current_user)
    entries = await audit_service.get_audit_trail(db, incident.id)
    return [AuditTrailEntry.model_validate(e) for e in entries]
