"""
SOS Incident State Machine.

    active ──► acknowledged ──► {resolved, canceled, closed}
       └──────────────────────► {resolved, canceled, closed}

Every transition is a single compare-and-set UPDATE guarded by the allowed
source statuses, so of any number of concurrent attempts at most one wins
and a terminal status never changes again. Location samples and
acknowledgements are only accepted while the incident is open; history
stays readable forever.

Each incident is mirrored onto a tracked interaction so the SLA engine
watches response times for emergencies like any other interaction.
"""
import logging
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import select, update, or_
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.database import utcnow
from backend.app.core.exceptions import (
    IncidentNotActiveError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from backend.app.core.security import User
from backend.app.events.bus import queue_change
from backend.app.events.schemas import ChangeOperation, change_event
from backend.app.models.incident_orm import (
    IncidentAcknowledgementORM,
    IncidentLocationORM,
    IncidentORM,
)
from backend.app.schemas.incidents import (
    IncidentCreate,
    IncidentStatus,
    LocationSampleIn,
    OPEN_STATUSES,
    PRIORITY_RANK,
    TERMINAL_STATUSES,
)
from backend.app.services import family_service
from backend.app.services.audit_service import log_audit_event
from backend.app.services.sla_engine import SlaEngine

logger = logging.getLogger(__name__)

DEFAULT_ACK_MESSAGE = "Received & On It"
SOS_CHANNEL = "sos"


def incident_record(incident: IncidentORM) -> dict:
    """JSON-safe snapshot published with change events."""
    return {
        "id": incident.id,
        "user_id": incident.user_id,
        "family_group_id": incident.family_group_id,
        "status": incident.status,
        "priority": incident.priority,
        "emergency_type": incident.emergency_type,
        "address": incident.address,
        "created_at": incident.created_at.isoformat() if incident.created_at else None,
        "updated_at": incident.updated_at.isoformat() if incident.updated_at else None,
    }


def incident_changed(session: AsyncSession, incident: IncidentORM, operation: ChangeOperation) -> None:
    queue_change(session, change_event(
        "incidents", operation, incident_record(incident),
        family_group_id=incident.family_group_id,
        incident_id=incident.id,
        user_id=incident.user_id,
    ))


# --------------------------------------------------------------------------
# Reads & access
# --------------------------------------------------------------------------

async def get_incident(session: AsyncSession, incident_id: str) -> IncidentORM:
    incident = await session.get(IncidentORM, incident_id)
    if incident is None:
        raise NotFoundError("Incident", incident_id)
    return incident


async def can_act_on(session: AsyncSession, incident: IncidentORM, user: User) -> bool:
    """Triggering user, an active member of the incident's family, or staff."""
    if user.is_staff or incident.user_id == user.id:
        return True
    return await family_service.is_active_member(session, incident.family_group_id, user.id)


async def get_incident_for(session: AsyncSession, incident_id: str, user: User) -> IncidentORM:
    incident = await get_incident(session, incident_id)
    if not await can_act_on(session, incident, user):
        raise PermissionDeniedError("Not allowed to access this incident", details={"incident_id": incident_id})
    return incident


async def list_incidents(
    session: AsyncSession,
    user: User,
    family_group_id: Optional[str] = None,
    statuses: Optional[Iterable[str]] = None,
    limit: int = 100,
) -> List[IncidentORM]:
    query = select(IncidentORM)
    if family_group_id:
        await family_service.require_family_access(session, family_group_id, user)
        query = query.where(IncidentORM.family_group_id == family_group_id)
    elif not user.is_staff:
        groups = await family_service.family_groups_for_user(session, user.id)
        query = query.where(or_(IncidentORM.user_id == user.id, IncidentORM.family_group_id.in_(groups)))
    if statuses:
        query = query.where(IncidentORM.status.in_(list(statuses)))

    result = await session.execute(query.order_by(IncidentORM.created_at.desc()).limit(limit))
    return list(result.scalars().all())


# --------------------------------------------------------------------------
# Creation & live writes
# --------------------------------------------------------------------------

async def create_incident(session: AsyncSession, user: User, payload: IncidentCreate) -> IncidentORM:
    """Create an active incident, its first location sample and its tracked interaction."""
    if (payload.latitude is None) != (payload.longitude is None):
        raise ValidationError("latitude and longitude must be given together", field="latitude")
    if payload.family_group_id:
        await family_service.require_family_access(session, payload.family_group_id, user)

    incident = IncidentORM(
        user_id=user.id,
        family_group_id=payload.family_group_id,
        status=IncidentStatus.ACTIVE.value,
        priority=payload.priority.value,
        emergency_type=payload.emergency_type,
        source=payload.source,
        address=payload.address,
        metadata_=payload.metadata,
        created_at=utcnow(),
    )
    session.add(incident)
    await session.flush()

    if payload.latitude is not None:
        sample = IncidentLocationORM(
            incident_id=incident.id,
            latitude=payload.latitude,
            longitude=payload.longitude,
            accuracy=payload.accuracy,
            created_at=incident.created_at,
        )
        session.add(sample)
        await session.flush()
        _location_appended(session, incident, sample)

    await log_audit_event(
        session, incident.id, incident.family_group_id,
        action="SOS_TRIGGERED",
        action_type="human",
        actor=user.id,
        details=f"{incident.emergency_type} emergency raised via {incident.source} with priority {incident.priority}",
    )

    await SlaEngine(session).track_interaction(
        kind="incident",
        source_id=incident.id,
        subject=f"SOS: {incident.emergency_type}",
        contact_name=user.id,
        channel=SOS_CHANNEL,
        priority=PRIORITY_RANK[incident.priority],
        created_at=incident.created_at,
    )

    incident_changed(session, incident, ChangeOperation.INSERT)
    logger.warning(
        f"SOS incident {incident.id} created by {user.id} "
        f"(family={incident.family_group_id}, priority={incident.priority})"
    )
    return incident


def _location_appended(session: AsyncSession, incident: IncidentORM, sample: IncidentLocationORM) -> None:
    queue_change(session, change_event(
        "incident_locations", ChangeOperation.INSERT,
        {
            "id": sample.id,
            "incident_id": incident.id,
            "latitude": sample.latitude,
            "longitude": sample.longitude,
            "accuracy": sample.accuracy,
            "created_at": sample.created_at.isoformat(),
        },
        family_group_id=incident.family_group_id,
        incident_id=incident.id,
        user_id=incident.user_id,
    ))


async def append_location(
    session: AsyncSession,
    incident_id: str,
    sample: LocationSampleIn,
    user: User,
) -> IncidentLocationORM:
    """Append an immutable location sample; only while the incident is open."""
    incident = await get_incident(session, incident_id)
    if incident.user_id != user.id and not user.is_staff:
        raise PermissionDeniedError("Only the triggering user shares incident location")
    if incident.status not in OPEN_STATUSES:
        raise IncidentNotActiveError(incident.id, incident.status)

    row = IncidentLocationORM(
        incident_id=incident.id,
        latitude=sample.latitude,
        longitude=sample.longitude,
        accuracy=sample.accuracy,
        created_at=utcnow(),
    )
    session.add(row)
    await session.flush()
    _location_appended(session, incident, row)
    return row


async def list_locations(session: AsyncSession, incident_id: str) -> List[IncidentLocationORM]:
    result = await session.execute(
        select(IncidentLocationORM)
        .where(IncidentLocationORM.incident_id == incident_id)
        .order_by(IncidentLocationORM.created_at, IncidentLocationORM.id)
    )
    return list(result.scalars().all())


async def current_location(session: AsyncSession, incident_id: str) -> Optional[IncidentLocationORM]:
    result = await session.execute(
        select(IncidentLocationORM)
        .where(IncidentLocationORM.incident_id == incident_id)
        .order_by(IncidentLocationORM.created_at.desc(), IncidentLocationORM.id.desc())
        .limit(1)
    )
    return result.scalars().first()


# --------------------------------------------------------------------------
# Acknowledgements
# --------------------------------------------------------------------------

async def list_acknowledgements(session: AsyncSession, incident_id: str) -> List[IncidentAcknowledgementORM]:
    result = await session.execute(
        select(IncidentAcknowledgementORM)
        .where(IncidentAcknowledgementORM.incident_id == incident_id)
        .order_by(IncidentAcknowledgementORM.acknowledged_at, IncidentAcknowledgementORM.id)
    )
    return list(result.scalars().all())


async def acknowledge(
    session: AsyncSession,
    incident_id: str,
    user: User,
    message: Optional[str] = None,
) -> Tuple[IncidentAcknowledgementORM, bool]:
    """
    Record that a family member (or operator) is responding.

    Returns (acknowledgement, already_acknowledged). A repeat from the same
    responder returns the existing row unchanged.
    """
    incident = await get_incident(session, incident_id)
    if not user.is_staff and not await family_service.is_active_member(session, incident.family_group_id, user.id):
        raise PermissionDeniedError(
            "Only members of the incident's family can acknowledge it",
            details={"incident_id": incident_id},
        )

    result = await session.execute(
        select(IncidentAcknowledgementORM).where(
            IncidentAcknowledgementORM.incident_id == incident.id,
            IncidentAcknowledgementORM.responder_id == user.id,
        )
    )
    existing = result.scalars().first()
    if existing is not None:
        return existing, True

    if incident.status not in OPEN_STATUSES:
        raise IncidentNotActiveError(incident.id, incident.status)

    ack = IncidentAcknowledgementORM(
        incident_id=incident.id,
        responder_id=user.id,
        message=message or DEFAULT_ACK_MESSAGE,
        acknowledged_at=utcnow(),
    )
    session.add(ack)
    # Unique (incident_id, responder_id) rejects a racing duplicate here
    await session.flush()

    await record_first_response(session, incident.id, user.id)
    await log_audit_event(
        session, incident.id, incident.family_group_id,
        action="ACKNOWLEDGED",
        action_type="human",
        actor=user.id,
        details=ack.message,
    )
    queue_change(session, change_event(
        "incident_acknowledgements", ChangeOperation.INSERT,
        {
            "id": ack.id,
            "incident_id": incident.id,
            "responder_id": user.id,
            "message": ack.message,
            "acknowledged_at": ack.acknowledged_at.isoformat(),
        },
        family_group_id=incident.family_group_id,
        incident_id=incident.id,
        user_id=user.id,
    ))
    logger.info(f"Incident {incident.id} acknowledged by {user.id}")
    return ack, False


async def record_first_response(session: AsyncSession, incident_id: str, responder_id: str) -> None:
    engine = SlaEngine(session)
    interaction = await engine.interaction_for_incident(incident_id)
    if interaction is not None:
        await engine.record_first_response(interaction.id, responder_id)


# --------------------------------------------------------------------------
# Transitions
# --------------------------------------------------------------------------

async def transition(
    session: AsyncSession,
    incident_id: str,
    target: IncidentStatus,
    actor: str,
    allowed_from: Iterable[str] = OPEN_STATUSES,
    reason: Optional[str] = None,
) -> IncidentORM:
    """
    Compare-and-set status change. Raises InvalidTransitionError when the
    incident is no longer in one of ``allowed_from`` (including the loser of
    a concurrent race).
    """
    incident = await get_incident(session, incident_id)
    now = utcnow()
    values = {"status": target.value, "updated_at": now}
    terminal = target.value in TERMINAL_STATUSES
    if terminal:
        values.update(resolved_by=actor, resolved_at=now)

    result = await session.execute(
        update(IncidentORM)
        .where(IncidentORM.id == incident.id, IncidentORM.status.in_(list(allowed_from)))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await session.refresh(incident)
    if result.rowcount != 1:
        raise InvalidTransitionError(incident.status, target.value)

    if terminal:
        engine = SlaEngine(session)
        interaction = await engine.interaction_for_incident(incident.id)
        if interaction is not None:
            await engine.close_interaction(interaction.id, now=now)

    await log_audit_event(
        session, incident.id, incident.family_group_id,
        action=target.value.upper(),
        action_type="human",
        actor=actor,
        details=reason,
    )
    incident_changed(session, incident, ChangeOperation.UPDATE)
    logger.info(f"Incident {incident.id} → {target.value} by {actor}")
    return incident


async def resolve(session: AsyncSession, incident_id: str, user: User, reason: Optional[str] = None) -> IncidentORM:
    incident = await get_incident_for(session, incident_id, user)
    return await transition(session, incident.id, IncidentStatus.RESOLVED, user.id, reason=reason)


async def cancel(session: AsyncSession, incident_id: str, user: User, reason: Optional[str] = None) -> IncidentORM:
    incident = await get_incident_for(session, incident_id, user)
    return await transition(session, incident.id, IncidentStatus.CANCELED, user.id, reason=reason)
