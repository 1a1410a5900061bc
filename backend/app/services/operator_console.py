"""
Operator Console (Call-Centre Hub).

Aggregates the open incident queue for call-centre operators, applies the
manual transitions (acknowledge, close) and priority triage, and keeps a
live snapshot of the queue in sync with incident change events.
"""
import asyncio
import logging
from collections import Counter
from typing import Callable, List, Optional

from sqlalchemy import case, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.security import User
from backend.app.events.bus import EventBus, Subscription
from backend.app.events.schemas import ChangeOperation
from backend.app.models.incident_orm import IncidentORM
from backend.app.schemas.incidents import (
    IncidentPriority,
    IncidentStatus,
    OPEN_STATUSES,
    PRIORITY_RANK,
)
from backend.app.services import incident_service
from backend.app.services.audit_service import log_audit_event
from backend.app.services.sla_engine import SlaEngine

logger = logging.getLogger(__name__)

# Canned guidance shown to operators; not machine-enforced.
RESPONSE_GUIDANCE = [
    {
        "priority": IncidentPriority.CRITICAL.value,
        "window": "0-2 minutes",
        "min_minutes": 0,
        "max_minutes": 2,
        "instruction": "Call the member immediately and dispatch emergency services if unreachable.",
    },
    {
        "priority": IncidentPriority.HIGH.value,
        "window": "2-5 minutes",
        "min_minutes": 2,
        "max_minutes": 5,
        "instruction": "Call the member and alert the family group.",
    },
    {
        "priority": IncidentPriority.MEDIUM.value,
        "window": "5-15 minutes",
        "min_minutes": 5,
        "max_minutes": 15,
        "instruction": "Review location history and contact the member.",
    },
    {
        "priority": IncidentPriority.LOW.value,
        "window": "15+ minutes",
        "min_minutes": 15,
        "max_minutes": None,
        "instruction": "Follow up by message and close once confirmed safe.",
    },
]


def response_guidance() -> List[dict]:
    return [dict(entry) for entry in RESPONSE_GUIDANCE]


_priority_order = case(
    {priority: rank for priority, rank in PRIORITY_RANK.items()},
    value=IncidentORM.priority,
    else_=len(PRIORITY_RANK) + 1,
)


async def list_queue(session: AsyncSession, limit: int = 200) -> List[IncidentORM]:
    """Open incidents, critical first, oldest first within a band."""
    result = await session.execute(
        select(IncidentORM)
        .where(IncidentORM.status.in_(OPEN_STATUSES))
        .order_by(_priority_order, IncidentORM.created_at, IncidentORM.id)
        .limit(limit)
    )
    return list(result.scalars().all())


async def queue_summary(session: AsyncSession) -> dict:
    queue = await list_queue(session, limit=10000)
    by_status = Counter(i.status for i in queue)
    by_priority = Counter(i.priority for i in queue)
    return {
        "total": len(queue),
        "by_status": {s: by_status.get(s, 0) for s in OPEN_STATUSES},
        "by_priority": {p.value: by_priority.get(p.value, 0) for p in IncidentPriority},
    }


async def acknowledge(session: AsyncSession, incident_id: str, operator: User) -> IncidentORM:
    """active → acknowledged; counts as the first response on the tracked interaction."""
    incident = await incident_service.transition(
        session, incident_id, IncidentStatus.ACKNOWLEDGED, operator.id,
        allowed_from=(IncidentStatus.ACTIVE.value,),
        reason="Operator acknowledged",
    )
    await incident_service.record_first_response(session, incident.id, operator.id)
    return incident


async def close(session: AsyncSession, incident_id: str, operator: User, reason: Optional[str] = None) -> IncidentORM:
    """open → closed."""
    return await incident_service.transition(
        session, incident_id, IncidentStatus.CLOSED, operator.id,
        reason=reason or "Operator closed",
    )


async def set_priority(session: AsyncSession, incident_id: str, priority: IncidentPriority, operator: User) -> IncidentORM:
    """Visual triage; mirrored to the tracked interaction's numeric priority."""
    incident = await incident_service.get_incident(session, incident_id)
    previous = incident.priority
    if previous == priority.value:
        return incident

    incident.priority = priority.value
    await session.flush()

    engine = SlaEngine(session)
    interaction = await engine.interaction_for_incident(incident.id)
    if interaction is not None:
        await engine.set_priority(interaction.id, PRIORITY_RANK[priority.value])

    await log_audit_event(
        session, incident.id, incident.family_group_id,
        action="PRIORITY_CHANGED",
        action_type="human",
        actor=operator.id,
        details=f"{previous} → {priority.value}",
    )
    incident_service.incident_changed(session, incident, ChangeOperation.UPDATE)
    logger.info(f"Incident {incident.id} priority {previous} → {priority.value} by {operator.id}")
    return incident


class OperatorQueueMonitor:
    """
    Keeps the latest queue snapshot for a console session.

    Every ``incidents`` change event is treated as a cue to re-fetch; events
    are never merged into the snapshot directly. ``poll()`` refreshes on demand.
    """

    def __init__(self, bus: EventBus, session_factory: Callable, on_change: Optional[Callable] = None):
        self.bus = bus
        self.session_factory = session_factory
        self.on_change = on_change
        self.snapshot: List[dict] = []
        self.refresh_count = 0
        self._subscription: Optional[Subscription] = None
        self._task: Optional[asyncio.Task] = None

    async def poll(self) -> List[dict]:
        async with self.session_factory() as session:
            queue = await list_queue(session)
            self.snapshot = [incident_service.incident_record(i) for i in queue]
        self.refresh_count += 1
        if self.on_change:
            self.on_change(self.snapshot)
        return self.snapshot

    async def start(self) -> None:
        if self._task is not None:
            return
        self._subscription = self.bus.subscribe("incidents")
        await self.poll()
        self._task = asyncio.create_task(self._run())
        logger.info("Operator queue monitor started")

    async def _run(self) -> None:
        async for event in self._subscription:
            try:
                await self.poll()
            except Exception as e:
                logger.error(f"Queue refresh after {event.event_type} failed: {e}", exc_info=True)

    async def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._subscription = None
        logger.info("Operator queue monitor stopped")
