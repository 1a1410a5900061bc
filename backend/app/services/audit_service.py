"""Persistent incident audit trail."""
import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.logging import correlation_id_ctx
from backend.app.models.audit_orm import IncidentAuditEntryORM

logger = logging.getLogger(__name__)


async def log_audit_event(
    session: AsyncSession,
    incident_id: str,
    family_group_id: Optional[str],
    action: str,
    action_type: str,
    actor: str,
    details: Optional[str] = None,
    trace_id: Optional[str] = None,
) -> IncidentAuditEntryORM:
    """Helper to log persistent audit entries for every lifecycle step."""
    # Get current trace_id from context if not provided
    if not trace_id:
        trace_id = correlation_id_ctx.get()

    entry = IncidentAuditEntryORM(
        incident_id=incident_id,
        family_group_id=family_group_id,
        action=action,
        action_type=action_type,
        actor=actor,
        details=details,
        trace_id=trace_id,
    )
    session.add(entry)
    await session.flush()
    return entry


async def get_audit_trail(session: AsyncSession, incident_id: str) -> List[IncidentAuditEntryORM]:
    result = await session.execute(
        select(IncidentAuditEntryORM)
        .where(IncidentAuditEntryORM.incident_id == incident_id)
        .order_by(IncidentAuditEntryORM.timestamp, IncidentAuditEntryORM.id)
    )
    return list(result.scalars().all())
