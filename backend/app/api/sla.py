"""
SLA / Escalation API Router.

RPC-style entry points (check, apply policy, breach alerts, sweep,
metrics) plus management of tracked interactions, policies and the
business-hours calendar.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Security
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.database import get_db, utcnow
from backend.app.core.security import SLA_ADMIN, SLA_READ, SLA_WRITE, User, get_current_user
from backend.app.schemas.sla import (
    ApplyPolicyResponse,
    BreachAlert,
    BreachType,
    BusinessHoursEntry,
    BusinessHoursUpdate,
    InteractionCreate,
    InteractionResponse,
    InteractionStatus,
    SlaMetrics,
    SlaPolicyCreate,
    SlaPolicyResponse,
    SlaPolicyUpdate,
    SlaStatusResponse,
    SweepResult,
)
from backend.app.services.sla_engine import SlaEngine

logger = logging.getLogger(__name__)
router = APIRouter()


# ------------------------------------------------------------- entry points

@router.get("/interactions/{interaction_id}/status", response_model=SlaStatusResponse)
async def check_sla_status(
    interaction_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[SLA_READ]),
):
    """
    Evaluate one interaction now. Breaches are recorded (once) and escalation
    fires (once) as side effects.
    """
    return await SlaEngine(db).check_sla_status(interaction_id)


@router.post("/interactions/{interaction_id}/apply-policy", response_model=ApplyPolicyResponse)
async def apply_policy(
    interaction_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[SLA_WRITE]),
):
    """Stamp response_due_at from the applicable policy."""
    return await SlaEngine(db).apply_policy_to_interaction(interaction_id)


@router.get("/breaches", response_model=List[BreachAlert])
async def list_breach_alerts(
    breach_type: Optional[BreachType] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[SLA_READ]),
):
    """Unresolved breaches with interaction summary, newest first."""
    return await SlaEngine(db).list_breach_alerts(breach_type.value if breach_type else None, limit)


@router.post("/sweep", response_model=SweepResult)
async def sweep_all_interactions(
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[SLA_WRITE]),
):
    """Run the scheduled sweep on demand."""
    return await SlaEngine(db).sweep_all_interactions()


@router.get("/metrics", response_model=SlaMetrics)
async def compute_metrics(
    start: Optional[datetime] = Query(None, description="Defaults to 30 days ago"),
    end: Optional[datetime] = Query(None, description="Defaults to now"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[SLA_READ]),
):
    """Compliance report for interactions created in [start, end)."""
    end = end or utcnow()
    start = start or end - timedelta(days=30)
    return await SlaEngine(db).compute_metrics(start, end)


# ------------------------------------------------------------ interactions

@router.post("/interactions", response_model=InteractionResponse, status_code=201)
async def register_interaction(
    payload: InteractionCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[SLA_WRITE]),
):
    """Start tracking a conversation (or any other interaction) against SLA policies."""
    fields = payload.model_dump()
    fields["kind"] = payload.kind.value
    interaction = await SlaEngine(db).track_interaction(**fields)
    return InteractionResponse.model_validate(interaction)


@router.get("/interactions", response_model=List[InteractionResponse])
async def list_interactions(
    status: Optional[InteractionStatus] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[SLA_READ]),
):
    interactions = await SlaEngine(db).list_interactions(status.value if status else None, limit)
    return [InteractionResponse.model_validate(i) for i in interactions]


@router.get("/interactions/{interaction_id}", response_model=InteractionResponse)
async def get_interaction(
    interaction_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[SLA_READ]),
):
    return InteractionResponse.model_validate(await SlaEngine(db).get_interaction(interaction_id))


@router.post("/interactions/{interaction_id}/respond", response_model=InteractionResponse)
async def record_response(
    interaction_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[SLA_WRITE]),
):
    """Record the first outbound response by the caller; resolves a first-response breach."""
    interaction = await SlaEngine(db).record_first_response(interaction_id, current_user.id)
    return InteractionResponse.model_validate(interaction)


@router.post("/interactions/{interaction_id}/close", response_model=InteractionResponse)
async def close_interaction(
    interaction_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[SLA_WRITE]),
):
    """Close the interaction; resolves every open breach."""
    interaction = await SlaEngine(db).close_interaction(interaction_id)
    return InteractionResponse.model_validate(interaction)


# ---------------------------------------------------------------- policies

@router.get("/policies", response_model=List[SlaPolicyResponse])
async def list_policies(
    include_inactive: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[SLA_READ]),
):
    policies = await SlaEngine(db).list_policies(include_inactive)
    return [SlaPolicyResponse.model_validate(p) for p in policies]


@router.post("/policies", response_model=SlaPolicyResponse, status_code=201)
async def create_policy(
    payload: SlaPolicyCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[SLA_ADMIN]),
):
    policy = await SlaEngine(db).create_policy(**payload.model_dump())
    return SlaPolicyResponse.model_validate(policy)


@router.patch("/policies/{policy_id}", response_model=SlaPolicyResponse)
async def update_policy(
    policy_id: str,
    payload: SlaPolicyUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[SLA_ADMIN]),
):
    policy = await SlaEngine(db).update_policy(policy_id, **payload.model_dump(exclude_unset=True))
    return SlaPolicyResponse.model_validate(policy)


@router.delete("/policies/{policy_id}", status_code=204)
async def delete_policy(
    policy_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[SLA_ADMIN]),
):
    await SlaEngine(db).delete_policy(policy_id)


# ---------------------------------------------------------- business hours

@router.get("/business-hours", response_model=List[BusinessHoursEntry])
async def get_business_hours(
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[SLA_READ]),
):
    return [BusinessHoursEntry.model_validate(row) for row in await SlaEngine(db).get_business_hours()]


@router.put("/business-hours", response_model=List[BusinessHoursEntry])
async def set_business_hours(
    payload: BusinessHoursUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[SLA_ADMIN]),
):
    """Replace the weekly business calendar."""
    rows = await SlaEngine(db).set_business_hours([d.model_dump() for d in payload.days])
    return [BusinessHoursEntry.model_validate(row) for row in rows]
