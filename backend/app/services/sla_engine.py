"""
SLA / Escalation Engine.

Works over any tracked interaction (SOS incident or support conversation):
selects the applicable response-time policy, computes elapsed-vs-target
time (optionally business-hours aware), records each breach exactly once
and escalates at most once.

The pure functions at the top carry the arithmetic; ``SlaEngine`` wires
them to the database. Every entry point accepts ``now`` so callers (and
tests) control the clock.
"""
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import get_settings
from backend.app.core.database import utcnow
from backend.app.core.exceptions import NotFoundError, ValidationError
from backend.app.core.observability import get_tracer
from backend.app.events.bus import queue_change
from backend.app.events.schemas import ChangeOperation, change_event
from backend.app.models.sla_orm import (
    BusinessHoursORM,
    InteractionAssignmentORM,
    SlaBreachORM,
    SlaPolicyORM,
    TrackedInteractionORM,
)
from backend.app.schemas.sla import (
    BreachType,
    InteractionStatus,
    SWEEPABLE_STATUSES,
    SlaState,
)
from backend.app.services.audit_service import log_audit_event

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

WARNING_FRACTION = 0.25

BusinessWindows = Dict[int, Tuple[time, time]]


@dataclass
class TargetEvaluation:
    status: SlaState
    target_minutes: int
    elapsed_minutes: int
    remaining_minutes: int

    def as_dict(self) -> dict:
        return {
            "status": self.status.value,
            "target_minutes": self.target_minutes,
            "elapsed_minutes": self.elapsed_minutes,
            "remaining_minutes": self.remaining_minutes,
        }


# --------------------------------------------------------------------------
# Pure arithmetic
# --------------------------------------------------------------------------

def policy_score(policy, channel: Optional[str], priority: Optional[int]) -> Optional[int]:
    """
    Specificity score of a policy for an interaction, or None when a declared
    filter disagrees. Channel match is worth 2, priority match 1.
    """
    score = 0
    if policy.channel is not None:
        if policy.channel != channel:
            return None
        score += 2
    if policy.priority is not None:
        if policy.priority != priority:
            return None
        score += 1
    return score


def select_policy(policies: Sequence, channel: Optional[str], priority: Optional[int]):
    """
    Pick the most specific matching policy.

    ``policies`` must already be in fetch order (created_at, id). Equal scores
    go to the higher ``precedence``, then to the earlier policy. Filter-less
    policies score 0 and therefore only win when nothing filtered matches.
    """
    best = None
    best_key: Optional[Tuple[int, int]] = None
    for policy in policies:
        score = policy_score(policy, channel, priority)
        if score is None:
            continue
        key = (score, policy.precedence or 0)
        if best_key is None or key > best_key:
            best, best_key = policy, key
    return best


def wall_clock_minutes(start: datetime, end: datetime) -> int:
    if end <= start:
        return 0
    return int((end - start).total_seconds() // 60)


def business_minutes_between(
    start: datetime,
    end: datetime,
    windows: BusinessWindows,
    tz: ZoneInfo,
) -> int:
    """
    Whole minutes of [start, end] falling inside per-weekday business windows.

    Windows are local wall-clock times in ``tz`` keyed by weekday (0 = Monday).
    Each day's window is intersected with the interval and the overlaps summed.
    """
    if end <= start or not windows:
        return 0

    local_start = start.astimezone(tz)
    local_end = end.astimezone(tz)
    total_seconds = 0.0

    day: date = local_start.date()
    while day <= local_end.date():
        window = windows.get(day.weekday())
        if window is not None:
            open_at = datetime.combine(day, window[0], tzinfo=tz).astimezone(timezone.utc)
            close_at = datetime.combine(day, window[1], tzinfo=tz).astimezone(timezone.utc)
            lo = max(open_at, start.astimezone(timezone.utc))
            hi = min(close_at, end.astimezone(timezone.utc))
            if hi > lo:
                total_seconds += (hi - lo).total_seconds()
        day += timedelta(days=1)

    return int(total_seconds // 60)


def evaluate_target(target_minutes: int, elapsed_minutes: int) -> TargetEvaluation:
    """
    Three-way threshold: breached when nothing remains, warning when at most
    a quarter of the target (rounded up) remains, ok otherwise.
    """
    remaining = target_minutes - elapsed_minutes
    if remaining <= 0:
        state = SlaState.BREACHED
    elif remaining <= math.ceil(target_minutes * WARNING_FRACTION):
        state = SlaState.WARNING
    else:
        state = SlaState.OK
    return TargetEvaluation(state, target_minutes, elapsed_minutes, max(0, remaining))


def should_escalate(policy, interaction, elapsed_minutes: int) -> bool:
    if not policy.escalation_enabled:
        return False
    if policy.escalation_after_minutes is None or not policy.escalate_to_user_id:
        return False
    if interaction.first_response_at is not None:
        return False
    if interaction.status in (InteractionStatus.ESCALATED.value, InteractionStatus.CLOSED.value):
        return False
    threshold = min(policy.first_response_target_minutes, policy.escalation_after_minutes)
    return elapsed_minutes >= threshold


def policy_summary(policy) -> dict:
    return {
        "id": policy.id,
        "name": policy.name,
        "channel": policy.channel,
        "priority": policy.priority,
        "first_response_target_minutes": policy.first_response_target_minutes,
        "resolution_target_minutes": policy.resolution_target_minutes,
        "business_hours_only": policy.business_hours_only,
    }


def interaction_record(interaction: TrackedInteractionORM) -> dict:
    return {
        "id": interaction.id,
        "kind": interaction.kind,
        "source_id": interaction.source_id,
        "channel": interaction.channel,
        "priority": interaction.priority,
        "status": interaction.status,
        "assigned_to": interaction.assigned_to,
    }


# --------------------------------------------------------------------------
# Database-backed engine
# --------------------------------------------------------------------------

class SlaEngine:
    """
    SLA evaluation over one AsyncSession.

    Writes are flushed, never committed; the caller owns the transaction.
    """

    def __init__(self, session: AsyncSession, business_timezone: Optional[str] = None):
        self.session = session
        self.tz = ZoneInfo(business_timezone or get_settings().business_timezone)

    # ---- lookups -----------------------------------------------------------

    async def get_interaction(self, interaction_id: str) -> TrackedInteractionORM:
        interaction = await self.session.get(TrackedInteractionORM, interaction_id)
        if interaction is None:
            raise NotFoundError("Interaction", interaction_id)
        return interaction

    async def interaction_for_incident(self, incident_id: str) -> Optional[TrackedInteractionORM]:
        result = await self.session.execute(
            select(TrackedInteractionORM).where(
                TrackedInteractionORM.kind == "incident",
                TrackedInteractionORM.source_id == incident_id,
            )
        )
        return result.scalars().first()

    async def active_policies(self) -> List[SlaPolicyORM]:
        result = await self.session.execute(
            select(SlaPolicyORM)
            .where(SlaPolicyORM.is_active.is_(True))
            .order_by(SlaPolicyORM.created_at, SlaPolicyORM.id)
        )
        return list(result.scalars().all())

    async def business_windows(self) -> BusinessWindows:
        result = await self.session.execute(
            select(BusinessHoursORM).where(BusinessHoursORM.is_active.is_(True))
        )
        return {row.day_of_week: (row.start_time, row.end_time) for row in result.scalars().all()}

    async def applicable_policy(self, interaction: TrackedInteractionORM) -> Optional[SlaPolicyORM]:
        return select_policy(await self.active_policies(), interaction.channel, interaction.priority)

    async def elapsed_minutes(self, policy: SlaPolicyORM, start: datetime, now: datetime) -> int:
        if policy.business_hours_only:
            return business_minutes_between(start, now, await self.business_windows(), self.tz)
        return wall_clock_minutes(start, now)

    # ---- interactions ------------------------------------------------------

    async def track_interaction(
        self,
        kind: str = "conversation",
        source_id: Optional[str] = None,
        subject: Optional[str] = None,
        contact_name: Optional[str] = None,
        channel: Optional[str] = None,
        priority: Optional[int] = None,
        created_at: Optional[datetime] = None,
    ) -> TrackedInteractionORM:
        """Register an interaction and stamp its response deadline."""
        interaction = TrackedInteractionORM(
            kind=kind,
            source_id=source_id,
            subject=subject,
            contact_name=contact_name,
            channel=channel,
            priority=priority,
            status=InteractionStatus.OPEN.value,
            created_at=created_at or utcnow(),
        )
        self.session.add(interaction)
        await self.session.flush()
        await self._apply_policy(interaction)
        logger.info(f"Tracking {kind} interaction {interaction.id} (channel={channel}, priority={priority})")
        return interaction

    async def list_interactions(self, status: Optional[str] = None, limit: int = 100) -> List[TrackedInteractionORM]:
        query = select(TrackedInteractionORM)
        if status:
            query = query.where(TrackedInteractionORM.status == status)
        result = await self.session.execute(
            query.order_by(TrackedInteractionORM.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def record_first_response(
        self,
        interaction_id: str,
        responder_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TrackedInteractionORM:
        """
        Stamp the first outbound response (later calls keep the first stamp)
        and resolve any open first-response breach.
        """
        now = now or utcnow()
        interaction = await self.get_interaction(interaction_id)
        if interaction.first_response_at is None:
            interaction.first_response_at = now
            if interaction.status == InteractionStatus.OPEN.value and responder_id:
                interaction.status = InteractionStatus.ASSIGNED.value
                interaction.assigned_to = responder_id
            await self._resolve_breaches(interaction.id, now, BreachType.FIRST_RESPONSE.value)
            await self.session.flush()
            queue_change(self.session, change_event(
                "tracked_interactions", ChangeOperation.UPDATE, interaction_record(interaction),
            ))
            logger.info(f"First response recorded on interaction {interaction.id} by {responder_id}")
        return interaction

    async def close_interaction(self, interaction_id: str, now: Optional[datetime] = None) -> TrackedInteractionORM:
        now = now or utcnow()
        interaction = await self.get_interaction(interaction_id)
        if interaction.status == InteractionStatus.CLOSED.value:
            return interaction
        interaction.status = InteractionStatus.CLOSED.value
        interaction.closed_at = now
        await self._resolve_breaches(interaction.id, now)
        await self.session.execute(
            update(InteractionAssignmentORM)
            .where(
                InteractionAssignmentORM.interaction_id == interaction.id,
                InteractionAssignmentORM.is_active.is_(True),
            )
            .values(is_active=False)
        )
        await self.session.flush()
        queue_change(self.session, change_event(
            "tracked_interactions", ChangeOperation.UPDATE, interaction_record(interaction),
        ))
        logger.info(f"Interaction {interaction.id} closed")
        return interaction

    async def set_priority(self, interaction_id: str, priority: Optional[int]) -> TrackedInteractionORM:
        interaction = await self.get_interaction(interaction_id)
        interaction.priority = priority
        await self.session.flush()
        return interaction

    # ---- entry points ------------------------------------------------------

    async def apply_policy_to_interaction(self, interaction_id: str) -> dict:
        interaction = await self.get_interaction(interaction_id)
        policy = await self._apply_policy(interaction)
        return {
            "interaction_id": interaction.id,
            "policy_name": policy.name if policy else None,
            "response_due_at": interaction.response_due_at,
        }

    async def _apply_policy(self, interaction: TrackedInteractionORM) -> Optional[SlaPolicyORM]:
        policy = await self.applicable_policy(interaction)
        if policy is None:
            logger.debug(f"No SLA policy applies to interaction {interaction.id}")
            return None
        interaction.response_due_at = interaction.created_at + timedelta(
            minutes=policy.first_response_target_minutes
        )
        await self.session.flush()
        return policy

    async def check_sla_status(self, interaction_id: str, now: Optional[datetime] = None) -> dict:
        """
        Evaluate one interaction: threshold states, idempotent breach
        recording and one-shot escalation.
        """
        now = now or utcnow()
        interaction = await self.get_interaction(interaction_id)
        policy = await self.applicable_policy(interaction)

        result = {
            "interaction_id": interaction.id,
            "applicable_policy": None,
            "first_response": None,
            "resolution": None,
            "escalated": interaction.status == InteractionStatus.ESCALATED.value,
            "new_breaches": 0,
        }
        if policy is None:
            return result

        result["applicable_policy"] = policy_summary(policy)
        elapsed = await self.elapsed_minutes(policy, interaction.created_at, now)

        closed = interaction.status == InteractionStatus.CLOSED.value
        if interaction.first_response_at is None and not closed:
            first = evaluate_target(policy.first_response_target_minutes, elapsed)
            result["first_response"] = first.as_dict()
            if first.status == SlaState.BREACHED:
                if await self.record_breach(interaction, policy, BreachType.FIRST_RESPONSE.value,
                                            first.target_minutes, elapsed, now):
                    result["new_breaches"] += 1

        if not closed:
            resolution = evaluate_target(policy.resolution_target_minutes, elapsed)
            result["resolution"] = resolution.as_dict()
            if resolution.status == SlaState.BREACHED:
                if await self.record_breach(interaction, policy, BreachType.RESOLUTION.value,
                                            resolution.target_minutes, elapsed, now):
                    result["new_breaches"] += 1

        if await self.trigger_escalation(interaction, policy, elapsed, now):
            result["escalated"] = True

        return result

    async def record_breach(
        self,
        interaction: TrackedInteractionORM,
        policy: SlaPolicyORM,
        breach_type: str,
        target_minutes: int,
        actual_minutes: int,
        now: Optional[datetime] = None,
    ) -> bool:
        """Insert a breach unless an unresolved one of the same type exists. Returns True if inserted."""
        existing = await self.session.execute(
            select(SlaBreachORM.id).where(
                SlaBreachORM.interaction_id == interaction.id,
                SlaBreachORM.breach_type == breach_type,
                SlaBreachORM.resolved_at.is_(None),
            )
        )
        if existing.first() is not None:
            return False

        breach = SlaBreachORM(
            interaction_id=interaction.id,
            policy_id=policy.id,
            breach_type=breach_type,
            target_minutes=target_minutes,
            actual_minutes=actual_minutes,
            breached_at=now or utcnow(),
        )
        self.session.add(breach)
        await self.session.flush()
        queue_change(self.session, change_event(
            "sla_breaches",
            ChangeOperation.INSERT,
            {
                "id": breach.id,
                "interaction_id": interaction.id,
                "breach_type": breach_type,
                "target_minutes": target_minutes,
                "actual_minutes": actual_minutes,
            },
            incident_id=interaction.source_id if interaction.kind == "incident" else None,
        ))
        logger.warning(
            f"SLA breach recorded: {breach_type} on interaction {interaction.id} "
            f"({actual_minutes}m against {target_minutes}m target, policy={policy.name})"
        )
        return True

    async def trigger_escalation(
        self,
        interaction: TrackedInteractionORM,
        policy: SlaPolicyORM,
        elapsed_minutes: int,
        now: Optional[datetime] = None,
    ) -> bool:
        """One-shot reassignment guarded by the escalated status. Returns True if it fired."""
        if not should_escalate(policy, interaction, elapsed_minutes):
            return False

        now = now or utcnow()
        interaction.status = InteractionStatus.ESCALATED.value
        interaction.assigned_to = policy.escalate_to_user_id
        interaction.escalated_at = now
        self.session.add(InteractionAssignmentORM(
            interaction_id=interaction.id,
            user_id=policy.escalate_to_user_id,
            role="escalation",
            assigned_at=now,
        ))
        await self.session.flush()

        if interaction.kind == "incident" and interaction.source_id:
            await log_audit_event(
                self.session, interaction.source_id, None,
                action="ESCALATED",
                action_type="automated",
                actor="sla-engine",
                details=(
                    f"No response after {elapsed_minutes} minutes; "
                    f"reassigned to {policy.escalate_to_user_id} (policy {policy.name})"
                ),
            )

        queue_change(self.session, change_event(
            "tracked_interactions", ChangeOperation.UPDATE, interaction_record(interaction),
            incident_id=interaction.source_id if interaction.kind == "incident" else None,
        ))
        logger.warning(
            f"Interaction {interaction.id} escalated to {policy.escalate_to_user_id} "
            f"after {elapsed_minutes}m (policy={policy.name})"
        )
        return True

    async def list_breach_alerts(self, breach_type: Optional[str] = None, limit: int = 50) -> List[dict]:
        """Unresolved breaches joined with the interaction summary, newest first."""
        query = (
            select(SlaBreachORM, TrackedInteractionORM)
            .outerjoin(TrackedInteractionORM, TrackedInteractionORM.id == SlaBreachORM.interaction_id)
            .where(SlaBreachORM.resolved_at.is_(None))
        )
        if breach_type:
            query = query.where(SlaBreachORM.breach_type == breach_type)
        result = await self.session.execute(
            query.order_by(SlaBreachORM.breached_at.desc(), SlaBreachORM.id).limit(limit)
        )

        alerts = []
        for breach, interaction in result.all():
            alerts.append({
                "id": breach.id,
                "interaction_id": breach.interaction_id,
                "policy_id": breach.policy_id,
                "breach_type": breach.breach_type,
                "target_minutes": breach.target_minutes,
                "actual_minutes": breach.actual_minutes,
                "breached_at": breach.breached_at,
                "subject": interaction.subject if interaction else None,
                "contact_name": interaction.contact_name if interaction else None,
                "channel": interaction.channel if interaction else None,
                "priority": interaction.priority if interaction else None,
                "interaction_status": interaction.status if interaction else None,
                "assigned_to": interaction.assigned_to if interaction else None,
            })
        return alerts

    async def sweep_all_interactions(self, now: Optional[datetime] = None) -> dict:
        """Check every non-terminal interaction; count newly recorded breaches."""
        now = now or utcnow()
        with tracer.start_as_current_span("sla.sweep"):
            result = await self.session.execute(
                select(TrackedInteractionORM.id)
                .where(TrackedInteractionORM.status.in_(SWEEPABLE_STATUSES))
                .order_by(TrackedInteractionORM.created_at)
            )
            interaction_ids = [row[0] for row in result.all()]

            checked = 0
            breaches = 0
            for interaction_id in interaction_ids:
                status = await self.check_sla_status(interaction_id, now=now)
                checked += 1
                breaches += status["new_breaches"]

        logger.info(f"SLA sweep: checked={checked}, new_breaches={breaches}")
        return {"checked": checked, "breaches": breaches}

    async def compute_metrics(self, start: datetime, end: datetime) -> dict:
        """
        Compliance over interactions created in [start, end).

        Average first response is taken per interaction from its own
        first_response_at, not from a global approximation.
        """
        if end <= start:
            raise ValidationError("Metrics period end must be after start", field="end")

        result = await self.session.execute(
            select(TrackedInteractionORM).where(
                TrackedInteractionORM.created_at >= start,
                TrackedInteractionORM.created_at < end,
            )
        )
        interactions = list(result.scalars().all())
        total = len(interactions)

        breach_rows = await self.session.execute(
            select(SlaBreachORM.breach_type, func.count(SlaBreachORM.id))
            .join(TrackedInteractionORM, TrackedInteractionORM.id == SlaBreachORM.interaction_id)
            .where(
                TrackedInteractionORM.created_at >= start,
                TrackedInteractionORM.created_at < end,
            )
            .group_by(SlaBreachORM.breach_type)
        )
        by_type = {breach_type: count for breach_type, count in breach_rows.all()}
        total_breaches = sum(by_type.values())

        if total == 0:
            compliance = 100.0
        else:
            compliance = (total - total_breaches) / total * 100
            compliance = round(min(100.0, max(0.0, compliance)), 1)

        response_minutes = [
            (i.first_response_at - i.created_at).total_seconds() / 60
            for i in interactions
            if i.first_response_at is not None
        ]
        avg_first_response = (
            round(sum(response_minutes) / len(response_minutes), 1) if response_minutes else None
        )

        return {
            "period_start": start,
            "period_end": end,
            "total_interactions": total,
            "total_breaches": total_breaches,
            "compliance_rate": compliance,
            "avg_first_response_minutes": avg_first_response,
            "breaches_by_type": by_type,
        }

    # ---- policies & calendar -----------------------------------------------

    async def list_policies(self, include_inactive: bool = False) -> List[SlaPolicyORM]:
        query = select(SlaPolicyORM)
        if not include_inactive:
            query = query.where(SlaPolicyORM.is_active.is_(True))
        result = await self.session.execute(query.order_by(SlaPolicyORM.created_at, SlaPolicyORM.id))
        return list(result.scalars().all())

    async def get_policy(self, policy_id: str) -> SlaPolicyORM:
        policy = await self.session.get(SlaPolicyORM, policy_id)
        if policy is None:
            raise NotFoundError("SLA policy", policy_id)
        return policy

    async def create_policy(self, **fields) -> SlaPolicyORM:
        _validate_escalation(fields)
        policy = SlaPolicyORM(**fields)
        self.session.add(policy)
        await self.session.flush()
        logger.info(f"SLA policy created: {policy.name} (channel={policy.channel}, priority={policy.priority})")
        return policy

    async def update_policy(self, policy_id: str, **changes) -> SlaPolicyORM:
        policy = await self.get_policy(policy_id)
        for key, value in changes.items():
            setattr(policy, key, value)
        _validate_escalation({
            "escalation_enabled": policy.escalation_enabled,
            "escalation_after_minutes": policy.escalation_after_minutes,
            "escalate_to_user_id": policy.escalate_to_user_id,
        })
        await self.session.flush()
        return policy

    async def delete_policy(self, policy_id: str) -> None:
        policy = await self.get_policy(policy_id)
        await self.session.delete(policy)
        await self.session.flush()
        logger.info(f"SLA policy deleted: {policy.name}")

    async def get_business_hours(self) -> List[BusinessHoursORM]:
        result = await self.session.execute(select(BusinessHoursORM).order_by(BusinessHoursORM.day_of_week))
        return list(result.scalars().all())

    async def set_business_hours(self, days: List[dict]) -> List[BusinessHoursORM]:
        """Replace the weekly calendar; days not listed have no business window."""
        for row in await self.get_business_hours():
            await self.session.delete(row)
        await self.session.flush()
        for day in days:
            self.session.add(BusinessHoursORM(**day))
        await self.session.flush()
        return await self.get_business_hours()

    async def _resolve_breaches(self, interaction_id: str, now: datetime, breach_type: Optional[str] = None) -> None:
        stmt = update(SlaBreachORM).where(
            SlaBreachORM.interaction_id == interaction_id,
            SlaBreachORM.resolved_at.is_(None),
        )
        if breach_type:
            stmt = stmt.where(SlaBreachORM.breach_type == breach_type)
        await self.session.execute(stmt.values(resolved_at=now))


def _validate_escalation(fields: dict) -> None:
    if fields.get("escalation_enabled") and (
        fields.get("escalation_after_minutes") is None or not fields.get("escalate_to_user_id")
    ):
        raise ValidationError(
            "Escalation requires escalation_after_minutes and escalate_to_user_id",
            field="escalation_enabled",
        )
