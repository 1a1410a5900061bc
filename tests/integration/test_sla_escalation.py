"""
Integration tests for SLA evaluation against the database: thresholds,
idempotent breach recording and one-shot escalation.
"""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.security import Role, User
from backend.app.models.sla_orm import InteractionAssignmentORM, SlaBreachORM
from backend.app.schemas.incidents import IncidentCreate
from backend.app.services import audit_service, incident_service
from backend.app.services.sla_engine import SlaEngine
from backend.app.services.sla_seed import load_sla_defaults, seed_sla_defaults

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


async def _chat_policy(engine: SlaEngine, **overrides):
    fields = dict(
        name="Chat",
        channel="chat",
        first_response_target_minutes=10,
        resolution_target_minutes=60,
        escalation_enabled=True,
        escalation_after_minutes=15,
        escalate_to_user_id="supervisor-1",
    )
    fields.update(overrides)
    return await engine.create_policy(**fields)


async def _breach_count(session: AsyncSession, interaction_id: str) -> int:
    return await session.scalar(
        select(func.count(SlaBreachORM.id)).where(SlaBreachORM.interaction_id == interaction_id)
    )


@pytest.mark.asyncio
async def test_first_response_thresholds(db_session: AsyncSession):
    engine = SlaEngine(db_session)
    await _chat_policy(engine, escalation_enabled=False)
    interaction = await engine.track_interaction(channel="chat", created_at=T0)
    assert interaction.response_due_at == T0 + timedelta(minutes=10)

    status = await engine.check_sla_status(interaction.id, now=T0 + timedelta(minutes=6))
    assert status["first_response"]["status"] == "ok"

    status = await engine.check_sla_status(interaction.id, now=T0 + timedelta(minutes=7))
    assert status["first_response"]["status"] == "warning"
    assert status["first_response"]["remaining_minutes"] == 3
    assert status["new_breaches"] == 0

    status = await engine.check_sla_status(interaction.id, now=T0 + timedelta(minutes=11))
    assert status["first_response"]["status"] == "breached"
    assert status["new_breaches"] == 1


@pytest.mark.asyncio
async def test_breach_recorded_once(db_session: AsyncSession):
    engine = SlaEngine(db_session)
    await _chat_policy(engine, escalation_enabled=False)
    interaction = await engine.track_interaction(channel="chat", created_at=T0)

    new = 0
    for minute in (11, 12, 13):
        status = await engine.check_sla_status(interaction.id, now=T0 + timedelta(minutes=minute))
        new += status["new_breaches"]

    assert new == 1
    assert await _breach_count(db_session, interaction.id) == 1


@pytest.mark.asyncio
async def test_escalation_fires_once(db_session: AsyncSession):
    engine = SlaEngine(db_session)
    await _chat_policy(engine)
    interaction = await engine.track_interaction(channel="chat", created_at=T0)

    status = await engine.check_sla_status(interaction.id, now=T0 + timedelta(minutes=9))
    assert status["escalated"] is False

    # min(first-response target, escalation delay) = 10 minutes
    status = await engine.check_sla_status(interaction.id, now=T0 + timedelta(minutes=10))
    assert status["escalated"] is True
    assert interaction.status == "escalated"
    assert interaction.assigned_to == "supervisor-1"
    escalated_at = interaction.escalated_at

    await engine.check_sla_status(interaction.id, now=T0 + timedelta(minutes=20))
    assert interaction.escalated_at == escalated_at

    assignments = await db_session.scalar(
        select(func.count(InteractionAssignmentORM.id))
        .where(InteractionAssignmentORM.interaction_id == interaction.id)
    )
    assert assignments == 1


@pytest.mark.asyncio
async def test_no_escalation_after_first_response(db_session: AsyncSession):
    engine = SlaEngine(db_session)
    await _chat_policy(engine)
    interaction = await engine.track_interaction(channel="chat", created_at=T0)
    await engine.record_first_response(interaction.id, "agent-1", now=T0 + timedelta(minutes=4))

    status = await engine.check_sla_status(interaction.id, now=T0 + timedelta(minutes=30))
    assert status["escalated"] is False
    assert status["first_response"] is None
    assert interaction.status == "assigned"
    assert interaction.assigned_to == "agent-1"


@pytest.mark.asyncio
async def test_response_and_close_resolve_breaches(db_session: AsyncSession):
    engine = SlaEngine(db_session)
    await _chat_policy(engine, escalation_enabled=False)
    interaction = await engine.track_interaction(channel="chat", subject="Lost phone", created_at=T0)

    await engine.check_sla_status(interaction.id, now=T0 + timedelta(minutes=61))
    alerts = await engine.list_breach_alerts()
    assert {a["breach_type"] for a in alerts} == {"first_response", "resolution"}
    assert all(a["subject"] == "Lost phone" for a in alerts)

    await engine.record_first_response(interaction.id, "agent-1", now=T0 + timedelta(minutes=62))
    assert [a["breach_type"] for a in await engine.list_breach_alerts()] == ["resolution"]

    await engine.close_interaction(interaction.id, now=T0 + timedelta(minutes=63))
    assert await engine.list_breach_alerts() == []
    assert await _breach_count(db_session, interaction.id) == 2


@pytest.mark.asyncio
async def test_closed_interaction_records_no_new_breaches(db_session: AsyncSession):
    engine = SlaEngine(db_session)
    await _chat_policy(engine, escalation_enabled=False)
    interaction = await engine.track_interaction(channel="chat", created_at=T0)

    status = await engine.check_sla_status(interaction.id, now=T0 + timedelta(minutes=11))
    assert status["new_breaches"] == 1
    await engine.close_interaction(interaction.id, now=T0 + timedelta(minutes=12))

    status = await engine.check_sla_status(interaction.id, now=T0 + timedelta(minutes=20))
    assert status["new_breaches"] == 0
    assert status["first_response"] is None
    assert status["resolution"] is None
    assert await engine.list_breach_alerts() == []
    assert await _breach_count(db_session, interaction.id) == 1


@pytest.mark.asyncio
async def test_business_hours_policy_counts_only_open_minutes(db_session: AsyncSession):
    engine = SlaEngine(db_session, business_timezone="UTC")
    await engine.set_business_hours([
        {"day_of_week": day, "start_time": datetime(2026, 1, 1, 9).time(), "end_time": datetime(2026, 1, 1, 17).time()}
        for day in range(5)
    ])
    await engine.create_policy(
        name="Email", channel="email", business_hours_only=True,
        first_response_target_minutes=240, resolution_target_minutes=2880,
    )
    # Friday 16:00 UTC
    friday = datetime(2026, 3, 6, 16, 0, tzinfo=timezone.utc)
    interaction = await engine.track_interaction(channel="email", created_at=friday)

    # Monday 10:00: 60 minutes on Friday plus 60 on Monday
    status = await engine.check_sla_status(interaction.id, now=datetime(2026, 3, 9, 10, 0, tzinfo=timezone.utc))
    assert status["first_response"]["elapsed_minutes"] == 120
    assert status["first_response"]["status"] == "ok"


@pytest.mark.asyncio
async def test_sweep_skips_closed(db_session: AsyncSession):
    engine = SlaEngine(db_session)
    await _chat_policy(engine, escalation_enabled=False)
    late = await engine.track_interaction(channel="chat", created_at=T0)
    closed = await engine.track_interaction(channel="chat", created_at=T0)
    await engine.close_interaction(closed.id, now=T0 + timedelta(minutes=1))

    result = await engine.sweep_all_interactions(now=T0 + timedelta(minutes=11))
    assert result == {"checked": 1, "breaches": 1}
    assert await _breach_count(db_session, late.id) == 1
    assert await _breach_count(db_session, closed.id) == 0

    result = await engine.sweep_all_interactions(now=T0 + timedelta(minutes=12))
    assert result == {"checked": 1, "breaches": 0}


@pytest.mark.asyncio
async def test_metrics_use_real_first_response_times(db_session: AsyncSession):
    engine = SlaEngine(db_session)
    await _chat_policy(engine, escalation_enabled=False)
    quick = await engine.track_interaction(channel="chat", created_at=T0)
    slow = await engine.track_interaction(channel="chat", created_at=T0 + timedelta(minutes=1))
    await engine.track_interaction(channel="chat", created_at=T0 + timedelta(minutes=2))

    await engine.record_first_response(quick.id, "agent-1", now=T0 + timedelta(minutes=2))
    await engine.record_first_response(slow.id, "agent-1", now=T0 + timedelta(minutes=9))
    await engine.sweep_all_interactions(now=T0 + timedelta(minutes=20))

    metrics = await engine.compute_metrics(T0, T0 + timedelta(hours=1))
    assert metrics["total_interactions"] == 3
    assert metrics["total_breaches"] == 1
    assert metrics["breaches_by_type"] == {"first_response": 1}
    assert metrics["compliance_rate"] == 66.7
    # (2 + 8) / 2
    assert metrics["avg_first_response_minutes"] == 5.0


@pytest.mark.asyncio
async def test_metrics_empty_period(db_session: AsyncSession):
    metrics = await SlaEngine(db_session).compute_metrics(T0, T0 + timedelta(days=1))
    assert metrics["compliance_rate"] == 100.0
    assert metrics["avg_first_response_minutes"] is None


@pytest.mark.asyncio
async def test_incident_escalation_writes_audit(db_session: AsyncSession, family):
    engine = SlaEngine(db_session)
    await engine.create_policy(
        name="SOS critical", channel="sos", priority=1,
        first_response_target_minutes=2, resolution_target_minutes=30,
        escalation_enabled=True, escalation_after_minutes=2, escalate_to_user_id="duty-supervisor",
    )
    alice = User(id="alice", role=Role.MEMBER)
    incident = await incident_service.create_incident(
        db_session, alice,
        IncidentCreate(family_group_id="fam-1", latitude=51.5, longitude=-0.12, priority="critical"),
    )
    interaction = await engine.interaction_for_incident(incident.id)

    status = await engine.check_sla_status(interaction.id, now=interaction.created_at + timedelta(minutes=3))
    assert status["escalated"] is True

    trail = await audit_service.get_audit_trail(db_session, incident.id)
    escalations = [e for e in trail if e.action == "ESCALATED"]
    assert len(escalations) == 1
    assert "duty-supervisor" in escalations[0].details


@pytest.mark.asyncio
async def test_seed_defaults_loaded_once(db_session: AsyncSession):
    defaults = load_sla_defaults()
    assert defaults.policies

    inserted = await seed_sla_defaults(db_session, defaults)
    assert inserted == len(defaults.policies)
    assert await seed_sla_defaults(db_session, defaults) == 0

    engine = SlaEngine(db_session)
    names = [p.name for p in await engine.list_policies()]
    assert names == [p.name for p in defaults.policies]
    assert len(await engine.get_business_hours()) == len(defaults.business_hours)

    interaction = await engine.track_interaction(kind="incident", channel="sos", priority=1)
    policy = await engine.applicable_policy(interaction)
    assert policy.name == "SOS critical"


def test_missing_defaults_file(tmp_path):
    defaults = load_sla_defaults(str(tmp_path / "absent.yaml"))
    assert defaults.policies == []
    assert defaults.business_hours == []
