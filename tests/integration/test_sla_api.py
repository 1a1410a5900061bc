"""
Integration tests for the SLA REST surface.
"""
from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

from backend.app.core.security import Role

POLICY = {
    "name": "Chat",
    "channel": "chat",
    "first_response_target_minutes": 10,
    "resolution_target_minutes": 60,
}


@pytest.fixture
def admin(auth_headers):
    return auth_headers("admin-1", Role.ADMIN)


@pytest.fixture
def agent(auth_headers):
    return auth_headers("agent-1", Role.AGENT)


@pytest.mark.asyncio
async def test_policy_management_requires_admin(client: AsyncClient, admin, agent):
    resp = await client.post("/api/v1/sla/policies", json=POLICY, headers=agent)
    assert resp.status_code == 403

    resp = await client.post("/api/v1/sla/policies", json=POLICY, headers=admin)
    assert resp.status_code == 201, resp.text
    policy = resp.json()
    assert policy["precedence"] == 0
    assert policy["escalation_enabled"] is False

    resp = await client.patch(
        f"/api/v1/sla/policies/{policy['id']}", json={"precedence": 5}, headers=admin,
    )
    assert resp.json()["precedence"] == 5

    listing = await client.get("/api/v1/sla/policies", headers=agent)
    assert [p["name"] for p in listing.json()] == ["Chat"]

    resp = await client.delete(f"/api/v1/sla/policies/{policy['id']}", headers=admin)
    assert resp.status_code == 204
    assert (await client.get("/api/v1/sla/policies", headers=agent)).json() == []


@pytest.mark.asyncio
async def test_escalation_policy_needs_target(client: AsyncClient, admin):
    resp = await client.post(
        "/api/v1/sla/policies",
        json={**POLICY, "escalation_enabled": True, "escalation_after_minutes": 5},
        headers=admin,
    )
    assert resp.status_code == 422
    assert resp.json()["details"] == {"field": "escalation_enabled"}


@pytest.mark.asyncio
async def test_members_cannot_read_sla(client: AsyncClient, family, auth_headers):
    resp = await client.get("/api/v1/sla/breaches", headers=auth_headers("alice"))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_interaction_lifecycle(client: AsyncClient, admin, agent):
    await client.post("/api/v1/sla/policies", json=POLICY, headers=admin)
    created_at = datetime.now(timezone.utc) - timedelta(minutes=12)

    resp = await client.post(
        "/api/v1/sla/interactions",
        json={"channel": "chat", "subject": "Cannot see my family", "created_at": created_at.isoformat()},
        headers=agent,
    )
    assert resp.status_code == 201, resp.text
    interaction = resp.json()
    assert interaction["kind"] == "conversation"
    assert interaction["status"] == "open"
    assert interaction["response_due_at"] is not None

    status = (await client.get(f"/api/v1/sla/interactions/{interaction['id']}/status", headers=agent)).json()
    assert status["applicable_policy"]["name"] == "Chat"
    assert status["first_response"]["status"] == "breached"
    assert status["new_breaches"] == 1

    breaches = (await client.get("/api/v1/sla/breaches", headers=agent)).json()
    assert [(b["interaction_id"], b["breach_type"]) for b in breaches] == [(interaction["id"], "first_response")]
    assert breaches[0]["subject"] == "Cannot see my family"

    resp = await client.post(f"/api/v1/sla/interactions/{interaction['id']}/respond", headers=agent)
    assert resp.json()["status"] == "assigned"
    assert resp.json()["assigned_to"] == "agent-1"
    assert (await client.get("/api/v1/sla/breaches", headers=agent)).json() == []

    resp = await client.post(f"/api/v1/sla/interactions/{interaction['id']}/close", headers=agent)
    assert resp.json()["status"] == "closed"

    sweep = (await client.post("/api/v1/sla/sweep", headers=agent)).json()
    assert sweep == {"checked": 0, "breaches": 0}

    metrics = (await client.get("/api/v1/sla/metrics", headers=agent)).json()
    assert metrics["total_interactions"] == 1
    assert metrics["total_breaches"] == 1
    assert metrics["breaches_by_type"] == {"first_response": 1}


@pytest.mark.asyncio
async def test_apply_policy_without_match(client: AsyncClient, agent):
    interaction = (await client.post("/api/v1/sla/interactions", json={"channel": "fax"}, headers=agent)).json()
    resp = await client.post(f"/api/v1/sla/interactions/{interaction['id']}/apply-policy", headers=agent)
    assert resp.status_code == 200
    assert resp.json()["policy_name"] is None
    assert resp.json()["response_due_at"] is None


@pytest.mark.asyncio
async def test_unknown_interaction_is_404(client: AsyncClient, agent):
    resp = await client.get("/api/v1/sla/interactions/missing/status", headers=agent)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_business_hours_replace(client: AsyncClient, admin, agent):
    week = {"days": [{"day_of_week": d, "start_time": "08:30", "end_time": "18:00"} for d in range(5)]}
    resp = await client.put("/api/v1/sla/business-hours", json=week, headers=admin)
    assert resp.status_code == 200, resp.text
    assert [d["day_of_week"] for d in resp.json()] == [0, 1, 2, 3, 4]

    resp = await client.put(
        "/api/v1/sla/business-hours",
        json={"days": [{"day_of_week": 5, "start_time": "10:00", "end_time": "14:00"}]},
        headers=admin,
    )
    assert resp.status_code == 200

    hours = (await client.get("/api/v1/sla/business-hours", headers=agent)).json()
    assert hours == [{"day_of_week": 5, "start_time": "10:00:00", "end_time": "14:00:00", "is_active": True}]


@pytest.mark.asyncio
async def test_business_hours_window_order_validated(client: AsyncClient, admin):
    resp = await client.put(
        "/api/v1/sla/business-hours",
        json={"days": [{"day_of_week": 0, "start_time": "17:00", "end_time": "09:00"}]},
        headers=admin,
    )
    assert resp.status_code == 422
