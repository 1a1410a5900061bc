"""
Integration tests for the one-row-per-user live location store.
"""
from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.security import Role, User
from backend.app.models.live_location_orm import LiveLocationORM
from backend.app.schemas.locations import LiveLocationUpdate
from backend.app.services import location_service


T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _sample(lat=51.5, lon=-0.12, sampled_at=None, **extra) -> dict:
    body = {"family_group_id": "fam-1", "latitude": lat, "longitude": lon, **extra}
    if sampled_at is not None:
        body["sampled_at"] = sampled_at.isoformat()
    return body


@pytest.mark.asyncio
async def test_repeated_updates_keep_one_row(client: AsyncClient, db_session: AsyncSession, family, auth_headers):
    first = await client.put("/api/v1/locations/me", json=_sample(51.5, -0.12), headers=auth_headers("alice"))
    assert first.status_code == 200, first.text
    second = await client.put(
        "/api/v1/locations/me",
        json=_sample(51.51, -0.13, accuracy=8.0, battery_level=64),
        headers=auth_headers("alice"),
    )
    assert second.status_code == 200

    count = await db_session.scalar(select(func.count()).select_from(LiveLocationORM))
    assert count == 1

    mine = (await client.get("/api/v1/locations/me", headers=auth_headers("alice"))).json()
    assert mine["latitude"] == 51.51
    assert mine["longitude"] == -0.13
    assert mine["battery_level"] == 64
    assert mine["status"] == "online"
    assert mine["is_stale"] is False


@pytest.mark.asyncio
async def test_older_sample_is_ignored(client: AsyncClient, family, auth_headers):
    headers = auth_headers("alice")
    await client.put("/api/v1/locations/me", json=_sample(51.6, -0.2, sampled_at=T0), headers=headers)

    late = await client.put(
        "/api/v1/locations/me",
        json=_sample(10.0, 10.0, sampled_at=T0 - timedelta(seconds=30)),
        headers=headers,
    )
    assert late.status_code == 200
    assert late.json()["latitude"] == 51.6

    newer = await client.put(
        "/api/v1/locations/me",
        json=_sample(51.7, -0.3, sampled_at=T0 + timedelta(seconds=30)),
        headers=headers,
    )
    assert newer.json()["latitude"] == 51.7


@pytest.mark.asyncio
async def test_offline_then_online(client: AsyncClient, family, auth_headers):
    headers = auth_headers("bob")
    await client.put("/api/v1/locations/me", json=_sample(), headers=headers)

    resp = await client.post("/api/v1/locations/me/offline", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "offline"
    assert resp.json()["latitude"] == 51.5

    resp = await client.put("/api/v1/locations/me", json=_sample(51.52, -0.1), headers=headers)
    assert resp.json()["status"] == "online"


@pytest.mark.asyncio
async def test_offline_without_location_is_404(client: AsyncClient, family, auth_headers):
    resp = await client.post("/api/v1/locations/me/offline", headers=auth_headers("carol"))
    assert resp.status_code == 404
    assert resp.json()["code"] == "RESOURCE_NOT_FOUND"


@pytest.mark.asyncio
async def test_family_listing_is_scoped(client: AsyncClient, family, auth_headers):
    await client.put("/api/v1/locations/me", json=_sample(51.5, -0.12), headers=auth_headers("alice"))
    await client.put("/api/v1/locations/me", json=_sample(51.4, -0.11), headers=auth_headers("carol"))

    resp = await client.get("/api/v1/locations/family/fam-1", headers=auth_headers("bob"))
    assert resp.status_code == 200
    assert {r["user_id"] for r in resp.json()} == {"alice", "carol"}

    resp = await client.get("/api/v1/locations/family/fam-1", headers=auth_headers("dave"))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_cannot_publish_into_foreign_family(client: AsyncClient, family, auth_headers):
    resp = await client.put("/api/v1/locations/me", json=_sample(), headers=auth_headers("dave"))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_invalid_coordinates_rejected(client: AsyncClient, family, auth_headers):
    resp = await client.put("/api/v1/locations/me", json=_sample(lat=95.0), headers=auth_headers("alice"))
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_staleness_and_listing_window(db_session: AsyncSession, family):
    await location_service.upsert_live_location(
        db_session, "alice", LiveLocationUpdate(family_group_id="fam-1", latitude=51.5, longitude=-0.12), now=T0,
    )
    await location_service.upsert_live_location(
        db_session, "bob", LiveLocationUpdate(family_group_id="fam-1", latitude=51.4, longitude=-0.11),
        now=T0 - timedelta(hours=7),
    )
    await db_session.commit()

    row = await location_service.get_live_location(db_session, "alice")
    assert location_service.to_response(row, now=T0 + timedelta(minutes=4))["is_stale"] is False
    assert location_service.to_response(row, now=T0 + timedelta(minutes=6))["is_stale"] is True

    viewer = User(id="carol", role=Role.MEMBER)
    rows = await location_service.list_family_locations(db_session, "fam-1", viewer, now=T0)
    assert [r.user_id for r in rows] == ["alice"]
