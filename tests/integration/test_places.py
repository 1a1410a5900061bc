"""
Integration tests for the place registry and enter/exit detection.
"""
import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import ValidationError
from backend.app.core.security import Role, User
from backend.app.models.place_orm import PlaceEventORM
from backend.app.services import place_service

HOME = {"family_group_id": "fam-1", "name": "Home", "latitude": 51.5007, "longitude": -0.1246, "radius_m": 150}


async def _create(client: AsyncClient, auth_headers, user="alice", **overrides):
    return await client.post("/api/v1/places/", json={**HOME, **overrides}, headers=auth_headers(user))


@pytest.mark.asyncio
@pytest.mark.parametrize("radius", [49, 1001, 0])
async def test_radius_out_of_range_rejected(client: AsyncClient, family, auth_headers, radius):
    resp = await _create(client, auth_headers, radius_m=radius)
    assert resp.status_code == 422

    listing = await client.get("/api/v1/places/", params={"family_group_id": "fam-1"}, headers=auth_headers("alice"))
    assert listing.json() == []


@pytest.mark.asyncio
@pytest.mark.parametrize("radius", [50, 1000])
async def test_radius_bounds_inclusive(client: AsyncClient, family, auth_headers, radius):
    resp = await _create(client, auth_headers, radius_m=radius)
    assert resp.status_code == 201, resp.text
    assert resp.json()["radius_m"] == radius


@pytest.mark.asyncio
async def test_place_crud(client: AsyncClient, family, auth_headers):
    created = await _create(client, auth_headers)
    assert created.status_code == 201
    place = created.json()
    assert place["created_by"] == "alice"
    assert place["radius_m"] == 150

    resp = await client.patch(
        f"/api/v1/places/{place['id']}",
        json={"name": "Grandma's", "radius_m": 300},
        headers=auth_headers("bob"),
    )
    assert resp.status_code == 200
    assert resp.json()["name"] == "Grandma's"
    assert resp.json()["radius_m"] == 300
    assert resp.json()["latitude"] == HOME["latitude"]
    assert resp.json()["updated_at"] is not None

    resp = await client.patch(f"/api/v1/places/{place['id']}", json={"radius_m": 10}, headers=auth_headers("bob"))
    assert resp.status_code == 422

    resp = await client.delete(f"/api/v1/places/{place['id']}", headers=auth_headers("alice"))
    assert resp.status_code == 204

    resp = await client.get(f"/api/v1/places/{place['id']}", headers=auth_headers("alice"))
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_places_scoped_to_family(client: AsyncClient, family, auth_headers):
    place = (await _create(client, auth_headers)).json()

    assert (await _create(client, auth_headers, user="dave")).status_code == 403
    resp = await client.get(f"/api/v1/places/{place['id']}", headers=auth_headers("dave"))
    assert resp.status_code == 403
    resp = await client.get("/api/v1/places/", params={"family_group_id": "fam-1"}, headers=auth_headers("dave"))
    assert resp.status_code == 403

    resp = await client.get("/api/v1/places/", params={"family_group_id": "fam-1"}, headers=auth_headers("carol"))
    assert [p["id"] for p in resp.json()] == [place["id"]]


@pytest.mark.asyncio
async def test_service_validation_names_the_field(db_session: AsyncSession, family):
    alice = User(id="alice", role=Role.MEMBER)
    with pytest.raises(ValidationError) as exc:
        await place_service.create_place(db_session, alice, "fam-1", "Home", 51.5, -0.12, radius_m=49)
    assert exc.value.details == {"field": "radius_m"}

    with pytest.raises(ValidationError) as exc:
        await place_service.create_place(db_session, alice, "fam-1", "   ", 51.5, -0.12)
    assert exc.value.details == {"field": "name"}


@pytest.mark.asyncio
async def test_detect_enter_and_exit(db_session: AsyncSession, family):
    alice = User(id="alice", role=Role.MEMBER)
    home = await place_service.create_place(db_session, alice, "fam-1", "Home", 51.5007, -0.1246, radius_m=150)

    # Outside with no history records nothing.
    assert await place_service.detect_place_events(db_session, "bob", 51.52, -0.1246) == 0
    # Roughly 100 m north of the centre.
    assert await place_service.detect_place_events(db_session, "bob", 51.5016, -0.1246) == 1
    # Still inside: no duplicate enter.
    assert await place_service.detect_place_events(db_session, "bob", 51.5008, -0.1246) == 0
    assert await place_service.detect_place_events(db_session, "bob", 51.52, -0.1246) == 1
    await db_session.commit()

    events = await place_service.list_place_events(db_session, home.id, alice)
    assert [e.event for e in events] == ["exit", "enter"]
    assert {e.user_id for e in events} == {"bob"}


@pytest.mark.asyncio
async def test_detection_ignores_other_families(db_session: AsyncSession, family):
    dave = User(id="dave", role=Role.MEMBER)
    await place_service.create_place(db_session, dave, "fam-2", "Office", 51.5007, -0.1246)

    assert await place_service.detect_place_events(db_session, "bob", 51.5007, -0.1246) == 0
    result = await db_session.execute(select(PlaceEventORM))
    assert result.scalars().all() == []


@pytest.mark.asyncio
async def test_place_events_endpoint(client: AsyncClient, db_session: AsyncSession, family, auth_headers):
    place = (await _create(client, auth_headers)).json()
    await place_service.detect_place_events(db_session, "carol", HOME["latitude"], HOME["longitude"])
    await db_session.commit()

    resp = await client.get(f"/api/v1/places/{place['id']}/events", headers=auth_headers("bob"))
    assert resp.status_code == 200
    assert [(e["user_id"], e["event"]) for e in resp.json()] == [("carol", "enter")]
