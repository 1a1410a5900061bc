"""
Place Registry API Router.

Circular geofences per family group. Out-of-range coordinates or radius
are rejected with 422 before anything is written.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, Query, Security
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.database import get_db
from backend.app.core.security import PLACE_READ, PLACE_WRITE, User, get_current_user
from backend.app.schemas.places import PlaceCreate, PlaceEventResponse, PlaceResponse, PlaceUpdate
from backend.app.services import place_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/", response_model=PlaceResponse, status_code=201)
async def create_place(
    payload: PlaceCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[PLACE_WRITE]),
):
    place = await place_service.create_place(
        db, current_user,
        family_group_id=payload.family_group_id,
        name=payload.name,
        latitude=payload.latitude,
        longitude=payload.longitude,
        radius_m=payload.radius_m,
    )
    return PlaceResponse.model_validate(place)


@router.get("/", response_model=List[PlaceResponse])
async def list_places(
    family_group_id: str = Query(...),
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[PLACE_READ]),
):
    places = await place_service.list_places(db, family_group_id, current_user)
    return [PlaceResponse.model_validate(p) for p in places]


@router.get("/{place_id}", response_model=PlaceResponse)
async def get_place(
    place_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[PLACE_READ]),
):
    return PlaceResponse.model_validate(await place_service.get_place(db, place_id, current_user))


@router.patch("/{place_id}", response_model=PlaceResponse)
async def update_place(
    place_id: str,
    payload: PlaceUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[PLACE_WRITE]),
):
    place = await place_service.update_place(db, place_id, current_user, **payload.model_dump(exclude_unset=True))
    return PlaceResponse.model_validate(place)


@router.delete("/{place_id}", status_code=204)
async def delete_place(
    place_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[PLACE_WRITE]),
):
    await place_service.delete_place(db, place_id, current_user)


@router.get("/{place_id}/events", response_model=List[PlaceEventResponse])
async def list_place_events(
    place_id: str,
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[PLACE_READ]),
):
    """Enter/exit history for a place, newest first."""
    events = await place_service.list_place_events(db, place_id, current_user, limit)
    return [PlaceEventResponse.model_validate(e) for e in events]
