"""
Live Location API Router.

Each user owns exactly one current-position row. Family members read the
rows of their group; ``is_stale`` tells them whose position is old.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, Security
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.database import get_db
from backend.app.core.security import LOCATION_READ, LOCATION_WRITE, User, get_current_user
from backend.app.schemas.locations import LiveLocationResponse, LiveLocationUpdate
from backend.app.services import family_service, location_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.put("/me", response_model=LiveLocationResponse)
async def update_my_location(
    payload: LiveLocationUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[LOCATION_WRITE]),
):
    """Upsert the caller's current position (status online). Older samples are ignored."""
    if payload.family_group_id:
        await family_service.require_family_access(db, payload.family_group_id, current_user)
    row = await location_service.upsert_live_location(db, current_user.id, payload)
    return location_service.to_response(row)


@router.post("/me/offline", response_model=LiveLocationResponse)
async def stop_sharing(
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[LOCATION_WRITE]),
):
    """Explicit stop: mark the caller offline, keeping the last position."""
    row = await location_service.mark_offline(db, current_user.id)
    return location_service.to_response(row)


@router.get("/me", response_model=LiveLocationResponse)
async def get_my_location(
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[LOCATION_READ]),
):
    row = await location_service.get_live_location(db, current_user.id)
    return location_service.to_response(row)


@router.get("/family/{family_group_id}", response_model=List[LiveLocationResponse])
async def list_family_locations(
    family_group_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[LOCATION_READ]),
):
    """Current positions of the family seen recently, newest first."""
    rows = await location_service.list_family_locations(db, family_group_id, current_user)
    return [location_service.to_response(r) for r in rows]
