"""Family group membership API Router."""
import logging
from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, Security
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.database import get_db
from backend.app.core.exceptions import PermissionDeniedError
from backend.app.core.security import LOCATION_READ, INCIDENT_WRITE, User, get_current_user
from backend.app.services import family_service

logger = logging.getLogger(__name__)
router = APIRouter()


class MemberAdd(BaseModel):
    user_id: str
    role: str = Field("member", pattern="^(owner|member)$")


class MemberResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    family_group_id: str
    user_id: str
    role: str
    status: str
    created_at: datetime


@router.post("/{family_group_id}/members", response_model=MemberResponse, status_code=201)
async def add_member(
    family_group_id: str,
    payload: MemberAdd,
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[INCIDENT_WRITE]),
):
    """
    Add a member. Owners and staff may add anyone; the first member of an
    empty group may only add themselves and becomes its owner.
    """
    members = await family_service.list_members(db, family_group_id)
    role = payload.role
    if not members:
        if payload.user_id != current_user.id and not current_user.is_staff:
            raise PermissionDeniedError("A new family group must be founded by its first member")
        role = "owner"
    elif not current_user.is_staff and not any(
        m.user_id == current_user.id and m.role == "owner" for m in members
    ):
        raise PermissionDeniedError("Only family owners can add members")

    membership = await family_service.add_member(db, family_group_id, payload.user_id, role)
    return MemberResponse.model_validate(membership)


@router.get("/{family_group_id}/members", response_model=List[MemberResponse])
async def list_members(
    family_group_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Security(get_current_user, scopes=[LOCATION_READ]),
):
    await family_service.require_family_access(db, family_group_id, current_user)
    return [MemberResponse.model_validate(m) for m in await family_service.list_members(db, family_group_id)]
