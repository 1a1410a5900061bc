"""
Family group membership lookups.

Memberships authorise acknowledgements and scope every family read
(incidents, live locations, places).
"""
import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import PermissionDeniedError
from backend.app.core.security import User
from backend.app.models.family_orm import FamilyMembershipORM

logger = logging.getLogger(__name__)


async def add_member(
    session: AsyncSession,
    family_group_id: str,
    user_id: str,
    role: str = "member",
) -> FamilyMembershipORM:
    """Add (or reactivate) a member of a family group."""
    result = await session.execute(
        select(FamilyMembershipORM).where(
            FamilyMembershipORM.family_group_id == family_group_id,
            FamilyMembershipORM.user_id == user_id,
        )
    )
    membership = result.scalars().first()
    if membership is None:
        membership = FamilyMembershipORM(family_group_id=family_group_id, user_id=user_id, role=role)
        session.add(membership)
    else:
        membership.status = "active"
        membership.role = role
    await session.flush()
    logger.info(f"User {user_id} is now an active {role} of family {family_group_id}")
    return membership


async def list_members(session: AsyncSession, family_group_id: str) -> List[FamilyMembershipORM]:
    result = await session.execute(
        select(FamilyMembershipORM)
        .where(
            FamilyMembershipORM.family_group_id == family_group_id,
            FamilyMembershipORM.status == "active",
        )
        .order_by(FamilyMembershipORM.created_at, FamilyMembershipORM.id)
    )
    return list(result.scalars().all())


async def is_active_member(session: AsyncSession, family_group_id: Optional[str], user_id: str) -> bool:
    if not family_group_id:
        return False
    result = await session.execute(
        select(FamilyMembershipORM.id).where(
            FamilyMembershipORM.family_group_id == family_group_id,
            FamilyMembershipORM.user_id == user_id,
            FamilyMembershipORM.status == "active",
        )
    )
    return result.first() is not None


async def family_groups_for_user(session: AsyncSession, user_id: str) -> List[str]:
    result = await session.execute(
        select(FamilyMembershipORM.family_group_id).where(
            FamilyMembershipORM.user_id == user_id,
            FamilyMembershipORM.status == "active",
        )
    )
    return [row[0] for row in result.all()]


async def require_family_access(session: AsyncSession, family_group_id: Optional[str], user: User) -> None:
    """Staff see every family; everyone else must be an active member."""
    if user.is_staff:
        return
    if not await is_active_member(session, family_group_id, user.id):
        raise PermissionDeniedError(
            "Not a member of this family group",
            details={"family_group_id": family_group_id},
        )
