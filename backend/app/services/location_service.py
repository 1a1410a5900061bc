"""
Live Location Service.

One row per user, overwritten on every sample. A sample older than the
stored one is ignored, so the row converges on the newest fix whatever
order racing writers commit in. Status flips to "offline" only on an
explicit stop; readers judge liveness by ``last_seen`` age.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import get_settings
from backend.app.core.database import utcnow
from backend.app.core.exceptions import NotFoundError
from backend.app.core.security import User
from backend.app.events.bus import queue_change
from backend.app.events.schemas import ChangeOperation, change_event
from backend.app.models.live_location_orm import LiveLocationORM
from backend.app.schemas.locations import LiveLocationUpdate, PresenceStatus
from backend.app.services import family_service

logger = logging.getLogger(__name__)


def location_record(row: LiveLocationORM) -> dict:
    return {
        "user_id": row.user_id,
        "family_group_id": row.family_group_id,
        "latitude": row.latitude,
        "longitude": row.longitude,
        "accuracy": row.accuracy,
        "heading": row.heading,
        "speed": row.speed,
        "battery_level": row.battery_level,
        "status": row.status,
        "sampled_at": row.sampled_at.isoformat(),
        "last_seen": row.last_seen.isoformat(),
    }


def is_stale(row: LiveLocationORM, now: Optional[datetime] = None) -> bool:
    threshold = timedelta(seconds=get_settings().live_location_stale_after_seconds)
    return (now or utcnow()) - row.last_seen > threshold


def to_response(row: LiveLocationORM, now: Optional[datetime] = None) -> dict:
    data = location_record(row)
    data["sampled_at"] = row.sampled_at
    data["last_seen"] = row.last_seen
    data["is_stale"] = is_stale(row, now)
    return data


def _queue(session: AsyncSession, row: LiveLocationORM, operation: ChangeOperation) -> None:
    queue_change(session, change_event(
        "live_locations", operation, location_record(row),
        family_group_id=row.family_group_id,
        user_id=row.user_id,
    ))


async def upsert_live_location(
    session: AsyncSession,
    user_id: str,
    sample: LiveLocationUpdate,
    now: Optional[datetime] = None,
) -> LiveLocationORM:
    """
    Write the user's current position with status "online".

    Returns the stored row; when the sample is older than the stored one the
    row is returned untouched.
    """
    now = now or utcnow()
    sampled_at = sample.sampled_at or now
    if sampled_at.tzinfo is None:
        sampled_at = sampled_at.replace(tzinfo=timezone.utc)
    row = await session.get(LiveLocationORM, user_id, with_for_update=True)

    if row is None:
        row = LiveLocationORM(user_id=user_id)
        session.add(row)
        operation = ChangeOperation.INSERT
    else:
        if sampled_at < row.sampled_at:
            logger.debug(f"Ignoring out-of-order sample for {user_id} ({sampled_at} < {row.sampled_at})")
            return row
        operation = ChangeOperation.UPDATE

    if sample.family_group_id is not None:
        row.family_group_id = sample.family_group_id
    row.latitude = sample.latitude
    row.longitude = sample.longitude
    row.accuracy = sample.accuracy
    row.heading = sample.heading
    row.speed = sample.speed
    row.battery_level = sample.battery_level
    row.status = PresenceStatus.ONLINE.value
    row.sampled_at = sampled_at
    row.last_seen = now

    await session.flush()
    _queue(session, row, operation)
    return row


async def mark_offline(session: AsyncSession, user_id: str) -> LiveLocationORM:
    """Explicit stop: keep the last position, flip status to offline."""
    row = await session.get(LiveLocationORM, user_id)
    if row is None:
        raise NotFoundError("Live location", user_id)
    if row.status != PresenceStatus.OFFLINE.value:
        row.status = PresenceStatus.OFFLINE.value
        row.last_seen = utcnow()
        await session.flush()
        _queue(session, row, ChangeOperation.UPDATE)
        logger.info(f"User {user_id} stopped sharing location")
    return row


async def get_live_location(session: AsyncSession, user_id: str) -> LiveLocationORM:
    row = await session.get(LiveLocationORM, user_id)
    if row is None:
        raise NotFoundError("Live location", user_id)
    return row


async def list_family_locations(
    session: AsyncSession,
    family_group_id: str,
    user: User,
    now: Optional[datetime] = None,
) -> List[LiveLocationORM]:
    """Rows of the family seen within the configured window, newest first."""
    await family_service.require_family_access(session, family_group_id, user)
    now = now or utcnow()
    since = now - timedelta(hours=get_settings().family_locations_window_hours)
    result = await session.execute(
        select(LiveLocationORM)
        .where(
            LiveLocationORM.family_group_id == family_group_id,
            LiveLocationORM.last_seen >= since,
        )
        .order_by(LiveLocationORM.last_seen.desc())
    )
    return list(result.scalars().all())
