"""
Place Registry.

Named circular geofences per family group, plus the enter/exit detector
fed from live-location changes. All bounds are validated before any write.
"""
import logging
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.database import utcnow
from backend.app.core.exceptions import NotFoundError, ValidationError
from backend.app.core.security import User
from backend.app.events.bus import queue_change
from backend.app.events.schemas import ChangeOperation, change_event
from backend.app.models.place_orm import PlaceEventORM, PlaceORM
from backend.app.schemas.places import MAX_RADIUS_M, MIN_RADIUS_M, PlaceEventType
from backend.app.services import family_service
from backend.app.services.geo import haversine_m

logger = logging.getLogger(__name__)


def validate_place_fields(
    name: Optional[str] = None,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    radius_m: Optional[float] = None,
    partial: bool = False,
) -> None:
    """Raise ValidationError on the first invalid field. ``partial`` allows omitted fields."""
    if name is not None or not partial:
        if not name or not name.strip():
            raise ValidationError("Place name is required", field="name")
    if latitude is not None or not partial:
        if latitude is None or not -90 <= latitude <= 90:
            raise ValidationError("Latitude must be between -90 and 90", field="latitude")
    if longitude is not None or not partial:
        if longitude is None or not -180 <= longitude <= 180:
            raise ValidationError("Longitude must be between -180 and 180", field="longitude")
    if radius_m is not None or not partial:
        if radius_m is None or not MIN_RADIUS_M <= radius_m <= MAX_RADIUS_M:
            raise ValidationError(
                f"Radius must be between {MIN_RADIUS_M} and {MAX_RADIUS_M} meters",
                field="radius_m",
            )


def place_record(place: PlaceORM) -> dict:
    return {
        "id": place.id,
        "family_group_id": place.family_group_id,
        "name": place.name,
        "latitude": place.latitude,
        "longitude": place.longitude,
        "radius_m": place.radius_m,
    }


def _place_changed(session: AsyncSession, place: PlaceORM, operation: ChangeOperation) -> None:
    queue_change(session, change_event(
        "places", operation, place_record(place), family_group_id=place.family_group_id,
    ))


async def create_place(
    session: AsyncSession,
    user: User,
    family_group_id: str,
    name: str,
    latitude: float,
    longitude: float,
    radius_m: float = 150,
) -> PlaceORM:
    validate_place_fields(name, latitude, longitude, radius_m)
    await family_service.require_family_access(session, family_group_id, user)

    place = PlaceORM(
        family_group_id=family_group_id,
        name=name.strip(),
        latitude=latitude,
        longitude=longitude,
        radius_m=radius_m,
        created_by=user.id,
    )
    session.add(place)
    await session.flush()
    _place_changed(session, place, ChangeOperation.INSERT)
    logger.info(f"Place '{place.name}' created in family {family_group_id} (r={radius_m}m)")
    return place


async def list_places(session: AsyncSession, family_group_id: str, user: User) -> List[PlaceORM]:
    await family_service.require_family_access(session, family_group_id, user)
    result = await session.execute(
        select(PlaceORM)
        .where(PlaceORM.family_group_id == family_group_id)
        .order_by(PlaceORM.created_at.desc())
    )
    return list(result.scalars().all())


async def get_place(session: AsyncSession, place_id: str, user: User) -> PlaceORM:
    place = await session.get(PlaceORM, place_id)
    if place is None:
        raise NotFoundError("Place", place_id)
    await family_service.require_family_access(session, place.family_group_id, user)
    return place


async def update_place(session: AsyncSession, place_id: str, user: User, **changes) -> PlaceORM:
    changes = {k: v for k, v in changes.items() if v is not None}
    validate_place_fields(partial=True, **changes)
    place = await get_place(session, place_id, user)
    if "name" in changes:
        changes["name"] = changes["name"].strip()
    for key, value in changes.items():
        setattr(place, key, value)
    place.updated_at = utcnow()
    await session.flush()
    _place_changed(session, place, ChangeOperation.UPDATE)
    return place


async def delete_place(session: AsyncSession, place_id: str, user: User) -> None:
    place = await get_place(session, place_id, user)
    record = place_record(place)
    await session.delete(place)
    await session.flush()
    queue_change(session, change_event(
        "places", ChangeOperation.DELETE, record, family_group_id=place.family_group_id,
    ))
    logger.info(f"Place '{place.name}' deleted from family {place.family_group_id}")


async def list_place_events(
    session: AsyncSession,
    place_id: str,
    user: User,
    limit: int = 100,
) -> List[PlaceEventORM]:
    place = await get_place(session, place_id, user)
    result = await session.execute(
        select(PlaceEventORM)
        .where(PlaceEventORM.place_id == place.id)
        .order_by(PlaceEventORM.occurred_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def _last_events(session: AsyncSession, user_id: str, place_ids: List[str]) -> Dict[str, str]:
    """Latest event per place for the user."""
    if not place_ids:
        return {}
    result = await session.execute(
        select(PlaceEventORM)
        .where(PlaceEventORM.user_id == user_id, PlaceEventORM.place_id.in_(place_ids))
        .order_by(PlaceEventORM.occurred_at.desc())
    )
    last: Dict[str, str] = {}
    for event in result.scalars().all():
        last.setdefault(event.place_id, event.event)
    return last


async def detect_place_events(session: AsyncSession, user_id: str, latitude: float, longitude: float) -> int:
    """
    Record enter/exit transitions for every place in the user's families.

    Inside means haversine distance ≤ radius. With no history only an enter
    is recorded. Returns the number of events created.
    """
    groups = await family_service.family_groups_for_user(session, user_id)
    if not groups:
        return 0

    result = await session.execute(select(PlaceORM).where(PlaceORM.family_group_id.in_(groups)))
    places = list(result.scalars().all())
    last = await _last_events(session, user_id, [p.id for p in places])

    created = 0
    now = utcnow()
    for place in places:
        distance = haversine_m(latitude, longitude, place.latitude, place.longitude)
        inside = distance <= place.radius_m
        previous = last.get(place.id)

        if previous is None:
            event_type = PlaceEventType.ENTER.value if inside else None
        elif inside and previous == PlaceEventType.EXIT.value:
            event_type = PlaceEventType.ENTER.value
        elif not inside and previous == PlaceEventType.ENTER.value:
            event_type = PlaceEventType.EXIT.value
        else:
            event_type = None

        if event_type is None:
            continue

        event = PlaceEventORM(place_id=place.id, user_id=user_id, event=event_type, occurred_at=now)
        session.add(event)
        await session.flush()
        queue_change(session, change_event(
            "place_events", ChangeOperation.INSERT,
            {
                "id": event.id,
                "place_id": place.id,
                "place_name": place.name,
                "user_id": user_id,
                "event": event_type,
                "distance_m": round(distance, 1),
                "occurred_at": now.isoformat(),
            },
            family_group_id=place.family_group_id,
            user_id=user_id,
        ))
        logger.info(f"User {user_id} {event_type} place '{place.name}' ({distance:.0f}m from center)")
        created += 1

    return created
