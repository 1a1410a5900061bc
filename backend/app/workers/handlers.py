"""
Handler Registry for the SafeCircle Event Bus.

Maps event types to handler functions. Handlers are coroutine functions
that consume change events from the bus and perform server-side follow-up
work (place enter/exit detection, ...).
"""
import logging
from typing import Callable, Dict, Optional

from backend.app.core.config import get_settings
from backend.app.core.database import get_db_context
from backend.app.events.schemas import ChangeEvent
from backend.app.services.place_service import detect_place_events

logger = logging.getLogger(__name__)

# Handler registry: event_type → handler function
_handlers: Dict[str, Callable] = {}


def register_handler(event_type: str, handler: Callable) -> None:
    _handlers[event_type] = handler
    logger.info(f"Handler registered: {event_type} → {handler.__name__}")


def get_handler(event_type: str) -> Optional[Callable]:
    return _handlers.get(event_type)


def has_handler(event_type: str) -> bool:
    return event_type in _handlers


async def handle_event(event: ChangeEvent) -> None:
    """Dispatch event to registered handler."""
    handler = get_handler(event.event_type)
    if not handler:
        logger.debug(f"No handler for event type: {event.event_type}")
        return

    try:
        await handler(event)
        logger.debug(f"Event handled: {event.event_type} (id={event.event_id[:8]}...)")
    except Exception as e:
        logger.error(f"Handler failed for {event.event_type}: {e}", exc_info=True)


async def live_location_handler(event: ChangeEvent, session_context: Callable = get_db_context) -> int:
    """Run geofence enter/exit detection for a fresh live-location sample."""
    record = event.record
    if record.get("status") == "offline":
        return 0
    if not get_settings().place_detection_enabled:
        return 0

    async with session_context() as session:
        created = await detect_place_events(
            session, record["user_id"], record["latitude"], record["longitude"],
        )
    if created:
        logger.info(f"{created} place event(s) for user {record['user_id']}")
    return created


register_handler("live_locations.insert", live_location_handler)
register_handler("live_locations.update", live_location_handler)
