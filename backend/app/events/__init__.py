"""
Event bus and schemas for the SafeCircle platform.

Row-level change events fan out to family sessions, the operator console
and background handlers. Current transport: in-process asyncio queues.
"""

from backend.app.events.schemas import (
    BaseEvent,
    ChangeEvent,
    ChangeOperation,
    change_event,
)

__all__ = [
    "BaseEvent",
    "ChangeEvent",
    "ChangeOperation",
    "change_event",
]
