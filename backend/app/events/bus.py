"""
In-Memory Fan-out Event Bus.

Publish/subscribe layer pushing row-level changes to every interested
session (family members, operator console, background handlers). Each
subscription owns a bounded asyncio.Queue; publishing never blocks.

Thread-Safe: asyncio.Queue is task-safe (not thread-safe).
Global Instance: Single bus shared across the FastAPI application lifecycle.
"""
import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Set

from sqlalchemy import event as sa_event
from sqlalchemy.orm import Session

from backend.app.events.schemas import ChangeEvent

logger = logging.getLogger(__name__)

# Global event bus (single instance for entire application)
# This will be initialized in app startup
_event_bus: Any = None


class Subscription:
    """
    A filtered stream of ChangeEvents.

    ``table=None`` receives every table; each filter key must equal the
    event's routing key of the same name.
    """

    def __init__(self, bus: "EventBus", table: Optional[str], filters: Dict[str, str], maxsize: int):
        self._bus = bus
        self.table = table
        self.filters = filters
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False

    def matches(self, event: ChangeEvent) -> bool:
        if self.table is not None and event.table != self.table:
            return False
        keys = event.routing_keys()
        return all(keys.get(k) == v for k, v in self.filters.items())

    def offer(self, event: ChangeEvent) -> bool:
        try:
            self.queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                f"Subscriber queue full, dropped {event.event_type} "
                f"(id={event.event_id[:8]}..., table={self.table}, filters={self.filters})"
            )
            return False

    async def get(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        """Wait for the next event; returns None on timeout."""
        try:
            if timeout is None:
                event = await self.queue.get()
            else:
                event = await asyncio.wait_for(self.queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        self.queue.task_done()
        return event

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._bus.unsubscribe(self)

    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ChangeEvent]:
        while not self.closed:
            event = await self.get()
            if event is not None:
                yield event

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()


class EventBus:
    """Fan-out hub: every published event is offered to each matching subscription."""

    def __init__(self, maxsize: int = 1000):
        self.maxsize = maxsize
        self._subscriptions: Set[Subscription] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, table: Optional[str] = None, **filters: Optional[str]) -> Subscription:
        clean = {k: v for k, v in filters.items() if v is not None}
        sub = Subscription(self, table, clean, self.maxsize)
        self._subscriptions.add(sub)
        logger.debug(f"Subscribed to {table or '*'} {clean} (subscribers={len(self._subscriptions)})")
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        self._subscriptions.discard(sub)

    def publish(self, event: ChangeEvent) -> int:
        """Offer the event to all matching subscriptions; returns the delivery count."""
        delivered = 0
        for sub in list(self._subscriptions):
            if sub.matches(event) and sub.offer(event):
                delivered += 1
        logger.debug(
            f"Event published: {event.event_type} "
            f"(id={event.event_id[:8]}..., delivered={delivered})"
        )
        return delivered


def get_event_bus() -> EventBus:
    """
    Get the global event bus.

    Raises RuntimeError if bus not initialized.
    """
    if _event_bus is None:
        raise RuntimeError(
            "Event bus not initialized. Call initialize_event_bus() on app startup."
        )
    return _event_bus


def initialize_event_bus(maxsize: int = 1000) -> EventBus:
    """
    Initialize the global event bus (called during app startup).

    Args:
        maxsize: Per-subscription queue size

    Returns:
        The initialized EventBus instance
    """
    global _event_bus
    _event_bus = EventBus(maxsize=maxsize)
    logger.info(f"Event bus initialized with per-subscriber maxsize={maxsize}")
    return _event_bus


def publish_event(event: ChangeEvent) -> int:
    """
    Publish an event to the bus.

    Publishing outside an initialized application (scripts, unit tests) is
    logged and skipped: the row is already committed, fan-out is best effort.
    """
    if _event_bus is None:
        logger.debug(f"Event bus not initialized, skipped {event.event_type}")
        return 0
    return _event_bus.publish(event)


def subscribe_events(table: Optional[str] = None, **filters: Optional[str]) -> Subscription:
    """Subscribe to change events on the global bus."""
    return get_event_bus().subscribe(table, **filters)


# Changes queued on a session are published only once its transaction commits,
# so subscribers never re-fetch a row that is not yet visible.
_PENDING_KEY = "pending_change_events"


def queue_change(session: Any, event: ChangeEvent) -> None:
    """Queue an event on an (Async)Session; published after commit, dropped on rollback."""
    info = session.info
    pending: List[ChangeEvent] = info.setdefault(_PENDING_KEY, [])
    pending.append(event)


@sa_event.listens_for(Session, "after_commit")
def _publish_after_commit(session: Session) -> None:
    pending = session.info.pop(_PENDING_KEY, None)
    for change in pending or ():
        publish_event(change)


@sa_event.listens_for(Session, "after_rollback")
def _discard_after_rollback(session: Session) -> None:
    dropped = session.info.pop(_PENDING_KEY, None)
    if dropped:
        logger.debug(f"Discarded {len(dropped)} change events after rollback")
