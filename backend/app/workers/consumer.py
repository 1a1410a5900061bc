"""
Background Event Consumer.

Async task that runs alongside FastAPI on startup, subscribing to every
change on the bus and dispatching to registered handlers.

Decouples event production (API writes) from server-side follow-up work
(place detection).
"""
import asyncio
import logging

from backend.app.events.bus import get_event_bus
from backend.app.workers.handlers import handle_event

logger = logging.getLogger(__name__)


async def event_consumer_loop() -> None:
    """
    Main event consumer loop.

    Infinite loop that:
    1. Waits for event from its subscription
    2. Dispatches to handler
    3. Continues

    Runs as a background asyncio.Task, does not block API.
    """
    logger.info("🚀 Event consumer started")
    subscription = get_event_bus().subscribe()

    try:
        while True:
            try:
                # Wait for next event (blocks if queue empty)
                event = await subscription.get()
                logger.debug(
                    f"Event dequeued: {event.event_type} "
                    f"(id={event.event_id[:8]}..., backlog={subscription.queue.qsize()})"
                )

                # Dispatch to handler
                await handle_event(event)

            except Exception as e:
                logger.error(f"Consumer loop error: {e}", exc_info=True)
                # Continue despite errors to avoid losing messages
                await asyncio.sleep(0.1)

    except asyncio.CancelledError:
        logger.info("Event consumer cancelled")
        raise
    finally:
        subscription.close()


async def start_event_consumer() -> asyncio.Task:
    """
    Start the event consumer as a background task.

    Returns:
        The asyncio.Task running the consumer loop
    """
    task = asyncio.create_task(event_consumer_loop())
    # Give consumer a moment to subscribe before requests arrive
    await asyncio.sleep(0.1)
    return task
