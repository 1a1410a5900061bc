"""Simple asyncio scheduler for periodic tasks (used by the SLA sweep)."""
import asyncio
import logging
from typing import Callable

from backend.app.core.database import get_db_context
from backend.app.services.sla_engine import SlaEngine

logger = logging.getLogger(__name__)


async def _periodic_task(interval_seconds: int, coro: Callable, *args, **kwargs):
    while True:
        try:
            await coro(*args, **kwargs)
        except Exception as e:
            logger.error(f"Scheduled task error: {e}", exc_info=True)
        await asyncio.sleep(interval_seconds)


def start_scheduler(interval_seconds: int, coro: Callable, *args, **kwargs):
    """Start periodic coro as background task and return the task."""
    task = asyncio.create_task(_periodic_task(interval_seconds, coro, *args, **kwargs))
    return task


async def run_sla_sweep(session_context: Callable = get_db_context) -> dict:
    """One sweep in its own transaction; breaches publish after commit."""
    async with session_context() as session:
        return await SlaEngine(session).sweep_all_interactions()
