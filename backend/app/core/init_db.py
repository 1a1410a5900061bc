"""
Database initialization script.

Creates the schema on a fresh database and seeds the default SLA policies
and business calendar. Production deployments run the Alembic migrations
under backend/alembic instead of ``create_all``.
"""

import asyncio
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from backend.app.core.database import Base, engine as default_engine
from backend.app import models  # noqa: F401  (registers every table with Base)
from backend.app.services.sla_seed import load_sla_defaults, seed_sla_defaults

logger = logging.getLogger(__name__)


async def init_database(engine: Optional[AsyncEngine] = None, defaults_path: Optional[str] = None) -> int:
    """Create tables and seed SLA defaults; returns the number of policies seeded."""
    engine = engine or default_engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    async with session_factory() as session:
        seeded = await seed_sla_defaults(session, load_sla_defaults(defaults_path))
        await session.commit()
    logger.info(f"Database initialized ({len(Base.metadata.tables)} tables, {seeded} policies seeded)")
    return seeded


if __name__ == "__main__":
    asyncio.run(init_database())
