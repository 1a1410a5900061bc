"""
SLA seed data loader.

Reads default policies and the business calendar from YAML and inserts them
into an empty database. Existing rows are never overwritten.
"""
import logging
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import get_settings
from backend.app.models.sla_orm import BusinessHoursORM, SlaPolicyORM
from backend.app.schemas.sla import BusinessHoursEntry, SlaPolicyCreate

logger = logging.getLogger(__name__)

DEFAULTS_PATH = Path(__file__).parent.parent / "policies" / "sla_defaults.yaml"


class SlaDefaults(BaseModel):
    version: str = "1.0.0"
    policies: List[SlaPolicyCreate] = []
    business_hours: List[BusinessHoursEntry] = []


def load_sla_defaults(path: Optional[str] = None) -> SlaDefaults:
    """Parse the defaults file. A missing file yields empty defaults."""
    policy_path = Path(path or get_settings().sla_defaults_path or DEFAULTS_PATH)
    if not policy_path.exists():
        logger.error(f"SLA defaults file not found: {policy_path}")
        return SlaDefaults()

    with open(policy_path, "rb") as f:
        data = yaml.safe_load(f) or {}

    defaults = SlaDefaults(**data)
    logger.info(
        f"Loaded {len(defaults.policies)} SLA policies and {len(defaults.business_hours)} "
        f"business-hour windows (Version: {defaults.version}) from {policy_path}"
    )
    return defaults


async def seed_sla_defaults(session: AsyncSession, defaults: SlaDefaults) -> int:
    """Insert defaults into empty tables; returns the number of policies inserted."""
    inserted = 0
    policy_count = await session.scalar(select(func.count(SlaPolicyORM.id)))
    if not policy_count:
        for policy in defaults.policies:
            session.add(SlaPolicyORM(**policy.model_dump()))
            # Distinct flushes keep created_at, and so fetch order, in file order
            await session.flush()
            inserted += 1

    hours_count = await session.scalar(select(func.count(BusinessHoursORM.day_of_week)))
    if not hours_count:
        for entry in defaults.business_hours:
            session.add(BusinessHoursORM(**entry.model_dump()))
        await session.flush()

    if inserted:
        logger.info(f"Seeded {inserted} default SLA policies")
    return inserted
