"""Services package."""

from backend.app.services.sla_engine import SlaEngine
from backend.app.services import (
    family_service,
    incident_service,
    location_service,
    operator_console,
    place_service,
)

__all__ = [
    "SlaEngine",
    "family_service",
    "incident_service",
    "location_service",
    "operator_console",
    "place_service",
]
