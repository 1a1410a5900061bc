"""Models package."""

from backend.app.models.incident_orm import (
    IncidentORM,
    IncidentLocationORM,
    IncidentAcknowledgementORM,
)
from backend.app.models.audit_orm import IncidentAuditEntryORM
from backend.app.models.family_orm import FamilyMembershipORM
from backend.app.models.live_location_orm import LiveLocationORM
from backend.app.models.place_orm import PlaceORM, PlaceEventORM
from backend.app.models.sla_orm import (
    SlaPolicyORM,
    SlaBreachORM,
    TrackedInteractionORM,
    InteractionAssignmentORM,
    BusinessHoursORM,
)

__all__ = [
    "IncidentORM",
    "IncidentLocationORM",
    "IncidentAcknowledgementORM",
    "IncidentAuditEntryORM",
    "FamilyMembershipORM",
    "LiveLocationORM",
    "PlaceORM",
    "PlaceEventORM",
    "SlaPolicyORM",
    "SlaBreachORM",
    "TrackedInteractionORM",
    "InteractionAssignmentORM",
    "BusinessHoursORM",
]
