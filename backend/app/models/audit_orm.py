"""
Audit Trail ORM Model.

Stores persistent audit entries for all incident lifecycle actions
(creation, acknowledgements, operator transitions, triage, escalation).
"""
import uuid
from sqlalchemy import Column, String, Text

from backend.app.core.database import Base, UTCDateTime, utcnow


class IncidentAuditEntryORM(Base):
    """
    Persistent audit trail for an incident.
    """
    __tablename__ = "incident_audit_entries"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    incident_id = Column(String(36), index=True, nullable=False)
    family_group_id = Column(String(36), nullable=True, index=True)

    timestamp = Column(UTCDateTime, default=utcnow, nullable=False)
    action = Column(String(100), nullable=False)
    action_type = Column(String(50), nullable=False)  # human | automated
    actor = Column(String(255), nullable=False)
    details = Column(Text, nullable=True)

    # Distributed tracing and matching
    trace_id = Column(String(128), nullable=True)

    def __repr__(self):
        return f"<IncidentAuditEntry {self.action} by {self.actor} for {self.incident_id}>"
