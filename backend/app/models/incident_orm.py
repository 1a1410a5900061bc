"""
ORM Models for the SOS Incident Lifecycle.

One incident per SOS trigger, its append-only location trail and the
per-responder acknowledgements.
SQLite-compatible: UUIDs stored as String, no FK constraints.
"""
import uuid
from sqlalchemy import Column, String, Text, Float, JSON, UniqueConstraint, Index

from backend.app.core.database import Base, UTCDateTime, utcnow


class IncidentORM(Base):
    __tablename__ = "incidents"

    # Primary key: stored as String for SQLite compatibility
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Who triggered it and which family sees it
    user_id = Column(String(64), nullable=False, index=True)
    family_group_id = Column(String(36), nullable=True, index=True)

    status = Column(String(20), nullable=False, default="active", index=True)  # IncidentStatus values
    priority = Column(String(20), nullable=False, default="medium", index=True)  # IncidentPriority values
    emergency_type = Column(String(50), nullable=False, default="general")
    source = Column(String(30), nullable=False, default="app")

    address = Column(Text, nullable=True)
    metadata_ = Column("metadata", JSON, nullable=True)  # e.g. {"phone": ...}

    resolved_by = Column(String(64), nullable=True)
    resolved_at = Column(UTCDateTime, nullable=True)

    # Standard timestamps
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=True, onupdate=utcnow)

    def __repr__(self):
        return f"<Incident {self.id} {self.status}/{self.priority}>"


class IncidentLocationORM(Base):
    """Immutable location sample attached to an incident."""

    __tablename__ = "incident_locations"
    __table_args__ = (
        Index("ix_incident_locations_incident_created", "incident_id", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    incident_id = Column(String(36), nullable=False, index=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    accuracy = Column(Float, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)


class IncidentAcknowledgementORM(Base):
    """One acknowledgement per (incident, responder)."""

    __tablename__ = "incident_acknowledgements"
    __table_args__ = (
        UniqueConstraint("incident_id", "responder_id", name="uq_incident_ack_responder"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    incident_id = Column(String(36), nullable=False, index=True)
    responder_id = Column(String(64), nullable=False)
    message = Column(Text, nullable=False, default="Received & On It")
    acknowledged_at = Column(UTCDateTime, nullable=False, default=utcnow)
