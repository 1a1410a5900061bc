"""
SLA ORM Models.

Policies, tracked interactions (incidents and support conversations),
breach records, escalation assignments and the business-hours calendar.
"""
import uuid
from sqlalchemy import Column, String, Integer, Boolean, Time, Index, text

from backend.app.core.database import Base, UTCDateTime, utcnow


class SlaPolicyORM(Base):
    __tablename__ = "sla_policies"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(120), nullable=False)

    # Filters: NULL matches any value
    channel = Column(String(30), nullable=True)
    priority = Column(Integer, nullable=True)

    first_response_target_minutes = Column(Integer, nullable=False)
    resolution_target_minutes = Column(Integer, nullable=False)

    escalation_enabled = Column(Boolean, nullable=False, default=False)
    escalation_after_minutes = Column(Integer, nullable=True)
    escalate_to_user_id = Column(String(64), nullable=True)

    business_hours_only = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    precedence = Column(Integer, nullable=False, default=0)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<SlaPolicy {self.name} channel={self.channel} priority={self.priority}>"


class TrackedInteractionORM(Base):
    """Anything with a response deadline: an SOS incident or a support conversation."""

    __tablename__ = "tracked_interactions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    kind = Column(String(20), nullable=False, default="conversation")  # incident | conversation
    source_id = Column(String(36), nullable=True, index=True)
    subject = Column(String(255), nullable=True)
    contact_name = Column(String(255), nullable=True)
    channel = Column(String(30), nullable=True)
    priority = Column(Integer, nullable=True)

    status = Column(String(20), nullable=False, default="open", index=True)  # open | assigned | escalated | closed
    assigned_to = Column(String(64), nullable=True)

    first_response_at = Column(UTCDateTime, nullable=True)
    response_due_at = Column(UTCDateTime, nullable=True)
    escalated_at = Column(UTCDateTime, nullable=True)
    closed_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow, index=True)


class SlaBreachORM(Base):
    __tablename__ = "sla_breaches"
    __table_args__ = (
        # At most one unresolved breach per (interaction, type)
        Index(
            "uq_sla_breaches_open",
            "interaction_id",
            "breach_type",
            unique=True,
            sqlite_where=text("resolved_at IS NULL"),
            postgresql_where=text("resolved_at IS NULL"),
        ),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    interaction_id = Column(String(36), nullable=False, index=True)
    policy_id = Column(String(36), nullable=False)
    breach_type = Column(String(20), nullable=False)  # first_response | resolution
    target_minutes = Column(Integer, nullable=False)
    actual_minutes = Column(Integer, nullable=False)
    breached_at = Column(UTCDateTime, nullable=False, default=utcnow, index=True)
    resolved_at = Column(UTCDateTime, nullable=True)


class InteractionAssignmentORM(Base):
    __tablename__ = "interaction_assignments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    interaction_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(64), nullable=False)
    role = Column(String(30), nullable=False, default="escalation")
    is_active = Column(Boolean, nullable=False, default=True)
    assigned_at = Column(UTCDateTime, nullable=False, default=utcnow)


class BusinessHoursORM(Base):
    __tablename__ = "business_hours"

    day_of_week = Column(Integer, primary_key=True)  # 0 = Monday ... 6 = Sunday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
