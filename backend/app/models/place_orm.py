"""
Place (circular geofence) ORM models.
"""
import uuid
from sqlalchemy import Column, String, Float, Index, CheckConstraint

from backend.app.core.database import Base, UTCDateTime, utcnow


class PlaceORM(Base):
    __tablename__ = "places"
    __table_args__ = (
        CheckConstraint("radius_m BETWEEN 50 AND 1000", name="ck_places_radius"),
        CheckConstraint("latitude BETWEEN -90 AND 90", name="ck_places_latitude"),
        CheckConstraint("longitude BETWEEN -180 AND 180", name="ck_places_longitude"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    family_group_id = Column(String(36), nullable=False, index=True)
    name = Column(String(120), nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    radius_m = Column(Float, nullable=False, default=150)
    created_by = Column(String(64), nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=True, onupdate=utcnow)

    def __repr__(self):
        return f"<Place {self.name} r={self.radius_m}m>"


class PlaceEventORM(Base):
    """Enter/exit transition of a user relative to a place."""

    __tablename__ = "place_events"
    __table_args__ = (
        Index("ix_place_events_place_user_time", "place_id", "user_id", "occurred_at"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    place_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    event = Column(String(10), nullable=False)  # enter | exit
    occurred_at = Column(UTCDateTime, nullable=False, default=utcnow)
