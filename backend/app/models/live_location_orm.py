"""
Live Location ORM model.

Exactly one row per user holding the newest known position. Writers upsert;
``sampled_at`` is the device time of the fix and only ever moves forward.
"""
from sqlalchemy import Column, String, Float, Integer

from backend.app.core.database import Base, UTCDateTime, utcnow


class LiveLocationORM(Base):
    __tablename__ = "live_locations"

    user_id = Column(String(64), primary_key=True)
    family_group_id = Column(String(36), nullable=True, index=True)

    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    accuracy = Column(Float, nullable=True)
    heading = Column(Float, nullable=True)
    speed = Column(Float, nullable=True)
    battery_level = Column(Integer, nullable=True)

    status = Column(String(20), nullable=False, default="online")  # online | idle | offline
    sampled_at = Column(UTCDateTime, nullable=False, default=utcnow)
    last_seen = Column(UTCDateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<LiveLocation {self.user_id} {self.status} @ {self.latitude},{self.longitude}>"
