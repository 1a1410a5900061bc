"""Live location schemas."""
from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class PresenceStatus(str, Enum):
    ONLINE = "online"
    IDLE = "idle"
    OFFLINE = "offline"


class LiveLocationUpdate(BaseModel):
    """One device sample. ``sampled_at`` defaults to the server receive time."""
    family_group_id: Optional[str] = None
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: Optional[float] = Field(None, ge=0)
    heading: Optional[float] = Field(None, ge=0, lt=360)
    speed: Optional[float] = Field(None, ge=0)
    battery_level: Optional[int] = Field(None, ge=0, le=100)
    sampled_at: Optional[datetime] = None


class LiveLocationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    family_group_id: Optional[str] = None
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    heading: Optional[float] = None
    speed: Optional[float] = None
    battery_level: Optional[int] = None
    status: PresenceStatus
    sampled_at: datetime
    last_seen: datetime
    is_stale: bool = False
