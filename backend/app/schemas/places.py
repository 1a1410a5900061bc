"""
Place Registry Schemas.

Bounds are checked again in the service so in-process callers get the same
validation as the REST API.
"""
from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

MIN_RADIUS_M = 50
MAX_RADIUS_M = 1000
DEFAULT_RADIUS_M = 150


class PlaceCreate(BaseModel):
    family_group_id: str
    name: str = Field(..., min_length=1, max_length=120)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    radius_m: float = Field(DEFAULT_RADIUS_M, ge=MIN_RADIUS_M, le=MAX_RADIUS_M)


class PlaceUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    radius_m: Optional[float] = Field(None, ge=MIN_RADIUS_M, le=MAX_RADIUS_M)


class PlaceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    family_group_id: str
    name: str
    latitude: float
    longitude: float
    radius_m: float
    created_by: str
    created_at: datetime
    updated_at: Optional[datetime] = None


class PlaceEventType(str, Enum):
    ENTER = "enter"
    EXIT = "exit"


class PlaceEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    place_id: str
    user_id: str
    event: PlaceEventType
    occurred_at: datetime
