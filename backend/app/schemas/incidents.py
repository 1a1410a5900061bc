"""
Incident Lifecycle Schemas and Enums.

Shared contract used by the incident API, the operator console and the
location reporter. DO NOT modify this file without checking all consumers.
"""
from enum import Enum
from typing import Optional, List, Dict, Any
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field


class IncidentStatus(str, Enum):
    """SOS lifecycle. Status only moves forward; terminal states never change."""
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"  # Operator-visible sub-state of active
    RESOLVED = "resolved"
    CANCELED = "canceled"
    CLOSED = "closed"              # Operator's resolved-equivalent


OPEN_STATUSES = (IncidentStatus.ACTIVE.value, IncidentStatus.ACKNOWLEDGED.value)
TERMINAL_STATUSES = (
    IncidentStatus.RESOLVED.value,
    IncidentStatus.CANCELED.value,
    IncidentStatus.CLOSED.value,
)


class IncidentPriority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Queue ordering and the numeric priority used for SLA policy filters
PRIORITY_RANK = {
    IncidentPriority.CRITICAL.value: 1,
    IncidentPriority.HIGH.value: 2,
    IncidentPriority.MEDIUM.value: 3,
    IncidentPriority.LOW.value: 4,
}


class LocationSampleIn(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: Optional[float] = Field(None, ge=0)


class IncidentCreate(BaseModel):
    family_group_id: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    accuracy: Optional[float] = Field(None, ge=0)
    address: Optional[str] = None
    priority: IncidentPriority = IncidentPriority.MEDIUM
    emergency_type: str = "general"
    source: str = "app"
    metadata: Optional[Dict[str, Any]] = None


class IncidentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    family_group_id: Optional[str] = None
    status: IncidentStatus
    priority: IncidentPriority
    emergency_type: str
    source: str
    address: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class LocationSampleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    incident_id: str
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    created_at: datetime


class AcknowledgeRequest(BaseModel):
    message: Optional[str] = Field(None, max_length=500)


class AcknowledgementResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    incident_id: str
    responder_id: str
    message: str
    acknowledged_at: datetime
    already_acknowledged: bool = False


class TransitionRequest(BaseModel):
    """Optional reason for resolve / cancel / close."""
    reason: Optional[str] = None


class PriorityUpdate(BaseModel):
    priority: IncidentPriority


class AuditTrailEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    timestamp: datetime
    action: str
    action_type: str
    actor: str
    details: Optional[str] = None
    trace_id: Optional[str] = None


class IncidentDetail(IncidentResponse):
    """Incident plus its current location and acknowledgements."""
    current_location: Optional[LocationSampleResponse] = None
    acknowledgements: List[AcknowledgementResponse] = []
