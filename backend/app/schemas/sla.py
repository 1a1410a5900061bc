"""
SLA Schemas

Pydantic models for SLA policy, interaction, breach and metrics
requests/responses.
"""
from datetime import datetime, time
from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator


class SlaState(str, Enum):
    """Three-way threshold outcome"""
    OK = "ok"
    WARNING = "warning"
    BREACHED = "breached"


class BreachType(str, Enum):
    FIRST_RESPONSE = "first_response"
    RESOLUTION = "resolution"


class InteractionStatus(str, Enum):
    OPEN = "open"
    ASSIGNED = "assigned"
    ESCALATED = "escalated"
    CLOSED = "closed"


SWEEPABLE_STATUSES = (
    InteractionStatus.OPEN.value,
    InteractionStatus.ASSIGNED.value,
    InteractionStatus.ESCALATED.value,
)


class InteractionKind(str, Enum):
    INCIDENT = "incident"
    CONVERSATION = "conversation"


# ---------------------------------------------------------------- policies

class SlaPolicyCreate(BaseModel):
    """Request to create a new SLA policy"""
    name: str = Field(..., min_length=1, max_length=120)
    channel: Optional[str] = Field(None, description="Channel filter; null matches any")
    priority: Optional[int] = Field(None, description="Priority filter; null matches any")
    first_response_target_minutes: int = Field(..., gt=0)
    resolution_target_minutes: int = Field(..., gt=0)
    escalation_enabled: bool = False
    escalation_after_minutes: Optional[int] = Field(None, gt=0)
    escalate_to_user_id: Optional[str] = None
    business_hours_only: bool = False
    is_active: bool = True
    precedence: int = Field(0, description="Higher wins among equally specific policies")


class SlaPolicyUpdate(BaseModel):
    """Request to update an existing policy; omitted fields are left unchanged"""
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    channel: Optional[str] = None
    priority: Optional[int] = None
    first_response_target_minutes: Optional[int] = Field(None, gt=0)
    resolution_target_minutes: Optional[int] = Field(None, gt=0)
    escalation_enabled: Optional[bool] = None
    escalation_after_minutes: Optional[int] = Field(None, gt=0)
    escalate_to_user_id: Optional[str] = None
    business_hours_only: Optional[bool] = None
    is_active: Optional[bool] = None
    precedence: Optional[int] = None


class SlaPolicyResponse(SlaPolicyCreate):
    model_config = ConfigDict(from_attributes=True)

    id: str
    created_at: datetime


# ------------------------------------------------------------ interactions

class InteractionCreate(BaseModel):
    kind: InteractionKind = InteractionKind.CONVERSATION
    source_id: Optional[str] = None
    subject: Optional[str] = Field(None, max_length=255)
    contact_name: Optional[str] = Field(None, max_length=255)
    channel: Optional[str] = None
    priority: Optional[int] = None
    created_at: Optional[datetime] = Field(None, description="Defaults to now; set when importing history")


class InteractionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    kind: InteractionKind
    source_id: Optional[str] = None
    subject: Optional[str] = None
    contact_name: Optional[str] = None
    channel: Optional[str] = None
    priority: Optional[int] = None
    status: InteractionStatus
    assigned_to: Optional[str] = None
    first_response_at: Optional[datetime] = None
    response_due_at: Optional[datetime] = None
    escalated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    created_at: datetime


# ---------------------------------------------------------- check results

class TargetStatus(BaseModel):
    status: SlaState
    target_minutes: int
    elapsed_minutes: int
    remaining_minutes: int


class SlaPolicySummary(BaseModel):
    id: str
    name: str
    channel: Optional[str] = None
    priority: Optional[int] = None
    first_response_target_minutes: int
    resolution_target_minutes: int
    business_hours_only: bool


class SlaStatusResponse(BaseModel):
    interaction_id: str
    applicable_policy: Optional[SlaPolicySummary] = None
    first_response: Optional[TargetStatus] = None
    resolution: Optional[TargetStatus] = None
    escalated: bool = False
    new_breaches: int = 0


class ApplyPolicyResponse(BaseModel):
    interaction_id: str
    policy_name: Optional[str] = None
    response_due_at: Optional[datetime] = None


class BreachAlert(BaseModel):
    id: str
    interaction_id: str
    policy_id: str
    breach_type: BreachType
    target_minutes: int
    actual_minutes: int
    breached_at: datetime
    subject: Optional[str] = None
    contact_name: Optional[str] = None
    channel: Optional[str] = None
    priority: Optional[int] = None
    interaction_status: Optional[str] = None
    assigned_to: Optional[str] = None


class SweepResult(BaseModel):
    checked: int
    breaches: int


class SlaMetrics(BaseModel):
    period_start: datetime
    period_end: datetime
    total_interactions: int
    total_breaches: int
    compliance_rate: float
    avg_first_response_minutes: Optional[float] = None
    breaches_by_type: Dict[str, int] = {}


# --------------------------------------------------------- business hours

class BusinessHoursEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    day_of_week: int = Field(..., ge=0, le=6, description="0 = Monday")
    start_time: time
    end_time: time
    is_active: bool = True

    @model_validator(mode="after")
    def _window_order(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class BusinessHoursUpdate(BaseModel):
    days: List[BusinessHoursEntry]
