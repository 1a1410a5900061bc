"""
Event Schema Definitions for the SafeCircle change-event bus.

Every row-level change the core makes (incident created, location sample
appended, acknowledgement recorded, live location upserted, breach recorded)
is published as a ChangeEvent. Routing keys let subscribers filter without
inspecting the record payload.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field


class ChangeOperation(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class BaseEvent(BaseModel):
    """
    Base event schema.

    - Unique event tracking (event_id, trace_id)
    - Temporal tracking (timestamp)
    - Event categorization (event_type)
    """

    model_config = ConfigDict(use_enum_values=True)

    event_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Unique event identifier (UUID)"
    )

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="UTC timestamp when event was created"
    )

    event_type: str = Field(
        description="Event type discriminator (e.g., 'incidents.insert')"
    )

    trace_id: Optional[str] = Field(
        default=None,
        description="Correlation ID of the request that produced the event"
    )


class ChangeEvent(BaseEvent):
    """
    A row-level change on one of the shared tables.

    Consumers must treat it as a cue to re-fetch or merge, not as a complete
    delta: delivery is best effort and unordered across tables.
    """

    table: str = Field(description="Logical table, e.g. 'incidents', 'live_locations'")

    operation: ChangeOperation = Field(description="insert | update | delete")

    record: Dict[str, Any] = Field(
        default_factory=dict,
        description="JSON-safe snapshot of the row after the change"
    )

    family_group_id: Optional[str] = Field(default=None, description="Routing key: owning family group")
    incident_id: Optional[str] = Field(default=None, description="Routing key: incident scope")
    user_id: Optional[str] = Field(default=None, description="Routing key: subject user")

    def routing_keys(self) -> Dict[str, Optional[str]]:
        return {
            "family_group_id": self.family_group_id,
            "incident_id": self.incident_id,
            "user_id": self.user_id,
        }

    def to_sse(self) -> str:
        return f"event: {self.event_type}\ndata: {self.model_dump_json()}\n\n"


def change_event(
    table: str,
    operation: ChangeOperation,
    record: Dict[str, Any],
    trace_id: Optional[str] = None,
    **routing: Optional[str],
) -> ChangeEvent:
    """Build a ChangeEvent with the conventional ``<table>.<operation>`` type."""
    return ChangeEvent(
        event_type=f"{table}.{operation.value}",
        table=table,
        operation=operation,
        record=record,
        trace_id=trace_id,
        **routing,
    )
