"""Events published by the scheduler after a change is flushed.

Handlers receive them from `cabinet.events`; the audit trail is the only
handler registered by default. Appointment events always carry doctor_id,
patient_id and status in `data`; extra keys by type:

    appointment.booked              start_time, duration_minutes
    appointment.updated             fields
    appointment.rescheduled         previous_start, start_time, duration_minutes
    appointment.status_changed      from_status, to_status
    appointment.cancelled           from_status
    system.maintenance              action, cutoff, per-action counts
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class EventType(str, Enum):
    APPOINTMENT_BOOKED = "appointment.booked"
    APPOINTMENT_UPDATED = "appointment.updated"
    APPOINTMENT_RESCHEDULED = "appointment.rescheduled"
    APPOINTMENT_STATUS_CHANGED = "appointment.status_changed"
    APPOINTMENT_CANCELLED = "appointment.cancelled"
    APPOINTMENT_DELETED = "appointment.deleted"

    SYSTEM_STARTUP = "system.startup"
    SYSTEM_SHUTDOWN = "system.shutdown"
    SYSTEM_MAINTENANCE = "system.maintenance"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SystemEvent(BaseModel):
    """One published fact. Frozen once built."""

    model_config = ConfigDict(frozen=True)

    event_type: EventType
    appointment_id: uuid.UUID | None = None
    actor_id: str | None = Field(default=None, description="User id as text, or 'system'")
    actor_role: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    source_module: str | None = None

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    timestamp: datetime = Field(default_factory=_utcnow)
