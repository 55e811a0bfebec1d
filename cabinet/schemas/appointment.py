"""Pydantic schemas at the scheduler boundary.

Plain data in, plain data out: callers hand the scheduler candidates and
patches, and get back frozen AppointmentRead snapshots, conflict reports
and slot listings. No ORM rows leak upward.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from cabinet.models.enums import AppointmentStatus


class AppointmentCandidate(BaseModel):
    """A booking request before it is persisted.

    Participants and start time are optional at this level so that missing
    values surface as the scheduler's own validation error.
    """

    patient_id: int | None = None
    doctor_id: int | None = None
    start_time: datetime | None = None
    duration_minutes: int | None = Field(default=None, description="Defaults to the configured 30 minutes")
    reason: str | None = Field(default=None, max_length=500)
    notes: str | None = Field(default=None, max_length=1000)


class AppointmentPatch(BaseModel):
    """Partial update. A field left as None is not part of the patch."""

    start_time: datetime | None = None
    duration_minutes: int | None = None
    reason: str | None = Field(default=None, max_length=500)
    notes: str | None = Field(default=None, max_length=1000)

    def changes_against(self, current: Any) -> dict[str, Any]:
        """Return only the fields whose value differs from `current`."""
        changes: dict[str, Any] = {}
        for field, value in self.model_dump(exclude_none=True).items():
            if getattr(current, field) != value:
                changes[field] = value
        return changes


class AppointmentRead(BaseModel):
    """Immutable snapshot of a stored appointment."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: uuid.UUID
    patient_id: int
    doctor_id: int
    start_time: datetime
    duration_minutes: int
    end_time: datetime
    status: AppointmentStatus
    reason: str | None = None
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class RescheduleRequest(BaseModel):
    new_start: datetime
    new_duration_minutes: int | None = None


class StatusChangeRequest(BaseModel):
    status: AppointmentStatus


class CompleteRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=1000)


# ---------------------------------------------------------------------------
# Conflict detection output
# ---------------------------------------------------------------------------


class ConflictReport(BaseModel):
    """Outcome of running the detector for both participants of a booking."""

    model_config = ConfigDict(frozen=True)

    doctor_conflict: bool = False
    patient_conflict: bool = False
    doctor_conflict_ids: list[uuid.UUID] = Field(default_factory=list)
    patient_conflict_ids: list[uuid.UUID] = Field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return self.doctor_conflict or self.patient_conflict

    def summary(self) -> dict[str, Any]:
        """JSON-friendly form including the derived has_conflicts flag."""
        return {**self.model_dump(mode="json"), "has_conflicts": self.has_conflicts}


# ---------------------------------------------------------------------------
# Slot listings
# ---------------------------------------------------------------------------


class SlotView(BaseModel):
    time: str          # "HH:MM"
    datetime: str      # ISO 8601, seconds precision


class AvailableSlotsView(BaseModel):
    day: date
    doctor_id: int
    duration_minutes: int
    total_slots: int
    slots: list[SlotView]


class DoctorDashboard(BaseModel):
    """Daily and weekly overview of a doctor's agenda."""

    doctor_id: int
    status_counts: dict[str, int]
    open_appointments: int
    today: list[AppointmentRead]
    week: list[AppointmentRead]
    next_appointment: AppointmentRead | None = None
    tomorrow_available_slots: int
    overdue: list[AppointmentRead]


class PopularSlot(BaseModel):
    time: str          # "HH:MM"
    bookings: int


class AppointmentStats(BaseModel):
    """Practice-wide booking figures."""

    total: int
    status_counts: dict[str, int]
    this_month: int
    today: int
    popular_time_slots: list[PopularSlot]
