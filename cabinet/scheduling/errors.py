"""Scheduling error taxonomy.

Every rejection the scheduler can produce is a SchedulingError subclass with
a stable `kind`. Callers branch on the kind (or on `retry_with_new_time`)
to tell "pick another time" apart from "not allowed" and "bad input".
Store failures are not wrapped and propagate as SQLAlchemy errors.
"""

from __future__ import annotations

import uuid
from typing import Any

from cabinet.models.enums import AppointmentStatus
from cabinet.schemas.appointment import ConflictReport


class SchedulingError(Exception):
    """Base class for caller-visible scheduling outcomes."""

    kind: str = "scheduling_error"
    retry_with_new_time: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def details(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "error": self.kind,
            "message": self.message,
            "retry_with_new_time": self.retry_with_new_time,
        }
        details = self.details()
        if details:
            payload["details"] = details
        return payload


class AppointmentValidationError(SchedulingError):
    """Malformed input: past start time, non-positive duration, missing participant."""

    kind = "validation_error"


class SchedulingConflict(SchedulingError):
    """An active booking of the doctor or the patient overlaps the candidate."""

    kind = "scheduling_conflict"
    retry_with_new_time = True

    def __init__(self, report: ConflictReport) -> None:
        owners = []
        if report.doctor_conflict:
            owners.append("doctor")
        if report.patient_conflict:
            owners.append("patient")
        super().__init__(f"Conflict: {' and '.join(owners)} already booked in this time range")
        self.report = report

    def details(self) -> dict[str, Any]:
        return self.report.summary()


class SlotUnavailable(SchedulingError):
    """The requested start is not among the doctor's currently free slots."""

    kind = "slot_unavailable"
    retry_with_new_time = True


class Forbidden(SchedulingError):
    kind = "forbidden"


class InvalidTransition(SchedulingError):
    """The (from, to) pair is not an edge of the status transition table."""

    kind = "invalid_transition"

    def __init__(self, current: AppointmentStatus, target: AppointmentStatus) -> None:
        super().__init__(f"Invalid transition: {current.value} -> {target.value}")
        self.current = current
        self.target = target

    def details(self) -> dict[str, Any]:
        return {"from": self.current.value, "to": self.target.value}


class InvalidState(SchedulingError):
    """The operation is not allowed in the appointment's current status."""

    kind = "invalid_state"

    def __init__(self, message: str, status: AppointmentStatus) -> None:
        super().__init__(message)
        self.status = status

    def details(self) -> dict[str, Any]:
        return {"status": self.status.value}


class AppointmentNotFound(SchedulingError):
    kind = "not_found"

    def __init__(self, appointment_id: uuid.UUID) -> None:
        super().__init__(f"Appointment {appointment_id} not found")
        self.appointment_id = appointment_id
