"""Interval conflict detection for bookings.

Pure functions, no I/O: the caller supplies the owner's active bookings.
Intervals are half-open, [start, start + duration), so back-to-back
appointments (09:00-09:30 and 09:30-10:00) do not collide. The end of an
interval is recomputed here on every check, never read from storage.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol

from cabinet.models.enums import AppointmentStatus, OwnerRole
from cabinet.schemas.appointment import ConflictReport


class Booking(Protocol):
    """What the detector reads from a stored appointment."""

    id: uuid.UUID
    patient_id: int
    doctor_id: int
    start_time: datetime
    duration_minutes: int
    status: str


@dataclass(frozen=True)
class OwnerConflicts:
    """Detector result for one participant."""

    owner: OwnerRole
    owner_id: int
    conflicting_ids: list[uuid.UUID] = field(default_factory=list)

    @property
    def has_conflict(self) -> bool:
        return bool(self.conflicting_ids)


def interval_end(start: datetime, duration_minutes: int) -> datetime:
    return start + timedelta(minutes=duration_minutes)


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Half-open interval overlap: [a) and [b) share at least one instant."""
    return start_a < end_b and start_b < end_a


def _owner_of(booking: Booking, owner: OwnerRole) -> int:
    return booking.doctor_id if owner is OwnerRole.DOCTOR else booking.patient_id


def find_conflicts(
    owner: OwnerRole,
    owner_id: int,
    start: datetime,
    duration_minutes: int,
    bookings: Iterable[Booking],
    exclude_id: uuid.UUID | None = None,
) -> OwnerConflicts:
    """Check a candidate interval against one owner's bookings.

    Bookings that are cancelled, that belong to another owner, or whose id
    equals `exclude_id` (the appointment being edited) are ignored.
    """
    end = interval_end(start, duration_minutes)
    conflicting: list[uuid.UUID] = []
    for booking in bookings:
        if exclude_id is not None and booking.id == exclude_id:
            continue
        if booking.status == AppointmentStatus.CANCELLED.value:
            continue
        if _owner_of(booking, owner) != owner_id:
            continue
        if overlaps(start, end, booking.start_time, interval_end(booking.start_time, booking.duration_minutes)):
            conflicting.append(booking.id)
    return OwnerConflicts(owner=owner, owner_id=owner_id, conflicting_ids=conflicting)


def build_report(doctor: OwnerConflicts, patient: OwnerConflicts) -> ConflictReport:
    """Merge the two per-owner results into the caller-facing report."""
    return ConflictReport(
        doctor_conflict=doctor.has_conflict,
        patient_conflict=patient.has_conflict,
        doctor_conflict_ids=doctor.conflicting_ids,
        patient_conflict_ids=patient.conflicting_ids,
    )
