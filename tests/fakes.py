"""In-memory stand-ins for the persistence layer, shared by the scheduler tests."""

from __future__ import annotations

import uuid
from collections import Counter
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any

from cabinet.models.appointment import Appointment
from cabinet.models.enums import AppointmentStatus

# Noon on the day before the booking day used throughout the tests
NOW = datetime(2025, 3, 9, 12, 0)
DAY = datetime(2025, 3, 10)

_CANCELLED = AppointmentStatus.CANCELLED.value
_FINAL = (AppointmentStatus.COMPLETED.value, AppointmentStatus.CANCELLED.value)


def make_appointment(
    doctor_id: int = 7,
    patient_id: int = 3,
    start: datetime | None = None,
    duration: int = 30,
    status: AppointmentStatus = AppointmentStatus.CONFIRMED,
    **extra: Any,
) -> Appointment:
    """Transient Appointment with an id, as if loaded from the database."""
    return Appointment(
        id=uuid.uuid4(),
        doctor_id=doctor_id,
        patient_id=patient_id,
        start_time=start or DAY.replace(hour=9),
        duration_minutes=duration,
        status=status.value,
        updated_at=NOW - timedelta(days=1),
        **extra,
    )


class FakeStore:
    """In-memory AppointmentStore with the same query semantics."""

    def __init__(self, *appointments: Appointment) -> None:
        self.rows: dict[uuid.UUID, Appointment] = {a.id: a for a in appointments}
        self.locks: list[tuple[int, int]] = []
        self.saves = 0
        self.row_locks: list[uuid.UUID] = []

    # writes

    async def save(self, appointment: Appointment, changes: dict[str, Any] | None = None) -> Appointment:
        for field, value in (changes or {}).items():
            setattr(appointment, field, value)
        if appointment.id is None:
            appointment.id = uuid.uuid4()
        appointment.updated_at = datetime.now()
        self.rows[appointment.id] = appointment
        self.saves += 1
        return appointment

    async def delete(self, appointment: Appointment) -> None:
        del self.rows[appointment.id]

    async def delete_cancelled_before(self, cutoff: datetime) -> int:
        doomed = [a.id for a in self.rows.values() if a.status == _CANCELLED and a.start_time < cutoff]
        for appointment_id in doomed:
            del self.rows[appointment_id]
        return len(doomed)

    async def lock_owners(self, doctor_id: int, patient_id: int) -> None:
        self.locks.append((doctor_id, patient_id))

    # reads

    async def find_by_id(self, appointment_id: uuid.UUID, *, for_update: bool = False) -> Appointment | None:
        if for_update:
            self.row_locks.append(appointment_id)
        return self.rows.get(appointment_id)

    def _sorted(self, rows: list[Appointment]) -> list[Appointment]:
        return sorted(rows, key=lambda a: a.start_time)

    def _active(self, owner: str, owner_id: int, start: datetime, end: datetime) -> Sequence[Appointment]:
        return self._sorted([
            a for a in self.rows.values()
            if getattr(a, owner) == owner_id
            and a.status != _CANCELLED
            and a.start_time < end
            and a.end_time > start
        ])

    async def find_active_by_doctor(self, doctor_id: int, start: datetime, end: datetime) -> Sequence[Appointment]:
        return self._active("doctor_id", doctor_id, start, end)

    async def find_active_by_patient(self, patient_id: int, start: datetime, end: datetime) -> Sequence[Appointment]:
        return self._active("patient_id", patient_id, start, end)

    async def find_by_doctor_between(self, doctor_id: int, start: datetime, end: datetime) -> Sequence[Appointment]:
        return self._sorted([
            a for a in self.rows.values() if a.doctor_id == doctor_id and start <= a.start_time < end
        ])

    async def find_next_for_doctor(self, doctor_id: int, after: datetime) -> Appointment | None:
        rows = self._sorted([
            a for a in self.rows.values()
            if a.doctor_id == doctor_id and a.start_time > after and a.status not in _FINAL
        ])
        return rows[0] if rows else None

    async def find_overdue_for_doctor(self, doctor_id: int, before: datetime) -> Sequence[Appointment]:
        skip = (*_FINAL, AppointmentStatus.IN_PROGRESS.value)
        return self._sorted([
            a for a in self.rows.values()
            if a.doctor_id == doctor_id and a.start_time < before and a.status not in skip
        ])

    async def find_upcoming_for_patient(self, patient_id: int, after: datetime) -> Sequence[Appointment]:
        return self._sorted([
            a for a in self.rows.values()
            if a.patient_id == patient_id and a.start_time > after and a.status != _CANCELLED
        ])

    async def count_by_status(self, doctor_id: int | None = None) -> dict[str, int]:
        counts = {status.value: 0 for status in AppointmentStatus}
        for a in self.rows.values():
            if doctor_id is None or a.doctor_id == doctor_id:
                counts[a.status] += 1
        return counts

    async def count_open_for_doctor(self, doctor_id: int) -> int:
        return sum(1 for a in self.rows.values() if a.doctor_id == doctor_id and a.status not in _FINAL)

    async def count_starting_between(self, start: datetime, end: datetime) -> int:
        return sum(1 for a in self.rows.values() if start <= a.start_time < end)

    async def popular_start_times(self, limit: int = 5) -> list[tuple[str, int]]:
        tally = Counter(f"{a.start_time:%H:%M}" for a in self.rows.values() if a.status != _CANCELLED)
        return sorted(tally.items(), key=lambda item: (-item[1], item[0]))[:limit]
