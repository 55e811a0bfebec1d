"""AppointmentStore: SQLAlchemy persistence for appointments.

Wraps one AsyncSession. The store flushes but never commits: the
transaction belongs to the caller (the request-scoped `get_session`
dependency or a maintenance job), which is what keeps the conflict check
and the write of a scheduling decision inside one atomic unit.

Serialization per owner uses PostgreSQL transaction-level advisory locks,
one key per doctor and one per patient, always taken doctor first so two
writers can never wait on each other in opposite order.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import Interval, delete, func, literal_column, select
from sqlalchemy.ext.asyncio import AsyncSession

from cabinet.models.appointment import Appointment
from cabinet.models.enums import AppointmentStatus, OwnerRole

logger = logging.getLogger(__name__)

_CANCELLED = AppointmentStatus.CANCELLED.value
_FINAL = (AppointmentStatus.COMPLETED.value, AppointmentStatus.CANCELLED.value)

# Derived end of a booking, computed in SQL the same way the detector does.
_END_TIME = Appointment.start_time + Appointment.duration_minutes * literal_column("INTERVAL '1 minute'", Interval)


def owner_lock_key(owner: OwnerRole, owner_id: int) -> int:
    """Stable signed 64-bit key for pg_advisory_xact_lock."""
    digest = hashlib.blake2b(f"appointments:{owner.value}:{owner_id}".encode(), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


class AppointmentStore:
    """Appointment persistence and queries over an async session."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    # ── Writes ──────────────────────────────────────────────────────

    async def save(self, appointment: Appointment, changes: dict[str, Any] | None = None) -> Appointment:
        """Apply `changes` (if any), flush, and reload server-side columns."""
        for field, value in (changes or {}).items():
            setattr(appointment, field, value)
        self._db.add(appointment)
        await self._db.flush()
        await self._db.refresh(appointment)
        return appointment

    async def delete(self, appointment: Appointment) -> None:
        await self._db.delete(appointment)
        await self._db.flush()

    async def delete_cancelled_before(self, cutoff: datetime) -> int:
        result = await self._db.execute(
            delete(Appointment).where(
                Appointment.status == _CANCELLED,
                Appointment.start_time < cutoff,
            )
        )
        return result.rowcount or 0

    # ── Locking ─────────────────────────────────────────────────────

    async def lock_owners(self, doctor_id: int, patient_id: int) -> None:
        """Block until this transaction owns both participants' schedules."""
        for owner, owner_id in ((OwnerRole.DOCTOR, doctor_id), (OwnerRole.PATIENT, patient_id)):
            await self._db.execute(select(func.pg_advisory_xact_lock(owner_lock_key(owner, owner_id))))
        logger.debug("Owner locks acquired: doctor=%s patient=%s", doctor_id, patient_id)

    # ── Reads ───────────────────────────────────────────────────────

    async def find_by_id(self, appointment_id: uuid.UUID, *, for_update: bool = False) -> Appointment | None:
        stmt = select(Appointment).where(Appointment.id == appointment_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def find_active_by_doctor(
        self, doctor_id: int, range_start: datetime, range_end: datetime
    ) -> Sequence[Appointment]:
        """Non-cancelled bookings of the doctor overlapping [range_start, range_end)."""
        return await self._find_active(Appointment.doctor_id == doctor_id, range_start, range_end)

    async def find_active_by_patient(
        self, patient_id: int, range_start: datetime, range_end: datetime
    ) -> Sequence[Appointment]:
        """Non-cancelled bookings of the patient overlapping [range_start, range_end)."""
        return await self._find_active(Appointment.patient_id == patient_id, range_start, range_end)

    async def _find_active(self, owner_clause: Any, range_start: datetime, range_end: datetime) -> Sequence[Appointment]:
        result = await self._db.execute(
            select(Appointment)
            .where(
                owner_clause,
                Appointment.status != _CANCELLED,
                Appointment.start_time < range_end,
                _END_TIME > range_start,
            )
            .order_by(Appointment.start_time.asc())
        )
        return list(result.scalars().all())

    async def find_by_doctor_between(self, doctor_id: int, start: datetime, end: datetime) -> Sequence[Appointment]:
        """Every booking of the doctor starting in [start, end), any status."""
        result = await self._db.execute(
            select(Appointment)
            .where(
                Appointment.doctor_id == doctor_id,
                Appointment.start_time >= start,
                Appointment.start_time < end,
            )
            .order_by(Appointment.start_time.asc())
        )
        return list(result.scalars().all())

    async def find_next_for_doctor(self, doctor_id: int, after: datetime) -> Appointment | None:
        result = await self._db.execute(
            select(Appointment)
            .where(
                Appointment.doctor_id == doctor_id,
                Appointment.start_time > after,
                Appointment.status.not_in(_FINAL),
            )
            .order_by(Appointment.start_time.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_overdue_for_doctor(self, doctor_id: int, before: datetime) -> Sequence[Appointment]:
        """Bookings that should have started but were never opened or closed."""
        result = await self._db.execute(
            select(Appointment)
            .where(
                Appointment.doctor_id == doctor_id,
                Appointment.start_time < before,
                Appointment.status.not_in((*_FINAL, AppointmentStatus.IN_PROGRESS.value)),
            )
            .order_by(Appointment.start_time.asc())
        )
        return list(result.scalars().all())

    async def find_upcoming_for_patient(self, patient_id: int, after: datetime) -> Sequence[Appointment]:
        result = await self._db.execute(
            select(Appointment)
            .where(
                Appointment.patient_id == patient_id,
                Appointment.start_time > after,
                Appointment.status != _CANCELLED,
            )
            .order_by(Appointment.start_time.asc())
        )
        return list(result.scalars().all())

    async def count_by_status(self, doctor_id: int | None = None) -> dict[str, int]:
        """Bookings per status, for one doctor or the whole practice."""
        stmt = select(Appointment.status, func.count(Appointment.id)).group_by(Appointment.status)
        if doctor_id is not None:
            stmt = stmt.where(Appointment.doctor_id == doctor_id)
        result = await self._db.execute(stmt)
        counts = {status.value: 0 for status in AppointmentStatus}
        for status, count in result.all():
            counts[status] = count
        return counts

    async def count_open_for_doctor(self, doctor_id: int) -> int:
        """Bookings of the doctor that are neither completed nor cancelled."""
        result = await self._db.execute(
            select(func.count(Appointment.id)).where(
                Appointment.doctor_id == doctor_id,
                Appointment.status.not_in(_FINAL),
            )
        )
        return result.scalar_one()

    async def count_starting_between(self, start: datetime, end: datetime) -> int:
        """Bookings of any doctor and status starting in [start, end)."""
        result = await self._db.execute(
            select(func.count(Appointment.id)).where(
                Appointment.start_time >= start,
                Appointment.start_time < end,
            )
        )
        return result.scalar_one()

    async def popular_start_times(self, limit: int = 5) -> list[tuple[str, int]]:
        """Most booked "HH:MM" start times across non-cancelled bookings."""
        slot = func.to_char(Appointment.start_time, "HH24:MI").label("slot")
        bookings = func.count(Appointment.id).label("bookings")
        result = await self._db.execute(
            select(slot, bookings)
            .where(Appointment.status != _CANCELLED)
            .group_by(slot)
            .order_by(bookings.desc(), slot.asc())
            .limit(limit)
        )
        return [(row.slot, row.bookings) for row in result.all()]
