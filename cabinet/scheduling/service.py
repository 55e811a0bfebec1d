"""Appointment scheduler: create, move, transition and cancel bookings.

Every mutating operation follows the same path inside the caller's
transaction:

    access guard -> input/state validation -> owner locks + conflict check
    -> state machine -> store.save -> lifecycle event

The conflict check and the write happen under per-owner advisory locks
(see AppointmentStore.lock_owners), so two concurrent requests can never
both pass the check for overlapping intervals.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import date, datetime, timedelta
from typing import Any

from cabinet.config import SchedulingSettings, settings
from cabinet.events import emit
from cabinet.models.appointment import Appointment
from cabinet.models.enums import AppointmentStatus, OwnerRole
from cabinet.scheduling import states
from cabinet.scheduling.access import (
    AccessPolicy,
    Actor,
    authorize,
    authorize_admin,
    authorize_doctor_scope,
    authorize_patient_scope,
    authorize_staff,
    is_allowed,
)
from cabinet.scheduling.conflicts import build_report, find_conflicts, interval_end
from cabinet.scheduling.errors import (
    AppointmentNotFound,
    AppointmentValidationError,
    Forbidden,
    InvalidState,
    SchedulingConflict,
    SlotUnavailable,
)
from cabinet.scheduling.slots import AvailableSlots, SlotFinder
from cabinet.scheduling.store import AppointmentStore
from cabinet.schemas.appointment import (
    AppointmentCandidate,
    AppointmentPatch,
    AppointmentRead,
    AppointmentStats,
    AvailableSlotsView,
    ConflictReport,
    DoctorDashboard,
    PopularSlot,
    SlotView,
)
from cabinet.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

_TIME_FIELDS = frozenset({"start_time", "duration_minutes"})


def _snapshot(appointment: Appointment) -> AppointmentRead:
    return AppointmentRead.model_validate(appointment)


def _require_naive(start: datetime) -> None:
    # Bookings are stored and compared in the practice's local wall-clock time
    if start.tzinfo is not None:
        raise AppointmentValidationError("Start time must be a local time without a UTC offset")


class AppointmentScheduler:
    """Orchestrates scheduling decisions against one AppointmentStore.

    Args:
        store: Persistence bound to the current transaction.
        config: Business hours and slot grid; defaults to global settings.
        clock: Returns the current naive local time. Injected for tests.
    """

    def __init__(
        self,
        store: AppointmentStore,
        config: SchedulingSettings | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._store = store
        self._config = config or settings.scheduling
        self._clock = clock
        self._slots = SlotFinder(store, self._config, clock)

    # ── Create ──────────────────────────────────────────────────────

    async def create(self, candidate: AppointmentCandidate) -> AppointmentRead:
        """Book a new appointment in status CONFIRMED.

        Raises:
            AppointmentValidationError: missing participant, past start, bad duration.
            SchedulingConflict: doctor or patient already booked in the interval.
        """
        patient_id, doctor_id, start, duration = self._validate_candidate(candidate)

        await self._store.lock_owners(doctor_id, patient_id)
        await self._ensure_no_conflict(doctor_id, patient_id, start, duration)

        appointment = Appointment(
            patient_id=patient_id,
            doctor_id=doctor_id,
            start_time=start,
            duration_minutes=duration,
            status=states.INITIAL_STATUS.value,
            reason=candidate.reason,
            notes=candidate.notes,
        )
        appointment = await self._store.save(appointment)

        await self._emit(
            EventType.APPOINTMENT_BOOKED,
            appointment,
            data={"start_time": start.isoformat(), "duration_minutes": duration},
        )
        logger.info(
            "Appointment created: id=%s doctor=%s patient=%s start=%s duration=%d",
            appointment.id,
            doctor_id,
            patient_id,
            start,
            duration,
        )
        return _snapshot(appointment)

    async def create_with_slot_validation(self, candidate: AppointmentCandidate) -> AppointmentRead:
        """Like create, but the start must be one of the doctor's free grid slots."""
        _, doctor_id, start, duration = self._validate_candidate(candidate)

        slots = await self._slots.find(doctor_id, start.date(), duration)
        if start not in slots:
            logger.warning("Slot unavailable: doctor=%s start=%s duration=%d", doctor_id, start, duration)
            raise SlotUnavailable(f"The requested slot {start:%Y-%m-%d %H:%M} is not available")

        # The slot list is only a hint; create() re-checks under lock.
        return await self.create(candidate)

    # ── Update / reschedule ─────────────────────────────────────────

    async def update(self, appointment_id: uuid.UUID, patch: AppointmentPatch, actor: Actor) -> AppointmentRead:
        """Apply a partial update. A patch that changes nothing is a no-op."""
        appointment = await self._load(appointment_id, for_update=True)
        authorize(actor, appointment.patient_id, appointment.doctor_id, AccessPolicy.FULL)

        status = AppointmentStatus(appointment.status)
        if not states.is_modifiable(status):
            raise InvalidState(f"Appointment can no longer be modified in status {status.value}", status)

        changes = patch.changes_against(appointment)
        if not changes:
            logger.info("No changes detected for appointment %s", appointment_id)
            return _snapshot(appointment)

        if _TIME_FIELDS & changes.keys():
            start = changes.get("start_time", appointment.start_time)
            duration = changes.get("duration_minutes", appointment.duration_minutes)
            self._validate_interval(start, duration, require_future="start_time" in changes)
            await self._store.lock_owners(appointment.doctor_id, appointment.patient_id)
            await self._ensure_no_conflict(
                appointment.doctor_id, appointment.patient_id, start, duration, exclude_id=appointment.id
            )

        appointment = await self._store.save(appointment, changes)

        await self._emit(
            EventType.APPOINTMENT_UPDATED,
            appointment,
            actor=actor,
            data={"fields": sorted(changes)},
        )
        logger.info("Appointment %s updated: fields=%s", appointment_id, ", ".join(sorted(changes)))
        return _snapshot(appointment)

    async def reschedule(
        self,
        appointment_id: uuid.UUID,
        new_start: datetime,
        actor: Actor,
        new_duration_minutes: int | None = None,
    ) -> AppointmentRead:
        """Move a booking to a new interval and mark it RESCHEDULED."""
        appointment = await self._load(appointment_id, for_update=True)
        authorize(actor, appointment.patient_id, appointment.doctor_id, AccessPolicy.FULL)

        duration = new_duration_minutes if new_duration_minutes is not None else appointment.duration_minutes
        self._validate_interval(new_start, duration, require_future=True)

        status = AppointmentStatus(appointment.status)
        states.ensure_transition(status, AppointmentStatus.RESCHEDULED)

        await self._store.lock_owners(appointment.doctor_id, appointment.patient_id)
        await self._ensure_no_conflict(
            appointment.doctor_id, appointment.patient_id, new_start, duration, exclude_id=appointment.id
        )

        previous_start = appointment.start_time
        appointment = await self._store.save(appointment, {
            "start_time": new_start,
            "duration_minutes": duration,
            "status": AppointmentStatus.RESCHEDULED.value,
        })

        await self._emit(
            EventType.APPOINTMENT_RESCHEDULED,
            appointment,
            actor=actor,
            data={
                "previous_start": previous_start.isoformat(),
                "start_time": new_start.isoformat(),
                "duration_minutes": duration,
            },
        )
        logger.info("Appointment %s rescheduled: %s -> %s", appointment_id, previous_start, new_start)
        return _snapshot(appointment)

    # ── Status lifecycle ────────────────────────────────────────────

    async def transition_status(
        self,
        appointment_id: uuid.UUID,
        new_status: AppointmentStatus,
        actor: Actor,
        notes: str | None = None,
    ) -> AppointmentRead:
        """Move along one edge of the status table. Only the doctor or patient of record may."""
        appointment = await self._load(appointment_id, for_update=True)
        authorize(actor, appointment.patient_id, appointment.doctor_id, AccessPolicy.BASIC)

        old_status = AppointmentStatus(appointment.status)
        states.ensure_transition(old_status, new_status)

        changes: dict[str, Any] = {"status": new_status.value}
        if notes is not None and notes.strip():
            changes["notes"] = notes
        appointment = await self._store.save(appointment, changes)

        event_type = (
            EventType.APPOINTMENT_CANCELLED
            if new_status is AppointmentStatus.CANCELLED
            else EventType.APPOINTMENT_STATUS_CHANGED
        )
        await self._emit(
            event_type,
            appointment,
            actor=actor,
            data={"from_status": old_status.value, "to_status": new_status.value},
        )
        logger.info("Appointment %s status: %s -> %s", appointment_id, old_status.value, new_status.value)
        return _snapshot(appointment)

    async def confirm(self, appointment_id: uuid.UUID, actor: Actor) -> AppointmentRead:
        return await self.transition_status(appointment_id, AppointmentStatus.CONFIRMED, actor)

    async def start(self, appointment_id: uuid.UUID, actor: Actor) -> AppointmentRead:
        return await self.transition_status(appointment_id, AppointmentStatus.IN_PROGRESS, actor)

    async def complete(self, appointment_id: uuid.UUID, actor: Actor, notes: str | None = None) -> AppointmentRead:
        """Close a consultation, optionally recording the doctor's notes."""
        return await self.transition_status(appointment_id, AppointmentStatus.COMPLETED, actor, notes=notes)

    async def cancel(self, appointment_id: uuid.UUID, actor: Actor) -> AppointmentRead:
        """Soft-cancel. Cancelling a cancelled or completed booking is an InvalidState."""
        appointment = await self._load(appointment_id, for_update=True)
        authorize(actor, appointment.patient_id, appointment.doctor_id, AccessPolicy.BASIC)

        status = AppointmentStatus(appointment.status)
        if not states.is_cancellable(status):
            raise InvalidState(f"Appointment cannot be cancelled in status {status.value}", status)

        appointment = await self._store.save(appointment, {"status": AppointmentStatus.CANCELLED.value})

        await self._emit(
            EventType.APPOINTMENT_CANCELLED,
            appointment,
            actor=actor,
            data={"from_status": status.value},
        )
        logger.info("Appointment cancelled: id=%s by=%s", appointment_id, actor.label)
        return _snapshot(appointment)

    async def delete(self, appointment_id: uuid.UUID, actor: Actor) -> None:
        """Administrative hard delete, outside the normal lifecycle."""
        authorize_admin(actor)
        appointment = await self._load(appointment_id)
        await self._store.delete(appointment)

        await self._emit(EventType.APPOINTMENT_DELETED, appointment, actor=actor)
        logger.warning("Appointment %s permanently deleted by %s", appointment_id, actor.label)

    # ── Read-only ───────────────────────────────────────────────────

    async def get(self, appointment_id: uuid.UUID, actor: Actor | None = None) -> AppointmentRead:
        """Load one booking. With an actor, only staff or its participants may read it."""
        appointment = await self._load(appointment_id)
        if actor is not None and not is_allowed(
            actor, appointment.patient_id, appointment.doctor_id, AccessPolicy.FULL
        ):
            logger.warning("Read of appointment %s refused for actor=%s", appointment_id, actor.label)
            raise Forbidden("Access denied: not allowed to view this appointment")
        return _snapshot(appointment)

    async def find_available_slots(
        self, doctor_id: int, day: date, duration_minutes: int | None = None
    ) -> AvailableSlots:
        return await self._slots.find(doctor_id, day, duration_minutes)

    async def available_slots_view(
        self, doctor_id: int, day: date, duration_minutes: int | None = None
    ) -> AvailableSlotsView:
        """Slot listing formatted for display."""
        slots = await self._slots.find(doctor_id, day, duration_minutes)
        views = [SlotView(time=f"{slot:%H:%M}", datetime=slot.isoformat(timespec="seconds")) for slot in slots]
        return AvailableSlotsView(
            day=day,
            doctor_id=doctor_id,
            duration_minutes=slots.duration_minutes,
            total_slots=len(views),
            slots=views,
        )

    async def check_conflicts(self, candidate: AppointmentCandidate) -> ConflictReport:
        """Dry run: report doctor/patient conflicts without locking or writing."""
        patient_id, doctor_id, start, duration = self._require_fields(candidate)
        self._validate_interval(start, duration, require_future=False)
        return await self._conflict_report(doctor_id, patient_id, start, duration)

    async def upcoming_for_patient(self, patient_id: int, actor: Actor) -> list[AppointmentRead]:
        authorize_patient_scope(actor, patient_id)
        rows = await self._store.find_upcoming_for_patient(patient_id, self._clock())
        return [_snapshot(row) for row in rows]

    async def doctor_dashboard(self, doctor_id: int, actor: Actor) -> DoctorDashboard:
        """Counts per status, today's and this week's agenda, next booking,
        tomorrow's capacity and the overdue list. Weeks start on Monday.
        """
        authorize_doctor_scope(actor, doctor_id)
        now = self._clock()
        today_start = datetime.combine(now.date(), datetime.min.time())
        week_start = today_start - timedelta(days=now.weekday())

        counts = await self._store.count_by_status(doctor_id)
        open_count = await self._store.count_open_for_doctor(doctor_id)
        today = await self._store.find_by_doctor_between(doctor_id, today_start, today_start + timedelta(days=1))
        week = await self._store.find_by_doctor_between(doctor_id, week_start, week_start + timedelta(days=7))
        upcoming = await self._store.find_next_for_doctor(doctor_id, now)
        overdue = await self._store.find_overdue_for_doctor(doctor_id, now)
        tomorrow_slots = await self._slots.find(
            doctor_id, now.date() + timedelta(days=1), self._config.default_duration_minutes
        )

        return DoctorDashboard(
            doctor_id=doctor_id,
            status_counts=counts,
            open_appointments=open_count,
            today=[_snapshot(row) for row in today],
            week=[_snapshot(row) for row in week],
            next_appointment=_snapshot(upcoming) if upcoming is not None else None,
            tomorrow_available_slots=sum(1 for _ in tomorrow_slots),
            overdue=[_snapshot(row) for row in overdue],
        )

    async def appointment_stats(self, actor: Actor, popular_limit: int = 5) -> AppointmentStats:
        """Practice-wide totals, this month's and today's volume, busiest start times."""
        authorize_staff(actor)
        now = self._clock()
        today_start = datetime.combine(now.date(), datetime.min.time())
        month_start = today_start.replace(day=1)
        next_month = (month_start + timedelta(days=32)).replace(day=1)

        counts = await self._store.count_by_status()
        popular = await self._store.popular_start_times(popular_limit)
        stats = AppointmentStats(
            total=sum(counts.values()),
            status_counts=counts,
            this_month=await self._store.count_starting_between(month_start, next_month),
            today=await self._store.count_starting_between(today_start, today_start + timedelta(days=1)),
            popular_time_slots=[PopularSlot(time=slot, bookings=n) for slot, n in popular],
        )
        logger.debug("Practice stats: total=%d this_month=%d", stats.total, stats.this_month)
        return stats

    # ── Internals ───────────────────────────────────────────────────

    async def _load(self, appointment_id: uuid.UUID, *, for_update: bool = False) -> Appointment:
        appointment = await self._store.find_by_id(appointment_id, for_update=for_update)
        if appointment is None:
            raise AppointmentNotFound(appointment_id)
        return appointment

    def _require_fields(self, candidate: AppointmentCandidate) -> tuple[int, int, datetime, int]:
        if candidate.patient_id is None or candidate.doctor_id is None or candidate.start_time is None:
            raise AppointmentValidationError(
                "Insufficient data: patient, doctor and start time are required"
            )
        duration = (
            candidate.duration_minutes
            if candidate.duration_minutes is not None
            else self._config.default_duration_minutes
        )
        return candidate.patient_id, candidate.doctor_id, candidate.start_time, duration

    def _validate_candidate(self, candidate: AppointmentCandidate) -> tuple[int, int, datetime, int]:
        patient_id, doctor_id, start, duration = self._require_fields(candidate)
        self._validate_interval(start, duration, require_future=True)
        return patient_id, doctor_id, start, duration

    def _validate_interval(self, start: datetime, duration: int, *, require_future: bool) -> None:
        _require_naive(start)
        if duration <= 0:
            raise AppointmentValidationError("Duration must be a positive number of minutes")
        if require_future and start <= self._clock():
            raise AppointmentValidationError("Appointment start time must be in the future")

    async def _conflict_report(
        self,
        doctor_id: int,
        patient_id: int,
        start: datetime,
        duration: int,
        exclude_id: uuid.UUID | None = None,
    ) -> ConflictReport:
        end = interval_end(start, duration)
        doctor_bookings = await self._store.find_active_by_doctor(doctor_id, start, end)
        patient_bookings = await self._store.find_active_by_patient(patient_id, start, end)
        return build_report(
            find_conflicts(OwnerRole.DOCTOR, doctor_id, start, duration, doctor_bookings, exclude_id),
            find_conflicts(OwnerRole.PATIENT, patient_id, start, duration, patient_bookings, exclude_id),
        )

    async def _ensure_no_conflict(
        self,
        doctor_id: int,
        patient_id: int,
        start: datetime,
        duration: int,
        exclude_id: uuid.UUID | None = None,
    ) -> None:
        report = await self._conflict_report(doctor_id, patient_id, start, duration, exclude_id)
        if report.has_conflicts:
            logger.warning(
                "Scheduling conflict: doctor=%s (%s) patient=%s (%s) start=%s duration=%d",
                doctor_id,
                report.doctor_conflict,
                patient_id,
                report.patient_conflict,
                start,
                duration,
            )
            raise SchedulingConflict(report)

    async def _emit(
        self,
        event_type: EventType,
        appointment: Appointment,
        actor: Actor | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        await emit(SystemEvent(
            event_type=event_type,
            appointment_id=appointment.id,
            actor_id=str(actor.user_id) if actor else None,
            actor_role=actor.role.value if actor else None,
            data={
                "doctor_id": appointment.doctor_id,
                "patient_id": appointment.patient_id,
                "status": appointment.status,
                **(data or {}),
            },
            source_module="scheduling.service",
        ))
