"""Appointment REST API: thin FastAPI layer over AppointmentScheduler.

Each request runs in one DB transaction (get_session). Scheduling errors
are translated to HTTP by `scheduling_error_handler`, registered on the app.
"""
# ruff: noqa: B008  Depends() in function defaults is standard FastAPI

from __future__ import annotations

import logging
import uuid
from datetime import date

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse

from cabinet.api.dependencies import enforce_booking_rate, get_actor, get_scheduler
from cabinet.scheduling.access import Actor
from cabinet.scheduling.errors import SchedulingError
from cabinet.scheduling.service import AppointmentScheduler
from cabinet.schemas.appointment import (
    AppointmentCandidate,
    AppointmentPatch,
    AppointmentRead,
    AppointmentStats,
    AvailableSlotsView,
    CompleteRequest,
    DoctorDashboard,
    RescheduleRequest,
    StatusChangeRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["appointments"])

ERROR_STATUS: dict[str, int] = {
    "validation_error": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "scheduling_conflict": status.HTTP_409_CONFLICT,
    "slot_unavailable": status.HTTP_409_CONFLICT,
    "invalid_transition": status.HTTP_409_CONFLICT,
    "invalid_state": status.HTTP_409_CONFLICT,
    "forbidden": status.HTTP_403_FORBIDDEN,
    "not_found": status.HTTP_404_NOT_FOUND,
}


async def scheduling_error_handler(request: Request, exc: SchedulingError) -> JSONResponse:
    """Map a SchedulingError kind to its HTTP status with a structured body."""
    code = ERROR_STATUS.get(exc.kind, status.HTTP_400_BAD_REQUEST)
    logger.info("%s %s rejected: %s (%s)", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=code, content=exc.to_dict())


# ── Create ───────────────────────────────────────────────────────────


@router.post("/appointments", response_model=AppointmentRead, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    candidate: AppointmentCandidate,
    _: Actor = Depends(enforce_booking_rate),
    scheduler: AppointmentScheduler = Depends(get_scheduler),
) -> AppointmentRead:
    return await scheduler.create(candidate)


@router.post("/appointments/with-validation", response_model=AppointmentRead, status_code=status.HTTP_201_CREATED)
async def create_appointment_in_slot(
    candidate: AppointmentCandidate,
    _: Actor = Depends(enforce_booking_rate),
    scheduler: AppointmentScheduler = Depends(get_scheduler),
) -> AppointmentRead:
    return await scheduler.create_with_slot_validation(candidate)


@router.post("/appointments/conflicts")
async def check_conflicts(
    candidate: AppointmentCandidate,
    _: Actor = Depends(get_actor),
    scheduler: AppointmentScheduler = Depends(get_scheduler),
) -> dict[str, object]:
    """Dry run: nothing is written."""
    report = await scheduler.check_conflicts(candidate)
    return report.summary()


# ── Read ─────────────────────────────────────────────────────────────


@router.get("/appointments/stats", response_model=AppointmentStats)
async def appointment_stats(
    actor: Actor = Depends(get_actor),
    scheduler: AppointmentScheduler = Depends(get_scheduler),
) -> AppointmentStats:
    """Staff only. Registered ahead of /appointments/{appointment_id}."""
    return await scheduler.appointment_stats(actor)


@router.get("/appointments/{appointment_id}", response_model=AppointmentRead)
async def get_appointment(
    appointment_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    scheduler: AppointmentScheduler = Depends(get_scheduler),
) -> AppointmentRead:
    return await scheduler.get(appointment_id, actor)


@router.get("/appointments/patient/{patient_id}/upcoming", response_model=list[AppointmentRead])
async def upcoming_for_patient(
    patient_id: int,
    actor: Actor = Depends(get_actor),
    scheduler: AppointmentScheduler = Depends(get_scheduler),
) -> list[AppointmentRead]:
    return await scheduler.upcoming_for_patient(patient_id, actor)


@router.get("/doctors/{doctor_id}/slots", response_model=AvailableSlotsView)
async def available_slots(
    doctor_id: int,
    day: date = Query(..., alias="date"),
    duration: int | None = Query(default=None, gt=0),
    _: Actor = Depends(get_actor),
    scheduler: AppointmentScheduler = Depends(get_scheduler),
) -> AvailableSlotsView:
    return await scheduler.available_slots_view(doctor_id, day, duration)


@router.get("/doctors/{doctor_id}/dashboard", response_model=DoctorDashboard)
async def doctor_dashboard(
    doctor_id: int,
    actor: Actor = Depends(get_actor),
    scheduler: AppointmentScheduler = Depends(get_scheduler),
) -> DoctorDashboard:
    return await scheduler.doctor_dashboard(doctor_id, actor)


# ── Mutations ────────────────────────────────────────────────────────


@router.patch("/appointments/{appointment_id}", response_model=AppointmentRead)
async def update_appointment(
    appointment_id: uuid.UUID,
    patch: AppointmentPatch,
    actor: Actor = Depends(enforce_booking_rate),
    scheduler: AppointmentScheduler = Depends(get_scheduler),
) -> AppointmentRead:
    return await scheduler.update(appointment_id, patch, actor)


@router.post("/appointments/{appointment_id}/reschedule", response_model=AppointmentRead)
async def reschedule_appointment(
    appointment_id: uuid.UUID,
    body: RescheduleRequest,
    actor: Actor = Depends(enforce_booking_rate),
    scheduler: AppointmentScheduler = Depends(get_scheduler),
) -> AppointmentRead:
    return await scheduler.reschedule(appointment_id, body.new_start, actor, body.new_duration_minutes)


@router.post("/appointments/{appointment_id}/status", response_model=AppointmentRead)
async def change_status(
    appointment_id: uuid.UUID,
    body: StatusChangeRequest,
    actor: Actor = Depends(get_actor),
    scheduler: AppointmentScheduler = Depends(get_scheduler),
) -> AppointmentRead:
    return await scheduler.transition_status(appointment_id, body.status, actor)


@router.post("/appointments/{appointment_id}/confirm", response_model=AppointmentRead)
async def confirm_appointment(
    appointment_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    scheduler: AppointmentScheduler = Depends(get_scheduler),
) -> AppointmentRead:
    return await scheduler.confirm(appointment_id, actor)


@router.post("/appointments/{appointment_id}/start", response_model=AppointmentRead)
async def start_appointment(
    appointment_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    scheduler: AppointmentScheduler = Depends(get_scheduler),
) -> AppointmentRead:
    return await scheduler.start(appointment_id, actor)


@router.post("/appointments/{appointment_id}/complete", response_model=AppointmentRead)
async def complete_appointment(
    appointment_id: uuid.UUID,
    body: CompleteRequest | None = None,
    actor: Actor = Depends(get_actor),
    scheduler: AppointmentScheduler = Depends(get_scheduler),
) -> AppointmentRead:
    return await scheduler.complete(appointment_id, actor, notes=body.notes if body else None)


@router.post("/appointments/{appointment_id}/cancel", response_model=AppointmentRead)
async def cancel_appointment(
    appointment_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    scheduler: AppointmentScheduler = Depends(get_scheduler),
) -> AppointmentRead:
    return await scheduler.cancel(appointment_id, actor)


@router.delete("/appointments/{appointment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_appointment(
    appointment_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    scheduler: AppointmentScheduler = Depends(get_scheduler),
) -> None:
    """Administrative hard delete."""
    await scheduler.delete(appointment_id, actor)
