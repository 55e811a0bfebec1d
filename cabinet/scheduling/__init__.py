"""Appointment scheduling: conflicts, free slots, status lifecycle, access guard."""

from cabinet.scheduling.access import AccessPolicy, Actor
from cabinet.scheduling.errors import (
    AppointmentNotFound,
    AppointmentValidationError,
    Forbidden,
    InvalidState,
    InvalidTransition,
    SchedulingConflict,
    SchedulingError,
    SlotUnavailable,
)
from cabinet.scheduling.service import AppointmentScheduler
from cabinet.scheduling.store import AppointmentStore

__all__ = [
    "AccessPolicy",
    "Actor",
    "AppointmentNotFound",
    "AppointmentScheduler",
    "AppointmentStore",
    "AppointmentValidationError",
    "Forbidden",
    "InvalidState",
    "InvalidTransition",
    "SchedulingConflict",
    "SchedulingError",
    "SlotUnavailable",
]
