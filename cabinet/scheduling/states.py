"""Appointment status state machine.

TRANSITIONS is the single source of truth: every predicate below is read
off the table instead of listing states by hand.
"""

from __future__ import annotations

from cabinet.models.enums import AppointmentStatus
from cabinet.scheduling.errors import InvalidTransition

# Transition map: {current_status: {allowed next statuses}}
TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.CONFIRMED: frozenset({
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.RESCHEDULED,
    }),
    AppointmentStatus.IN_PROGRESS: frozenset({
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
    }),
    AppointmentStatus.RESCHEDULED: frozenset({
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.RESCHEDULED,
    }),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
}

INITIAL_STATUS = AppointmentStatus.CONFIRMED


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def ensure_transition(current: AppointmentStatus, target: AppointmentStatus) -> None:
    """Raise InvalidTransition unless `current -> target` is in the table."""
    if not can_transition(current, target):
        raise InvalidTransition(current, target)


def allowed_targets(current: AppointmentStatus) -> list[AppointmentStatus]:
    """Legal next statuses, in enum declaration order."""
    targets = TRANSITIONS.get(current, frozenset())
    return [status for status in AppointmentStatus if status in targets]


def is_final(status: AppointmentStatus) -> bool:
    """Terminal: no outgoing edge."""
    return not TRANSITIONS.get(status)


def is_cancellable(status: AppointmentStatus) -> bool:
    return can_transition(status, AppointmentStatus.CANCELLED)


def is_modifiable(status: AppointmentStatus) -> bool:
    """Time and text fields may still change while the booking can be moved."""
    return can_transition(status, AppointmentStatus.RESCHEDULED)
