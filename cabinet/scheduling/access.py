"""Access guard for appointment reads and mutations.

Two named policies gate the scheduler's operations:

- FULL: admins and assistants always; a doctor or a patient only on their
  own appointments. Used by update and reschedule.
- BASIC: only the doctor or the patient of record. Used by status changes
  and cancellation. Assistants and admins are deliberately excluded here.

The actor is an already-authenticated fact handed in by the caller; this
module never decodes tokens.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from cabinet.models.enums import ActorRole
from cabinet.scheduling.errors import Forbidden

logger = logging.getLogger(__name__)

STAFF_ROLES = frozenset({ActorRole.ADMIN, ActorRole.ASSISTANT})


class AccessPolicy(str, Enum):
    FULL = "full"
    BASIC = "basic"


@dataclass(frozen=True)
class Actor:
    """Identity on whose behalf a request is made."""

    user_id: int
    role: ActorRole

    @property
    def label(self) -> str:
        return f"{self.role.value}:{self.user_id}"


def _is_participant(actor: Actor, patient_id: int, doctor_id: int) -> bool:
    if actor.role is ActorRole.DOCTOR:
        return actor.user_id == doctor_id
    if actor.role is ActorRole.PATIENT:
        return actor.user_id == patient_id
    return False


def is_allowed(actor: Actor, patient_id: int, doctor_id: int, policy: AccessPolicy) -> bool:
    if policy is AccessPolicy.FULL and actor.role in STAFF_ROLES:
        return True
    return _is_participant(actor, patient_id, doctor_id)


def authorize(actor: Actor, patient_id: int, doctor_id: int, policy: AccessPolicy = AccessPolicy.FULL) -> None:
    """Raise Forbidden unless `actor` may act on the booking under `policy`."""
    if is_allowed(actor, patient_id, doctor_id, policy):
        return
    logger.warning(
        "Access denied: actor=%s policy=%s doctor=%s patient=%s",
        actor.label,
        policy.value,
        doctor_id,
        patient_id,
    )
    if policy is AccessPolicy.BASIC:
        raise Forbidden("Access denied: only the patient or the doctor of record may do this")
    raise Forbidden("Access denied: you may not modify this appointment")


def authorize_admin(actor: Actor) -> None:
    if actor.role is not ActorRole.ADMIN:
        logger.warning("Admin-only operation refused for actor=%s", actor.label)
        raise Forbidden("Only administrators may permanently delete an appointment")


def authorize_staff(actor: Actor) -> None:
    if actor.role not in STAFF_ROLES:
        logger.warning("Staff-only read refused for actor=%s", actor.label)
        raise Forbidden("Access denied: practice statistics are limited to staff")


def authorize_doctor_scope(actor: Actor, doctor_id: int) -> None:
    """Staff, or the doctor themself, may read a doctor's agenda."""
    if actor.role in STAFF_ROLES:
        return
    if actor.role is ActorRole.DOCTOR and actor.user_id == doctor_id:
        return
    raise Forbidden("Access denied: not allowed to view this doctor's agenda")


def authorize_patient_scope(actor: Actor, patient_id: int) -> None:
    """Staff, any doctor, or the patient themself, may list a patient's bookings."""
    if actor.role in STAFF_ROLES or actor.role is ActorRole.DOCTOR:
        return
    if actor.role is ActorRole.PATIENT and actor.user_id == patient_id:
        return
    raise Forbidden("Access denied: not allowed to view this patient's appointments")
