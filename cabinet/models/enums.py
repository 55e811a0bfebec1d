"""Domain enums used across SQLAlchemy models and Pydantic schemas.

All enums use str mixin for JSON serialization.
"""

from __future__ import annotations

from enum import Enum


class AppointmentStatus(str, Enum):
    """Appointment lifecycle states. Legal moves live in scheduling.states."""

    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"


class ActorRole(str, Enum):
    """Role of the authenticated user issuing a request."""

    ADMIN = "admin"
    ASSISTANT = "assistant"
    DOCTOR = "doctor"
    PATIENT = "patient"


class OwnerRole(str, Enum):
    """Which participant of a booking an interval check runs for."""

    DOCTOR = "doctor"
    PATIENT = "patient"
