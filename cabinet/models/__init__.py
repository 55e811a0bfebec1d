"""SQLAlchemy ORM models for the scheduling service.

Import all models here so Alembic and Base.metadata.create_all() discover them.
"""

from __future__ import annotations

from cabinet.models.appointment import Appointment
from cabinet.models.audit import AuditLog
from cabinet.models.base import Base
from cabinet.models.enums import ActorRole, AppointmentStatus, OwnerRole

__all__ = [
    # Base
    "Base",
    # Models
    "Appointment",
    "AuditLog",
    # Enums
    "ActorRole",
    "AppointmentStatus",
    "OwnerRole",
]
