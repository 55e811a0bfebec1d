"""Append-only log of published events, one row per SystemEvent."""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import String
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from cabinet.models.base import Base, TimestampMixin


class AuditLog(TimestampMixin, Base):
    __tablename__ = "audit_log"

    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    # Null for system.* events
    appointment_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), index=True)
    actor_id: Mapped[str | None] = mapped_column(String(100), comment="User ID or 'system'")
    actor_role: Mapped[str | None] = mapped_column(String(50), comment="admin, assistant, doctor, patient, system")
    data: Mapped[dict[str, Any] | None] = mapped_column(JSONB)

    def __repr__(self) -> str:
        return f"<AuditLog {self.event_type} appointment={self.appointment_id} actor={self.actor_id}>"
