"""Appointment model: time-boxed bookings between a doctor and a patient."""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from cabinet.models.base import Base, TimestampMixin
from cabinet.models.enums import AppointmentStatus

DEFAULT_DURATION_MINUTES = 30


class Appointment(TimestampMixin, Base):
    """A booking of `duration_minutes` starting at `start_time` (naive local time).

    The end of the booking is never stored; see `end_time`.
    """

    __tablename__ = "appointments"
    __table_args__ = (
        Index("ix_appointments_doctor_start", "doctor_id", "start_time"),
        Index("ix_appointments_patient_start", "patient_id", "start_time"),
        CheckConstraint("duration_minutes > 0", name="positive_duration"),
    )

    # Participants (user ids issued by the auth service)
    patient_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    doctor_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Scheduling
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(
        Integer, default=DEFAULT_DURATION_MINUTES, nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), default=AppointmentStatus.CONFIRMED.value, nullable=False, index=True
    )

    # Free text
    reason: Mapped[str | None] = mapped_column(String(500))
    notes: Mapped[str | None] = mapped_column(String(1000))

    @property
    def end_time(self) -> datetime:
        return self.start_time + timedelta(minutes=self.duration_minutes)

    def __repr__(self) -> str:
        return (
            f"<Appointment id={self.id} doctor={self.doctor_id} patient={self.patient_id} "
            f"status={self.status} at={self.start_time}>"
        )
