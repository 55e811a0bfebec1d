"""Free-slot search on a doctor's daily grid.

Candidate starts sit on a fixed grid anchored at opening time:
day_open, day_open + step, ... The last candidate is the latest grid point
whose interval still ends by closing time. On the current day, candidates
earlier than now + buffer are dropped, so nothing back-dated is offered.

The result is a hint computed from a possibly stale read. Booking a slot
always re-runs the conflict check under lock.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Sequence
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING

from cabinet.models.enums import OwnerRole
from cabinet.scheduling.conflicts import Booking, find_conflicts
from cabinet.scheduling.errors import AppointmentValidationError

if TYPE_CHECKING:
    from cabinet.config import SchedulingSettings
    from cabinet.scheduling.store import AppointmentStore

logger = logging.getLogger(__name__)


class AvailableSlots:
    """Lazy, finite, restartable sequence of free start times.

    Each iteration re-walks the grid over the same snapshot of bookings,
    yielding in ascending order.
    """

    def __init__(
        self,
        doctor_id: int,
        first: datetime,
        last: datetime,
        step_minutes: int,
        duration_minutes: int,
        bookings: Sequence[Booking],
    ) -> None:
        self.doctor_id = doctor_id
        self.first = first
        self.last = last
        self.step = timedelta(minutes=step_minutes)
        self.duration_minutes = duration_minutes
        self._bookings = tuple(bookings)

    def _is_free(self, start: datetime) -> bool:
        result = find_conflicts(
            OwnerRole.DOCTOR,
            self.doctor_id,
            start,
            self.duration_minutes,
            self._bookings,
        )
        return not result.has_conflict

    def _on_grid(self, start: datetime) -> bool:
        if start < self.first or start > self.last:
            return False
        return (start - self.first) % self.step == timedelta(0)

    def __iter__(self) -> Iterator[datetime]:
        current = self.first
        while current <= self.last:
            if self._is_free(current):
                yield current
            current += self.step

    def __contains__(self, start: object) -> bool:
        if not isinstance(start, datetime):
            return False
        return self._on_grid(start) and self._is_free(start)

    def __repr__(self) -> str:
        return (
            f"<AvailableSlots doctor={self.doctor_id} {self.first:%Y-%m-%d %H:%M}"
            f"..{self.last:%H:%M} step={self.step}>"
        )


def slot_window(
    day: date,
    duration_minutes: int,
    now: datetime,
    settings: SchedulingSettings,
) -> tuple[datetime, datetime]:
    """First and last candidate start on `day`'s grid.

    `first > last` means the day offers no candidate at all (past day, day
    already over, or duration longer than opening hours).
    """
    step = timedelta(minutes=settings.slot_step_minutes)
    day_open = datetime.combine(day, settings.day_open)
    day_close = datetime.combine(day, settings.day_close)

    first = day_open
    earliest = now + timedelta(minutes=settings.booking_buffer_minutes)
    if earliest > first:
        # Round up to the next grid point
        offset = earliest - day_open
        steps = -(-offset // step)
        first = day_open + steps * step

    latest_start = day_close - timedelta(minutes=duration_minutes)
    if latest_start < day_open:
        return first, day_open - step
    last = day_open + ((latest_start - day_open) // step) * step
    return first, last


class SlotFinder:
    """Computes a doctor's free slots from the store's active bookings."""

    def __init__(
        self,
        store: AppointmentStore,
        settings: SchedulingSettings,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._store = store
        self._settings = settings
        self._clock = clock

    async def find(self, doctor_id: int, day: date, duration_minutes: int | None = None) -> AvailableSlots:
        duration = duration_minutes if duration_minutes is not None else self._settings.default_duration_minutes
        if duration <= 0:
            raise AppointmentValidationError("Duration must be a positive number of minutes")

        first, last = slot_window(day, duration, self._clock(), self._settings)

        bookings: list[Booking] = []
        if first <= last:
            day_start = datetime.combine(day, datetime.min.time())
            bookings = list(await self._store.find_active_by_doctor(
                doctor_id, day_start, day_start + timedelta(days=1)
            ))

        slots = AvailableSlots(
            doctor_id=doctor_id,
            first=first,
            last=last,
            step_minutes=self._settings.slot_step_minutes,
            duration_minutes=duration,
            bookings=bookings,
        )
        logger.debug(
            "Slot search: doctor=%s day=%s duration=%d window=%s..%s bookings=%d",
            doctor_id,
            day,
            duration,
            first.time(),
            last.time(),
            len(bookings),
        )
        return slots
