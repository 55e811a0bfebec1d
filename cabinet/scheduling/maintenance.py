"""Appointment retention: periodic purge of old cancelled bookings.

Cancelled appointments stay in the table (they are part of the audit
trail) until their start is older than CANCELLED_RETENTION_DAYS, after
which they are hard-deleted. Completed appointments are never purged here.

Safe to call on every schedule tick: the cutoff makes it idempotent.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from cabinet.audit import audit_on_event
from cabinet.config import settings
from cabinet.db.engine import close_db, session_scope
from cabinet.events import emit, stop_event_system, subscribe
from cabinet.scheduling.store import AppointmentStore
from cabinet.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)


async def purge_cancelled_appointments(
    store: AppointmentStore,
    retention_days: int | None = None,
    clock: Callable[[], datetime] = datetime.now,
) -> dict[str, int]:
    """Delete cancelled appointments older than the retention window.

    Runs inside the caller's transaction. Returns a summary dict.
    """
    days = retention_days if retention_days is not None else settings.scheduling.cancelled_retention_days
    cutoff = clock() - timedelta(days=days)

    deleted = await store.delete_cancelled_before(cutoff)
    summary = {"cancelled_deleted": deleted, "retention_days": days}

    await emit(SystemEvent(
        event_type=EventType.SYSTEM_MAINTENANCE,
        actor_id="system",
        actor_role="system",
        data={"action": "purge_cancelled_appointments", "cutoff": cutoff.isoformat(), **summary},
        source_module="scheduling.maintenance",
    ))

    logger.info("Retention job complete: cancelled_deleted=%d cutoff=%s", deleted, cutoff)
    return summary


async def run_retention_job() -> dict[str, int]:
    """Purge in a transaction of its own. Failures are logged and reported as zero."""
    try:
        async with session_scope() as db:
            summary = await purge_cancelled_appointments(AppointmentStore(db))
    except Exception:
        logger.exception("Appointment retention job failed")
        return {"cancelled_deleted": 0, "retention_days": settings.scheduling.cancelled_retention_days}
    return summary


async def run_once() -> dict[str, int]:
    """One purge with the audit subscriber attached, then drain and close connections."""
    subscribe(audit_on_event)
    try:
        return await run_retention_job()
    finally:
        await stop_event_system()
        await close_db()


def main() -> None:
    """Console entry point (``cabinet-retention``), meant for cron."""
    logging.basicConfig(level=settings.log_level, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    summary = asyncio.run(run_once())
    logger.info("Purged %d cancelled appointments", summary["cancelled_deleted"])


if __name__ == "__main__":
    main()
