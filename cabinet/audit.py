"""Audit trail subscriber.

Registered for every event at startup. Each event is written in its own
short transaction, separate from the request transaction that emitted it.
The queue worker may run before that request commits, and a request that
later rolls back still leaves its audit row behind; an audit failure never
affects the booking itself.
"""

from __future__ import annotations

import logging

from cabinet.db.engine import session_scope
from cabinet.models.audit import AuditLog
from cabinet.schemas.events import SystemEvent

logger = logging.getLogger(__name__)


def audit_row(event: SystemEvent) -> AuditLog:
    return AuditLog(
        event_type=event.event_type.value,
        appointment_id=event.appointment_id,
        actor_id=event.actor_id,
        actor_role=event.actor_role,
        data={**event.data, "event_id": str(event.id), "source": event.source_module},
    )


async def audit_on_event(event: SystemEvent) -> None:
    try:
        async with session_scope() as db:
            db.add(audit_row(event))
    except Exception:
        logger.exception("Audit write failed for %s (appointment=%s)", event.event_type.value, event.appointment_id)
