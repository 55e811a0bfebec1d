"""Tests for the event emitter and the audit subscriber."""

from __future__ import annotations

import contextlib
import uuid
from unittest.mock import MagicMock, patch

import pytest

from cabinet import events
from cabinet.audit import audit_on_event, audit_row
from cabinet.schemas.events import EventType, SystemEvent


@pytest.fixture(autouse=True)
def _clean_subscribers():
    events.bus.clear()
    yield
    events.bus.clear()


def _event(event_type: EventType = EventType.APPOINTMENT_BOOKED) -> SystemEvent:
    return SystemEvent(event_type=event_type, appointment_id=uuid.uuid4(), data={"doctor_id": 7})


class TestDispatch:
    @pytest.mark.asyncio
    async def test_global_subscriber_gets_everything(self):
        received: list[SystemEvent] = []

        async def handler(event: SystemEvent) -> None:
            received.append(event)

        events.subscribe(handler)
        await events.dispatch(_event())
        await events.dispatch(_event(EventType.APPOINTMENT_CANCELLED))
        assert [e.event_type for e in received] == [EventType.APPOINTMENT_BOOKED, EventType.APPOINTMENT_CANCELLED]

    @pytest.mark.asyncio
    async def test_typed_subscriber_filters(self):
        received: list[SystemEvent] = []

        async def on_cancel(event: SystemEvent) -> None:
            received.append(event)

        events.subscribe(on_cancel, event_types=[EventType.APPOINTMENT_CANCELLED])
        await events.dispatch(_event())
        await events.dispatch(_event(EventType.APPOINTMENT_CANCELLED))
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_failing_handler_isolated(self):
        received: list[SystemEvent] = []

        async def broken(event: SystemEvent) -> None:
            raise RuntimeError("smtp down")

        async def healthy(event: SystemEvent) -> None:
            received.append(event)

        events.subscribe(broken)
        events.subscribe(healthy)
        await events.dispatch(_event())
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        received: list[SystemEvent] = []

        async def handler(event: SystemEvent) -> None:
            received.append(event)

        events.subscribe(handler, event_types=[EventType.APPOINTMENT_BOOKED])
        events.unsubscribe(handler)
        await events.dispatch(_event())
        assert received == []


class TestQueue:
    @pytest.mark.asyncio
    async def test_emit_delivered_after_stop(self):
        received: list[SystemEvent] = []

        async def handler(event: SystemEvent) -> None:
            received.append(event)

        events.subscribe(handler)
        await events.start_event_system()
        await events.emit(_event())
        await events.emit(_event(EventType.APPOINTMENT_RESCHEDULED))
        await events.stop_event_system()

        assert [e.event_type for e in received] == [
            EventType.APPOINTMENT_BOOKED,
            EventType.APPOINTMENT_RESCHEDULED,
        ]
        assert events.bus.pending == 0

    @pytest.mark.asyncio
    async def test_emit_starts_worker_lazily(self):
        received: list[SystemEvent] = []

        async def handler(event: SystemEvent) -> None:
            received.append(event)

        events.subscribe(handler)
        await events.emit(_event())
        await events.stop_event_system()
        assert len(received) == 1

    def test_handlers_for_merges_global_and_typed(self):
        async def everything(event: SystemEvent) -> None: ...

        async def cancels(event: SystemEvent) -> None: ...

        events.subscribe(everything)
        events.subscribe(cancels, event_types=[EventType.APPOINTMENT_CANCELLED])
        assert events.bus.handlers_for(EventType.APPOINTMENT_CANCELLED) == [everything, cancels]
        assert events.bus.handlers_for(EventType.APPOINTMENT_BOOKED) == [everything]


class TestAuditSubscriber:
    @pytest.mark.asyncio
    async def test_persists_event(self):
        db = MagicMock()
        event = _event()

        @contextlib.asynccontextmanager
        async def scope():
            yield db

        with patch("cabinet.audit.session_scope", scope):
            await audit_on_event(event)

        row = db.add.call_args.args[0]
        assert row.event_type == "appointment.booked"
        assert row.appointment_id == event.appointment_id
        assert row.data["doctor_id"] == 7
        assert row.data["event_id"] == str(event.id)

    @pytest.mark.asyncio
    async def test_never_raises(self):
        @contextlib.asynccontextmanager
        async def broken_scope():
            raise RuntimeError("db down")
            yield

        with patch("cabinet.audit.session_scope", broken_scope):
            await audit_on_event(_event())

    def test_row_keeps_actor(self):
        event = SystemEvent(
            event_type=EventType.APPOINTMENT_CANCELLED,
            actor_id="3",
            actor_role="patient",
            source_module="scheduling.service",
        )
        row = audit_row(event)
        assert (row.actor_id, row.actor_role) == ("3", "patient")
        assert row.data["source"] == "scheduling.service"
