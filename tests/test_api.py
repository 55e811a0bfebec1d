"""Tests for the HTTP layer.

Covers:
- Actor headers (401 missing, 403 unknown role)
- Error kind to status code mapping with structured bodies
- Booking, lifecycle and read endpoints end to end over an in-memory store
- Booking rate limit (429 with Retry-After)
- Health check
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from fakes import DAY, NOW, FakeStore, make_appointment
from fastapi.testclient import TestClient

from cabinet.api.dependencies import get_scheduler
from cabinet.main import app
from cabinet.models.enums import AppointmentStatus
from cabinet.scheduling.service import AppointmentScheduler

DOCTOR_HEADERS = {"X-User-Id": "7", "X-User-Role": "doctor"}
PATIENT_HEADERS = {"X-User-Id": "3", "X-User-Role": "patient"}
ADMIN_HEADERS = {"X-User-Id": "1", "X-User-Role": "admin"}


@pytest.fixture()
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture()
def client(store, scheduling_settings):
    scheduler = AppointmentScheduler(store, scheduling_settings, clock=lambda: NOW)
    app.dependency_overrides[get_scheduler] = lambda: scheduler
    limiter = AsyncMock()
    limiter.check.return_value = (True, 0)
    with (
        patch("cabinet.api.dependencies.rate_limiter", limiter),
        patch("cabinet.scheduling.service.emit", new_callable=AsyncMock),
    ):
        yield TestClient(app)
    app.dependency_overrides.clear()


def _booking(**overrides) -> dict:
    body = {"patient_id": 3, "doctor_id": 7, "start_time": "2025-03-10T09:00:00", "duration_minutes": 30}
    body.update(overrides)
    return body


class TestActorHeaders:
    def test_missing_headers(self, client):
        resp = client.post("/api/v1/appointments", json=_booking())
        assert resp.status_code == 401

    def test_unknown_role(self, client):
        resp = client.post("/api/v1/appointments", json=_booking(), headers={"X-User-Id": "3", "X-User-Role": "nurse"})
        assert resp.status_code == 403


class TestBooking:
    def test_create(self, client, store):
        resp = client.post("/api/v1/appointments", json=_booking(reason="Check-up"), headers=PATIENT_HEADERS)
        assert resp.status_code == 201
        data = resp.json()
        assert data["status"] == "confirmed"
        assert data["end_time"] == "2025-03-10T09:30:00"
        assert data["reason"] == "Check-up"
        assert len(store.rows) == 1

    def test_conflict(self, client, store):
        existing = make_appointment(start=DAY.replace(hour=9), patient_id=5)
        store.rows[existing.id] = existing
        resp = client.post(
            "/api/v1/appointments", json=_booking(start_time="2025-03-10T09:15:00"), headers=PATIENT_HEADERS
        )
        assert resp.status_code == 409
        body = resp.json()
        assert body["error"] == "scheduling_conflict"
        assert body["retry_with_new_time"] is True
        assert body["details"]["doctor_conflict"] is True
        assert body["details"]["patient_conflict"] is False

    def test_validation_error(self, client):
        resp = client.post("/api/v1/appointments", json=_booking(duration_minutes=0), headers=PATIENT_HEADERS)
        assert resp.status_code == 422
        assert resp.json()["error"] == "validation_error"

    def test_offset_aware_start_is_validation_error(self, client, store):
        resp = client.post(
            "/api/v1/appointments", json=_booking(start_time="2025-03-10T09:00:00Z"), headers=PATIENT_HEADERS
        )
        assert resp.status_code == 422
        assert resp.json()["error"] == "validation_error"
        assert store.rows == {}

    def test_slot_unavailable(self, client):
        resp = client.post(
            "/api/v1/appointments/with-validation",
            json=_booking(start_time="2025-03-10T09:10:00"),
            headers=PATIENT_HEADERS,
        )
        assert resp.status_code == 409
        assert resp.json()["error"] == "slot_unavailable"

    def test_conflicts_dry_run(self, client, store):
        existing = make_appointment(start=DAY.replace(hour=9))
        store.rows[existing.id] = existing
        resp = client.post("/api/v1/appointments/conflicts", json=_booking(), headers=DOCTOR_HEADERS)
        assert resp.status_code == 200
        assert resp.json()["has_conflicts"] is True
        assert len(store.rows) == 1

    def test_rate_limited(self, client):
        limiter = AsyncMock()
        limiter.check.return_value = (False, 42)
        with patch("cabinet.api.dependencies.rate_limiter", limiter):
            resp = client.post("/api/v1/appointments", json=_booking(), headers=PATIENT_HEADERS)
        assert resp.status_code == 429
        assert resp.headers["Retry-After"] == "42"


class TestLifecycle:
    def test_get_missing(self, client):
        resp = client.get("/api/v1/appointments/00000000-0000-0000-0000-000000000000", headers=DOCTOR_HEADERS)
        assert resp.status_code == 404
        assert resp.json()["error"] == "not_found"

    def test_get_limited_to_participants_and_staff(self, client, store):
        appt = make_appointment()
        store.rows[appt.id] = appt
        url = f"/api/v1/appointments/{appt.id}"
        assert client.get(url, headers=PATIENT_HEADERS).status_code == 200
        assert client.get(url, headers={"X-User-Id": "50", "X-User-Role": "assistant"}).status_code == 200
        resp = client.get(url, headers={"X-User-Id": "9", "X-User-Role": "patient"})
        assert resp.status_code == 403
        assert resp.json()["error"] == "forbidden"

    def test_patch_by_stranger(self, client, store):
        appt = make_appointment()
        store.rows[appt.id] = appt
        resp = client.patch(
            f"/api/v1/appointments/{appt.id}",
            json={"reason": "x"},
            headers={"X-User-Id": "9", "X-User-Role": "patient"},
        )
        assert resp.status_code == 403
        assert resp.json()["error"] == "forbidden"

    def test_reschedule(self, client, store):
        appt = make_appointment()
        store.rows[appt.id] = appt
        resp = client.post(
            f"/api/v1/appointments/{appt.id}/reschedule",
            json={"new_start": "2025-03-10T15:00:00"},
            headers=PATIENT_HEADERS,
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "rescheduled"

    def test_cancel_twice(self, client, store):
        appt = make_appointment()
        store.rows[appt.id] = appt
        first = client.post(f"/api/v1/appointments/{appt.id}/cancel", headers=PATIENT_HEADERS)
        second = client.post(f"/api/v1/appointments/{appt.id}/cancel", headers=PATIENT_HEADERS)
        assert first.json()["status"] == "cancelled"
        assert second.status_code == 409
        assert second.json()["error"] == "invalid_state"

    def test_confirm_rejected(self, client, store):
        appt = make_appointment()
        store.rows[appt.id] = appt
        resp = client.post(f"/api/v1/appointments/{appt.id}/confirm", headers=DOCTOR_HEADERS)
        assert resp.status_code == 409
        assert resp.json()["details"] == {"from": "confirmed", "to": "confirmed"}

    def test_start_then_complete(self, client, store):
        appt = make_appointment()
        store.rows[appt.id] = appt
        client.post(f"/api/v1/appointments/{appt.id}/start", headers=DOCTOR_HEADERS)
        resp = client.post(
            f"/api/v1/appointments/{appt.id}/complete", json={"notes": "All good"}, headers=DOCTOR_HEADERS
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "completed"
        assert resp.json()["notes"] == "All good"

    def test_status_endpoint(self, client, store):
        appt = make_appointment(status=AppointmentStatus.IN_PROGRESS)
        store.rows[appt.id] = appt
        resp = client.post(
            f"/api/v1/appointments/{appt.id}/status", json={"status": "cancelled"}, headers=PATIENT_HEADERS
        )
        assert resp.json()["status"] == "cancelled"

    def test_delete_admin_only(self, client, store):
        appt = make_appointment()
        store.rows[appt.id] = appt
        assert client.delete(f"/api/v1/appointments/{appt.id}", headers=DOCTOR_HEADERS).status_code == 403
        assert client.delete(f"/api/v1/appointments/{appt.id}", headers=ADMIN_HEADERS).status_code == 204
        assert store.rows == {}


class TestReads:
    def test_slots(self, client, store):
        appt = make_appointment(start=DAY.replace(hour=9))
        store.rows[appt.id] = appt
        resp = client.get("/api/v1/doctors/7/slots", params={"date": "2025-03-10"}, headers=PATIENT_HEADERS)
        assert resp.status_code == 200
        data = resp.json()
        assert data["total_slots"] == 19
        assert data["slots"][0] == {"time": "08:00", "datetime": "2025-03-10T08:00:00"}

    def test_upcoming(self, client, store):
        appt = make_appointment()
        store.rows[appt.id] = appt
        resp = client.get("/api/v1/appointments/patient/3/upcoming", headers=PATIENT_HEADERS)
        assert [row["id"] for row in resp.json()] == [str(appt.id)]

    def test_dashboard_forbidden_for_patient(self, client):
        resp = client.get("/api/v1/doctors/7/dashboard", headers=PATIENT_HEADERS)
        assert resp.status_code == 403

    def test_dashboard(self, client):
        resp = client.get("/api/v1/doctors/7/dashboard", headers=DOCTOR_HEADERS)
        assert resp.status_code == 200
        assert resp.json()["tomorrow_available_slots"] == 20

    def test_stats(self, client, store):
        appt = make_appointment()
        store.rows[appt.id] = appt
        resp = client.get("/api/v1/appointments/stats", headers=ADMIN_HEADERS)
        assert resp.status_code == 200
        data = resp.json()
        assert data["total"] == 1
        assert data["popular_time_slots"] == [{"time": "09:00", "bookings": 1}]

    def test_stats_forbidden_for_doctor(self, client):
        resp = client.get("/api/v1/appointments/stats", headers=DOCTOR_HEADERS)
        assert resp.status_code == 403


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
