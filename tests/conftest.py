"""Shared fixtures: a fixed clock and scheduling settings."""

from __future__ import annotations

from datetime import time

import pytest
from fakes import NOW

from cabinet.config import SchedulingSettings


@pytest.fixture()
def scheduling_settings() -> SchedulingSettings:
    return SchedulingSettings(
        day_open=time(8, 0),
        day_close=time(18, 0),
        slot_step_minutes=30,
        booking_buffer_minutes=30,
        default_duration_minutes=30,
        cancelled_retention_days=90,
    )


@pytest.fixture()
def clock():
    return lambda: NOW
