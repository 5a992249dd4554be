"""Pytest configuration and shared fixtures."""

from datetime import UTC, datetime

import pytest

from pumphistory.core.reconciliation import (
    EventReconciler,
    PumpSettings,
    ScheduleEntry,
)


@pytest.fixture
def pump_settings() -> PumpSettings:
    """Settings with a four-step active schedule ('billy') and a flat one."""
    return PumpSettings(
        time=datetime(2014, 9, 25, 1, 0, tzinfo=UTC),
        device_time=datetime(2014, 9, 25, 1, 0),
        active_schedule="billy",
        units={"bg": "mg/dL"},
        basal_schedules={
            "billy": [
                ScheduleEntry(start=0, rate=1.0),
                ScheduleEntry(start=21_600_000, rate=1.1),
                ScheduleEntry(start=43_200_000, rate=1.2),
                ScheduleEntry(start=64_800_000, rate=1.3),
            ],
            "bob": [ScheduleEntry(start=0, rate=0.0)],
        },
    )


@pytest.fixture
def reconciler() -> EventReconciler:
    """A reconciler with no settings, as for a download without them."""
    return EventReconciler()
