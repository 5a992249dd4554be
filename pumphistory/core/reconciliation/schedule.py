"""Schedule finalizer.

Devices never terminate the scheduled basal that is still running when
their log ends. When the pump settings are known, the segment is assumed
to run until the next step of the active schedule.
"""

import bisect
import math
from datetime import datetime

from pumphistory.core.reconciliation.annotations import UNKNOWN_DURATION
from pumphistory.core.reconciliation.constants import (
    MS_PER_DAY,
    RATE_MATCH_TOLERANCE,
)
from pumphistory.core.reconciliation.devices import DeviceFamily
from pumphistory.core.reconciliation.models import (
    Basal,
    EventDraft,
    PumpSettings,
    ScheduleEntry,
)
from pumphistory.logging_config import get_logger

logger = get_logger(__name__)


def time_of_day_ms(local: datetime) -> int:
    """Milliseconds since local midnight."""
    return (
        ((local.hour * 60 + local.minute) * 60 + local.second) * 1000
        + local.microsecond // 1000
    )


def locate_schedule_entry(
    entries: tuple[ScheduleEntry, ...], offset_ms: int
) -> tuple[ScheduleEntry, int]:
    """Find the schedule entry in force at ``offset_ms``.

    Args:
        entries: Schedule entries sorted by ``start``, not empty.
        offset_ms: Milliseconds since local midnight.

    Returns:
        The entry in force and the milliseconds until the next entry
        starts, wrapping past midnight.
    """
    starts = [entry.start for entry in entries]
    position = bisect.bisect_right(starts, offset_ms) - 1
    if position < 0:
        # Before the first step of the day: yesterday's last step still runs
        return entries[-1], starts[0] - offset_ms
    if position + 1 < len(entries):
        next_start = starts[position + 1]
    else:
        next_start = starts[0] + MS_PER_DAY
    return entries[position], next_start - offset_ms


def finalize_scheduled_segment(
    draft: EventDraft[Basal], settings: PumpSettings, family: DeviceFamily
) -> Basal:
    """Settle the duration of the last scheduled segment of a stream.

    A segment that matches the active schedule runs until the schedule's
    next step and is annotated as fabricated from the schedule, unless the
    device declared a duration. A segment off the active schedule gets a
    zero duration and is annotated with both the off-schedule and the
    unknown-duration codes.
    """
    entries = settings.schedule()
    on_schedule = False
    remaining_ms = 0
    if entries and draft.get("schedule_name") == settings.active_schedule:
        entry, remaining_ms = locate_schedule_entry(
            entries, time_of_day_ms(draft.get("device_time"))
        )
        rate = draft.get("rate")
        on_schedule = rate is not None and math.isclose(
            rate, entry.rate, abs_tol=RATE_MATCH_TOLERANCE
        )

    if not on_schedule:
        logger.info(
            "Final scheduled basal is off the active schedule",
            schedule_name=draft.get("schedule_name"),
            active_schedule=settings.active_schedule,
            rate=draft.get("rate"),
        )
        draft.annotate(family.off_schedule_rate_code)
        draft.set("duration", 0)
        draft.annotate(UNKNOWN_DURATION)
    elif not draft.is_assigned("duration"):
        draft.set("duration", remaining_ms)
        draft.annotate(family.fabricated_from_schedule_code)

    return draft.done()
