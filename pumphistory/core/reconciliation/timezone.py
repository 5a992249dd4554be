"""Timezone offset resolution.

Pumps log local time only. Given the pump's clock edits, the resolver
walks the offset history backwards from the most recent edit and builds
intervals over which one UTC offset was in force, so each record's local
time (and, when present, its log index) can be turned back into UTC.
"""

import zoneinfo
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TypeVar

from pumphistory.core.reconciliation.constants import (
    MAX_OFFSET_CHANGE_MINUTES,
    OFFSET_QUANTUM_MINUTES,
)
from pumphistory.core.reconciliation.errors import (
    InvalidTimeChangeError,
    InvalidTimestampError,
    InvalidTimezoneError,
    UnmatchedLookupError,
)
from pumphistory.core.reconciliation.models import EventDraft, PumpRecord, TimeChange
from pumphistory.logging_config import get_logger

logger = get_logger(__name__)

R = TypeVar("R", bound=PumpRecord)


@dataclass(frozen=True)
class OffsetInterval:
    """A span of the session over which one UTC offset applied.

    ``start``/``end`` bound the span in UTC; ``start`` is None for the
    span before the oldest clock edit and ``end`` is None for the span
    after the newest one when the session's end is not known.
    ``start_index`` (inclusive) and
    ``end_index`` (exclusive) bound it by pump log index.
    """

    start: datetime | None
    end: datetime | None
    start_index: int | None
    end_index: int | None
    offset_minutes: int

    def contains_index(self, index: int) -> bool:
        return (self.start_index is None or index >= self.start_index) and (
            self.end_index is None or index < self.end_index
        )

    def contains_time(self, utc: datetime) -> bool:
        return (self.start is None or self.start <= utc) and (
            self.end is None or utc <= self.end
        )


@dataclass(frozen=True)
class OffsetLookup:
    """Resolved UTC time and offset for a local time."""

    time: datetime
    timezone_offset: int


def shift_to_utc(local: datetime, offset_minutes: int) -> datetime:
    """Undo a UTC offset: offsets are stored from UTC, we go back to it."""
    return (local - timedelta(minutes=offset_minutes)).replace(tzinfo=UTC)


def clock_change_minutes(change: TimeChange) -> int:
    """Minutes the clock moved by, rounded to the nearest offset quantum.

    Positive when the clock was set back, which means the older offset
    was larger.
    """
    delta = (change.change.from_ - change.change.to).total_seconds() / 60
    return round(delta / OFFSET_QUANTUM_MINUTES) * OFFSET_QUANTUM_MINUTES


def _load_zone(timezone: str) -> zoneinfo.ZoneInfo:
    if not isinstance(timezone, str) or not timezone:
        msg = f"Invalid timezone: {timezone!r}"
        raise InvalidTimezoneError(msg)
    try:
        return zoneinfo.ZoneInfo(timezone)
    except (ValueError, zoneinfo.ZoneInfoNotFoundError) as e:
        msg = f"Invalid timezone: {timezone}"
        raise InvalidTimezoneError(msg) from e


def _parse_timestamp(value: datetime | str) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(value)
        except (TypeError, ValueError) as e:
            msg = f"Invalid timestamp for most recent record: {value!r}"
            raise InvalidTimestampError(msg) from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


class TimezoneOffsetResolver:
    """Resolves UTC time and offset for records of one device session.

    Args:
        timezone: IANA name of the zone the pump was last set to.
        most_recent: UTC time of the most recent record of the session.
            When None, the span after the newest clock edit is open-ended.
        changes: The session's clock-edit records; each needs an index.

    Raises:
        InvalidTimezoneError: Unknown timezone name.
        InvalidTimestampError: ``most_recent`` does not parse.
        InvalidTimeChangeError: A change is not a time change or has no index.
    """

    def __init__(
        self,
        timezone: str,
        most_recent: datetime | str | None,
        changes: Sequence[TimeChange] | None = None,
    ):
        self.timezone = timezone
        self._zone = _load_zone(timezone)
        self.most_recent = (
            _parse_timestamp(most_recent) if most_recent is not None else None
        )
        self._intervals: list[OffsetInterval] = []
        self._resolved: dict[int, TimeChange] = {}
        if changes:
            self._build_intervals(changes)

    @property
    def intervals(self) -> tuple[OffsetInterval, ...]:
        """Offset intervals, most recent first."""
        return tuple(self._intervals)

    @property
    def resolved_changes(self) -> list[TimeChange]:
        """Clock edits with their UTC time and offset filled in, by index."""
        return [self._resolved[index] for index in sorted(self._resolved)]

    def _zone_time(self, local: datetime) -> datetime:
        return local.replace(tzinfo=self._zone).astimezone(UTC)

    def _zone_offset(self, utc: datetime) -> int:
        return int(utc.astimezone(self._zone).utcoffset().total_seconds() // 60)

    def _build_intervals(self, changes: Sequence[TimeChange]) -> None:
        for change in changes:
            if not isinstance(change, TimeChange):
                msg = f"Expected a time change record, got {type(change).__name__}"
                raise InvalidTimeChangeError(msg)
            if change.index is None:
                msg = f"Time change at {change.device_time} has no index"
                raise InvalidTimeChangeError(msg)

        newest_first = sorted(changes, key=lambda c: c.index, reverse=True)
        current_offset = 0
        newer: TimeChange | None = None
        for change in newest_first:
            # The clock reads change.to right after the edit, in the offset
            # that held until the next (newer) edit.
            if newer is None:
                time = self._zone_time(change.change.to)
                current_offset = self._zone_offset(time)
                interval = OffsetInterval(
                    start=time,
                    end=self.most_recent,
                    start_index=change.index,
                    end_index=None,
                    offset_minutes=current_offset,
                )
            else:
                time = shift_to_utc(change.change.to, current_offset)
                interval = OffsetInterval(
                    start=time,
                    end=newer.time,
                    start_index=change.index,
                    end_index=newer.index,
                    offset_minutes=current_offset,
                )
            self._intervals.append(interval)
            newer = (
                EventDraft(change)
                .set("time", time)
                .set("timezone_offset", current_offset)
                .done()
            )
            self._resolved[change.index] = newer
            current_offset = self._adjust_offset(current_offset, change)

        self._intervals.append(
            OffsetInterval(
                start=None,
                end=newer.time,
                start_index=None,
                end_index=newer.index,
                offset_minutes=current_offset,
            )
        )
        logger.debug(
            "Built offset intervals",
            timezone=self.timezone,
            changes=len(newest_first),
            intervals=len(self._intervals),
        )

    def _adjust_offset(self, current_offset: int, change: TimeChange) -> int:
        difference = clock_change_minutes(change)
        if abs(difference) > MAX_OFFSET_CHANGE_MINUTES:
            logger.warning(
                "Ignoring clock change larger than any offset span",
                index=change.index,
                difference_minutes=difference,
            )
            return current_offset
        return current_offset + difference

    def _match_time(self, local_time: datetime) -> OffsetInterval | None:
        for interval in self._intervals:
            if interval.contains_time(shift_to_utc(local_time, interval.offset_minutes)):
                return interval
        return None

    def _match_index(self, index: int) -> OffsetInterval | None:
        for interval in self._intervals:
            if interval.contains_index(index):
                return interval
        return None

    def lookup(self, local_time: datetime, index: int | None = None) -> OffsetLookup:
        """Resolve a local device time to UTC.

        The log index is preferred when given, since local times repeat
        after the clock is set back.

        Raises:
            UnmatchedLookupError: No interval covers the record.
        """
        if not self._intervals:
            utc = self._zone_time(local_time)
            return OffsetLookup(time=utc, timezone_offset=self._zone_offset(utc))

        if index is not None:
            interval = self._match_index(index)
            by_time = self._match_time(local_time)
            if (
                interval is not None
                and by_time is not None
                and by_time.offset_minutes != interval.offset_minutes
            ):
                logger.warning(
                    "Index and time offset lookups disagree",
                    index=index,
                    device_time=local_time,
                    index_offset=interval.offset_minutes,
                    time_offset=by_time.offset_minutes,
                )
        else:
            interval = self._match_time(local_time)

        if interval is None:
            msg = f"No offset interval covers {local_time} (index {index})"
            raise UnmatchedLookupError(msg)
        return OffsetLookup(
            time=shift_to_utc(local_time, interval.offset_minutes),
            timezone_offset=interval.offset_minutes,
        )

    def apply(self, record: R) -> R:
        """Return ``record`` with its UTC time and offset resolved.

        Embedded records (a wizard's bolus, the status of an alarm, a
        reservoir change or a pod activation, a suppressed basal) share
        their parent's log position and are resolved with its offset.
        """
        if isinstance(record, TimeChange) and record.index in self._resolved:
            return self._resolved[record.index]
        result = self.lookup(record.device_time, record.index)
        return _with_offset(record, result.timezone_offset)


def _with_offset(record: R, offset_minutes: int) -> R:
    draft = EventDraft(record)
    draft.set("time", shift_to_utc(record.device_time, offset_minutes))
    draft.set("timezone_offset", offset_minutes)
    for name in type(record).model_fields:
        embedded = getattr(record, name)
        if isinstance(embedded, PumpRecord):
            draft.set(name, _with_offset(embedded, offset_minutes))
    return draft.done()
