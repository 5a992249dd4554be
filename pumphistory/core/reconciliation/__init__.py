"""Pump event reconciliation.

Turns the decoded records of one pump download into a canonical
treatment history:

1. Clock edits are resolved into UTC offset intervals and every record
   gets an absolute time (TimezoneOffsetResolver)
2. Basal segments get their durations from the segment that follows, or
   from the basal schedule at the end of the stream (EventReconciler,
   finalize_scheduled_segment)
3. Bolus termination notices amend the bolus they interrupted with the
   volume and duration it was expected to deliver (TerminationMatcher)
4. Resumes are linked to the first of the suspends that preceded them

Reconciliation does not judge whether delivered values are clinically
plausible; it only makes the record stream internally consistent.
"""

from pumphistory.core.reconciliation.annotations import (
    FABRICATED_FROM_SCHEDULE,
    OFF_SCHEDULE_RATE,
    UNKNOWN_DURATION,
    Annotation,
    annotate_event,
    vendor_code,
)
from pumphistory.core.reconciliation.devices import (
    DeviceFamily,
    InsuletFamily,
    TandemFamily,
    get_device_family,
)
from pumphistory.core.reconciliation.enums import (
    BolusSubType,
    DeliveryType,
    DosePhase,
    StatusKind,
)
from pumphistory.core.reconciliation.errors import (
    InvalidTimeChangeError,
    InvalidTimestampError,
    InvalidTimezoneError,
    MissingRequiredContextError,
    OrderingViolationError,
    ReconciliationError,
    SessionAbortedError,
    UnmatchedLookupError,
)
from pumphistory.core.reconciliation.models import (
    Alarm,
    Basal,
    Bolus,
    BolusTermination,
    CanonicalEvent,
    DeviceStatus,
    EventDraft,
    PodActivation,
    PumpSettings,
    RawRecord,
    ReservoirChange,
    ScheduleEntry,
    Smbg,
    TimeChange,
    Wizard,
    parse_record,
    parse_records,
)
from pumphistory.core.reconciliation.reconciler import EventReconciler
from pumphistory.core.reconciliation.schedule import finalize_scheduled_segment
from pumphistory.core.reconciliation.terminations import TerminationMatcher
from pumphistory.core.reconciliation.timezone import (
    OffsetInterval,
    OffsetLookup,
    TimezoneOffsetResolver,
)

__all__ = [
    "FABRICATED_FROM_SCHEDULE",
    "OFF_SCHEDULE_RATE",
    "UNKNOWN_DURATION",
    "Alarm",
    "Annotation",
    "Basal",
    "Bolus",
    "BolusSubType",
    "BolusTermination",
    "CanonicalEvent",
    "DeliveryType",
    "DeviceFamily",
    "DeviceStatus",
    "DosePhase",
    "EventDraft",
    "EventReconciler",
    "InsuletFamily",
    "InvalidTimeChangeError",
    "InvalidTimestampError",
    "InvalidTimezoneError",
    "MissingRequiredContextError",
    "OffsetInterval",
    "OffsetLookup",
    "OrderingViolationError",
    "PodActivation",
    "PumpSettings",
    "RawRecord",
    "ReconciliationError",
    "ReservoirChange",
    "ScheduleEntry",
    "SessionAbortedError",
    "Smbg",
    "StatusKind",
    "TandemFamily",
    "TerminationMatcher",
    "TimeChange",
    "TimezoneOffsetResolver",
    "UnmatchedLookupError",
    "Wizard",
    "annotate_event",
    "finalize_scheduled_segment",
    "get_device_family",
    "parse_record",
    "parse_records",
    "vendor_code",
]
