"""Event reconciler.

State machine that folds one device session's records, in device order,
into canonical events. A basal segment's duration is only known once the
next segment arrives, so segments are held open and emitted late;
``drain_output`` restores time order before hand-off.

One reconciler per device session. Any ``ReconciliationError`` aborts
the session: the buffered output is discarded and every later call
raises ``SessionAbortedError``.
"""

from datetime import datetime, timedelta
from typing import NoReturn

from pumphistory.core.reconciliation.annotations import UNKNOWN_DURATION, annotate_event
from pumphistory.core.reconciliation.devices import DeviceFamily, InsuletFamily
from pumphistory.core.reconciliation.enums import DeliveryType, StatusKind
from pumphistory.core.reconciliation.errors import (
    MissingRequiredContextError,
    OrderingViolationError,
    ReconciliationError,
    SessionAbortedError,
)
from pumphistory.core.reconciliation.models import (
    Alarm,
    Basal,
    Bolus,
    BolusTermination,
    CanonicalEvent,
    DeviceStatus,
    EventDraft,
    OutputSlot,
    PumpRecord,
    PumpSettings,
    ReservoirChange,
    Smbg,
    TimeChange,
    Wizard,
)
from pumphistory.core.reconciliation.schedule import finalize_scheduled_segment
from pumphistory.core.reconciliation.terminations import TerminationMatcher, dose_of
from pumphistory.logging_config import get_logger

logger = get_logger(__name__)


def is_zero_dose(event: CanonicalEvent) -> bool:
    """A bolus (or wizard bolus) that delivered nothing up front and was
    never amended by a termination."""
    dose = dose_of(event)
    return dose is not None and dose.normal == 0 and dose.expected_normal is None


class EventReconciler:
    """Reconciles the records of a single device session.

    Args:
        settings: Pump settings in force for the session, used to settle
            the final scheduled basal and complete temp basals.
        device_family: Vendor strategy; Insulet when not given.
    """

    def __init__(
        self,
        settings: PumpSettings | None = None,
        device_family: DeviceFamily | None = None,
    ):
        self.settings = settings
        self.device_family = device_family or InsuletFamily()
        self._slots: list[OutputSlot] = []
        self._sequence = 0
        self._last_time: datetime | None = None
        self._open_segment: EventDraft[Basal] | None = None
        self._open_sequence = 0
        self._pending_suspend: DeviceStatus | None = None
        self._matcher = TerminationMatcher()
        self._aborted = False

    @property
    def open_segment(self) -> Basal | None:
        """The segment still waiting for its duration, as reported."""
        return self._open_segment.record if self._open_segment else None

    @property
    def pending_suspend(self) -> DeviceStatus | None:
        return self._pending_suspend

    # ------------------------------------------------------------------
    # Session state
    # ------------------------------------------------------------------

    def _check_active(self) -> None:
        if self._aborted:
            msg = "Session was aborted by an earlier reconciliation error"
            raise SessionAbortedError(msg)

    def _abort(self, error: ReconciliationError) -> NoReturn:
        self._aborted = True
        self._slots.clear()
        self._open_segment = None
        self._pending_suspend = None
        self._matcher.reset()
        logger.error(
            "Reconciliation aborted",
            error=str(error),
            error_type=type(error).__name__,
        )
        raise error

    def _accept(self, record: PumpRecord) -> int:
        """Enforce device order and return the record's ingestion sequence."""
        self._check_active()
        if self._last_time is not None and record.time < self._last_time:
            self._abort(
                OrderingViolationError(
                    f"Records must be in time order: got {record.time.isoformat()} "
                    f"after {self._last_time.isoformat()}"
                )
            )
        self._last_time = record.time
        self._sequence += 1
        return self._sequence

    def _emit(self, event: CanonicalEvent, sequence: int) -> OutputSlot:
        slot = OutputSlot(sequence=sequence, event=event)
        self._slots.append(slot)
        return slot

    # ------------------------------------------------------------------
    # Pass-through records
    # ------------------------------------------------------------------

    def ingest_simple(self, record: CanonicalEvent) -> None:
        """Emit a record unchanged, after checking its required context."""
        sequence = self._accept(record)
        if isinstance(record, Alarm):
            if record.stops_delivery and record.index is not None and record.status is None:
                self._abort(
                    MissingRequiredContextError(
                        f"Alarm {record.alarm_type!r} at index {record.index} stops "
                        "delivery but carries no status"
                    )
                )
        elif isinstance(record, ReservoirChange) and record.status is None:
            self._abort(
                MissingRequiredContextError(
                    f"Reservoir change at {record.time.isoformat()} carries no status"
                )
            )
        self._emit(record, sequence)

    def ingest_smbg(self, record: Smbg) -> None:
        self.ingest_simple(record)

    def ingest_alarm(self, record: Alarm) -> None:
        self.ingest_simple(record)

    def ingest_reservoir_change(self, record: ReservoirChange) -> None:
        self.ingest_simple(record)

    def ingest_time_change(self, record: TimeChange) -> None:
        self.ingest_simple(record)

    def ingest_pump_settings(self, record: PumpSettings) -> None:
        self.ingest_simple(record)

    # ------------------------------------------------------------------
    # Basal segments
    # ------------------------------------------------------------------

    def ingest_delivery_segment(self, segment: Basal) -> None:
        """Close the open segment with this one's start time, then open this one.

        A segment repeating the open segment's timestamp is a duplicate
        broadcast and is dropped.
        """
        sequence = self._accept(segment)
        segment = self.device_family.prepare_segment(segment, self.settings)
        draft = EventDraft(segment)

        if self._open_segment is not None:
            open_record = self._open_segment.record
            if open_record.time == segment.time:
                logger.debug(
                    "Ignoring repeated basal broadcast",
                    time=segment.time,
                    delivery_type=segment.delivery_type,
                )
                return
            if not self._open_segment.is_assigned("duration"):
                self._open_segment.set(
                    "duration",
                    (segment.time - open_record.time) // timedelta(milliseconds=1),
                )
            closed = self._open_segment.done()
            self._emit(closed, self._open_sequence)
            # back-reference carries the predecessor's delivery, not its advisories
            draft.set("previous", closed.model_copy(update={"annotations": ()}))

        self._open_segment = draft
        self._open_sequence = sequence

    def finalize_segment(self) -> None:
        """Settle and emit the open segment at the end of the stream."""
        self._check_active()
        draft = self._open_segment
        if draft is None:
            return

        delivery_type = draft.record.delivery_type
        if delivery_type == DeliveryType.temp:
            final = draft.done()
        elif delivery_type == DeliveryType.scheduled and self.settings is not None:
            final = finalize_scheduled_segment(draft, self.settings, self.device_family)
        elif delivery_type == DeliveryType.suspend and draft.is_assigned("duration"):
            final = draft.done()
        else:
            final = annotate_event(draft.set("duration", 0).done(), UNKNOWN_DURATION)

        self._emit(final, self._open_sequence)
        self._open_segment = None

    # ------------------------------------------------------------------
    # Suspend / resume
    # ------------------------------------------------------------------

    def ingest_suspend(self, status: DeviceStatus) -> None:
        """Emit a suspend; the first of a run anchors the next resume."""
        sequence = self._accept(status)
        self._emit(status, sequence)
        if self._pending_suspend is None:
            self._pending_suspend = status

    def _emit_resume(self, status: DeviceStatus, sequence: int) -> None:
        if self._pending_suspend is not None:
            status = EventDraft(status).set("previous", self._pending_suspend).done()
            self._pending_suspend = None
        self._emit(status, sequence)

    def ingest_resume(self, status: DeviceStatus) -> None:
        """Emit a resume linked to the pending suspend, if any."""
        sequence = self._accept(status)
        self._emit_resume(status, sequence)

    def ingest_pod_activation(self, status: DeviceStatus) -> None:
        """Fabricate the resume implied by activating a new pod."""
        sequence = self._accept(status)
        if status.status != StatusKind.resumed:
            status = EventDraft(status).set("status", StatusKind.resumed).done()
        logger.debug(
            "Fabricating resume for pod activation",
            time=status.time,
            pending_suspend=self._pending_suspend is not None,
        )
        self._emit_resume(status, sequence)

    # ------------------------------------------------------------------
    # Boluses
    # ------------------------------------------------------------------

    def ingest_bolus(self, record: Bolus) -> None:
        sequence = self._accept(record)
        self._matcher.track(self._emit(record, sequence))

    def ingest_wizard(self, record: Wizard) -> None:
        sequence = self._accept(record)
        self._matcher.track(self._emit(record, sequence))

    def ingest_termination(self, termination: BolusTermination) -> None:
        self._accept(termination)
        self._matcher.apply(termination)

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def drain_output(self) -> list[CanonicalEvent]:
        """Hand off the emitted events in time order.

        Zero-volume doses without an amendment are dropped. Events with the
        same time keep the order their records were ingested in. The buffer
        is emptied; a later termination can no longer amend drained doses.
        """
        self._check_active()
        if self._open_segment is not None:
            logger.warning(
                "Draining output while a basal segment is still open",
                segment_time=self._open_segment.record.time,
            )
        kept = [slot for slot in self._slots if not is_zero_dose(slot.event)]
        dropped = len(self._slots) - len(kept)
        if dropped:
            logger.debug("Dropped zero-volume doses", count=dropped)
        kept.sort(key=lambda slot: (slot.event.time, slot.sequence))
        self._slots = []
        self._matcher.reset()
        return [slot.event for slot in kept]
