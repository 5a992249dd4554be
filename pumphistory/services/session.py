"""Device session reconciliation service.

Runs one pump download through the reconciliation core: resolves record
times, dispatches every record to the reconciler operation for its
family, closes the stream and renders the canonical events for upload.
A failed session raises; callers skip the session rather than upload a
partial history.
"""

import uuid
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from pumphistory.config import settings as app_settings
from pumphistory.core.reconciliation import (
    Basal,
    Bolus,
    BolusTermination,
    CanonicalEvent,
    DeviceStatus,
    EventDraft,
    EventReconciler,
    PodActivation,
    PumpSettings,
    RawRecord,
    ReconciliationError,
    StatusKind,
    TimeChange,
    TimezoneOffsetResolver,
    Wizard,
    get_device_family,
)
from pumphistory.logging_config import get_logger, session_context

logger = get_logger(__name__)


def resolve_record_times(
    records: list[RawRecord],
    timezone: str,
    most_recent: datetime | str | None = None,
) -> list[RawRecord]:
    """Fill in UTC time and offset on every record from its local time.

    Without ``most_recent`` the offset after the newest clock edit holds
    up to the end of the session.
    """
    changes = [r for r in records if isinstance(r, TimeChange)]
    resolver = TimezoneOffsetResolver(timezone, most_recent, changes)
    return [resolver.apply(record) for record in records]


def latest_settings(records: Iterable[RawRecord]) -> PumpSettings | None:
    """The last pump settings snapshot in the stream, if any."""
    found = None
    for record in records:
        if isinstance(record, PumpSettings):
            found = record
    return found


def dispatch_record(reconciler: EventReconciler, record: RawRecord) -> None:
    """Route a record to the reconciler operation for its family."""
    if isinstance(record, Basal):
        reconciler.ingest_delivery_segment(record)
    elif isinstance(record, Bolus):
        reconciler.ingest_bolus(record)
    elif isinstance(record, Wizard):
        reconciler.ingest_wizard(record)
    elif isinstance(record, BolusTermination):
        reconciler.ingest_termination(record)
    elif isinstance(record, DeviceStatus):
        if record.status == StatusKind.suspended:
            reconciler.ingest_suspend(record)
        else:
            reconciler.ingest_resume(record)
    elif isinstance(record, PodActivation):
        # the implied resume happens when the pod was activated
        resume = (
            EventDraft(record.status)
            .set("time", record.time)
            .set("device_time", record.device_time)
            .set("timezone_offset", record.timezone_offset)
            .done()
        )
        reconciler.ingest_pod_activation(resume)
    else:
        reconciler.ingest_simple(record)


def reconcile_session(
    records: Iterable[RawRecord],
    *,
    device_family: str | None = None,
    timezone: str | None = None,
    most_recent: datetime | str | None = None,
    settings: PumpSettings | None = None,
    session_id: str | None = None,
) -> list[CanonicalEvent]:
    """Reconcile one device session into canonical events.

    Args:
        records: Decoded records in device order.
        device_family: Vendor name; the configured default when not given.
        timezone: IANA zone to resolve record times with. When not given,
            record times are used as decoded.
        most_recent: UTC time of the newest record, for time resolution.
            When not given, the offset after the newest clock edit is
            applied to every later record.
        settings: Pump settings to finalize the last basal with; the last
            settings snapshot in ``records`` when not given.
        session_id: Id tagged on log lines; generated when not given.

    Returns:
        Canonical events sorted by time.

    Raises:
        ReconciliationError: The session cannot be reconciled.
    """
    session_id = session_id or uuid.uuid4().hex
    with session_context(session_id):
        family = get_device_family(device_family or app_settings.default_device_family)
        records = list(records)
        logger.info(
            "Reconciling device session",
            device_family=family.name,
            records=len(records),
            timezone=timezone,
        )
        try:
            if timezone is not None:
                records = resolve_record_times(records, timezone, most_recent)
            if settings is None:
                settings = latest_settings(records)

            reconciler = EventReconciler(settings=settings, device_family=family)
            for record in records:
                dispatch_record(reconciler, record)
            reconciler.finalize_segment()
            events = reconciler.drain_output()
        except ReconciliationError as e:
            logger.error(
                "Device session reconciliation failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        logger.info(
            "Device session reconciled",
            records=len(records),
            events=len(events),
        )
        return events


def _clean_payload(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: _clean_payload(item)
            for key, item in value.items()
            if key != "index" and not (key == "annotations" and not item)
        }
    if isinstance(value, list):
        return [_clean_payload(item) for item in value]
    return value


def serialize_events(events: Iterable[CanonicalEvent]) -> list[dict[str, Any]]:
    """Render canonical events as JSON-ready dicts for the upload collaborator.

    The pump log index only serves ordering and is left out, as are unset
    fields and empty annotation lists.
    """
    return [
        _clean_payload(event.model_dump(mode="json", by_alias=True, exclude_none=True))
        for event in events
    ]
