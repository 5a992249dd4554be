# Session-level services
from pumphistory.services.session import (
    dispatch_record,
    latest_settings,
    reconcile_session,
    resolve_record_times,
    serialize_events,
)

__all__ = [
    "dispatch_record",
    "latest_settings",
    "reconcile_session",
    "resolve_record_times",
    "serialize_events",
]
