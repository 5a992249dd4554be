"""Reconciliation errors.

Every error here is fatal for the device session being reconciled: the
session produces no canonical output and the caller must skip it or fix
its input.
"""


class ReconciliationError(Exception):
    """Base exception for reconciliation errors."""

    pass


class OrderingViolationError(ReconciliationError):
    """A record is timestamped before the previously ingested record."""

    pass


class MissingRequiredContextError(ReconciliationError):
    """A record lacks an embedded status the decoding layer must supply."""

    pass


class InvalidTimezoneError(ReconciliationError):
    """The timezone name is not a known IANA zone."""

    pass


class InvalidTimestampError(ReconciliationError):
    """A timestamp given to the offset resolver could not be parsed."""

    pass


class InvalidTimeChangeError(ReconciliationError):
    """A clock-change record given to the offset resolver is unusable."""

    pass


class UnmatchedLookupError(ReconciliationError):
    """No offset interval covers a looked-up record.

    Happens for local times past the most recent record of the session.
    """

    pass


class SessionAbortedError(ReconciliationError):
    """The session already failed and cannot ingest or produce output."""

    pass
