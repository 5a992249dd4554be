"""Reconciliation enums.

Wire values match what the decoding layer reports.
"""

from enum import StrEnum, auto


class BolusSubType(StrEnum):
    """Bolus delivery shapes.

    ``normal`` is delivered immediately and ``square`` is extended over a
    duration. ``dual/square`` delivers an immediate portion followed by an
    extended one.
    """

    normal = auto()
    square = auto()
    dual_square = "dual/square"


class DeliveryType(StrEnum):
    """Kinds of basal delivery segment."""

    scheduled = auto()
    temp = auto()
    suspend = auto()


class StatusKind(StrEnum):
    """Pump delivery status."""

    suspended = auto()
    resumed = auto()


class DosePhase(StrEnum):
    """Delivery phase of a bolus that a termination can apply to."""

    immediate = auto()
    extended = auto()
