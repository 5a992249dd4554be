"""Annotation registry.

Advisory codes attached to canonical events whose values were inferred
rather than reported by the device. Generic codes are shared by every
device family; vendor codes are prefixed with the family name
(``insulet/basal/off-schedule-rate``).
"""

from typing import Final, TypeVar

from pydantic import BaseModel, ConfigDict, Field

# Generic codes
UNKNOWN_DURATION: Final[str] = "basal/unknown-duration"

# Vendor code suffixes, see vendor_code()
OFF_SCHEDULE_RATE: Final[str] = "basal/off-schedule-rate"
FABRICATED_FROM_SCHEDULE: Final[str] = "basal/fabricated-from-schedule"

VENDOR_SUFFIXES: Final[frozenset[str]] = frozenset(
    {OFF_SCHEDULE_RATE, FABRICATED_FROM_SCHEDULE}
)


class Annotation(BaseModel):
    """A single advisory code on a canonical event."""

    model_config = ConfigDict(frozen=True)

    code: str = Field(min_length=1)


def vendor_code(family: str, suffix: str) -> str:
    """Build a vendor-prefixed annotation code.

    Raises:
        ValueError: If ``suffix`` is not a known vendor code.
    """
    if suffix not in VENDOR_SUFFIXES:
        msg = f"Unknown vendor annotation: {suffix}"
        raise ValueError(msg)
    return f"{family}/{suffix}"


def add_annotation(
    annotations: tuple[Annotation, ...], code: str
) -> tuple[Annotation, ...]:
    """Return ``annotations`` with ``code`` appended.

    Codes keep their insertion order and are never repeated.
    """
    if any(a.code == code for a in annotations):
        return annotations
    return (*annotations, Annotation(code=code))


E = TypeVar("E", bound=BaseModel)


def annotate_event(event: E, code: str) -> E:
    """Return a copy of a finalized event carrying ``code``."""
    annotations = add_annotation(event.annotations, code)
    return event.model_copy(update={"annotations": annotations})
