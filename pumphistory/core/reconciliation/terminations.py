"""Bolus termination matching.

A termination notice arrives after the bolus it interrupts has already
been emitted. Each notice settles the next outstanding delivery phase of
the most recent dose: a combined bolus is terminated twice, immediate
phase first.
"""

from collections import deque

from pumphistory.core.reconciliation.enums import DosePhase
from pumphistory.core.reconciliation.models import (
    Bolus,
    BolusTermination,
    EventDraft,
    OutputSlot,
    Wizard,
)
from pumphistory.logging_config import get_logger

logger = get_logger(__name__)


def dose_of(event: object) -> Bolus | None:
    """The bolus carried by a bolus or wizard event."""
    if isinstance(event, Bolus):
        return event
    if isinstance(event, Wizard):
        return event.bolus
    return None


def amend_dose(dose: Bolus, phase: DosePhase, termination: BolusTermination) -> Bolus:
    """Add what a termination reports as missed to the expected values."""
    draft = EventDraft(dose)
    if phase == DosePhase.immediate:
        draft.set("expected_normal", (dose.normal or 0.0) + termination.missed_insulin)
    else:
        draft.set(
            "expected_extended", (dose.extended or 0.0) + termination.missed_insulin
        )
        draft.set("expected_duration", (dose.duration or 0) + termination.duration_left)
    return draft.done()


class TerminationMatcher:
    """Tracks the most recent dose and the phases still open to termination."""

    def __init__(self) -> None:
        self._slot: OutputSlot | None = None
        self._outstanding: deque[DosePhase] = deque()

    @property
    def outstanding(self) -> tuple[DosePhase, ...]:
        return tuple(self._outstanding)

    def track(self, slot: OutputSlot) -> None:
        """Make the dose in ``slot`` the target of later terminations.

        Events without a dose (a wizard with no bolus) leave the current
        target in place.
        """
        dose = dose_of(slot.event)
        if dose is None:
            return
        self._slot = slot
        self._outstanding = deque(dose.phases)

    def apply(self, termination: BolusTermination) -> bool:
        """Amend the tracked dose in its output slot.

        Returns:
            False when no dose phase was outstanding and nothing changed.
        """
        if self._slot is None or not self._outstanding:
            logger.warning(
                "Bolus termination has no outstanding dose phase",
                termination_time=termination.time,
                missed_insulin=termination.missed_insulin,
            )
            return False

        phase = self._outstanding.popleft()
        event = self._slot.event
        amended = amend_dose(dose_of(event), phase, termination)
        if isinstance(event, Wizard):
            self._slot.event = EventDraft(event).set("bolus", amended).done()
        else:
            self._slot.event = amended
        logger.debug(
            "Amended bolus from termination",
            phase=phase,
            bolus_time=amended.time,
        )
        return True

    def reset(self) -> None:
        self._slot = None
        self._outstanding.clear()
