"""Device families.

Vendor-specific reconciliation behavior is kept on a small strategy
object that the reconciler and the schedule finalizer are given, so the
shared code never branches on a vendor name.
"""

from typing import ClassVar

from pumphistory.core.reconciliation.annotations import (
    FABRICATED_FROM_SCHEDULE,
    OFF_SCHEDULE_RATE,
    vendor_code,
)
from pumphistory.core.reconciliation.enums import DeliveryType
from pumphistory.core.reconciliation.models import Basal, EventDraft, PumpSettings


class DeviceFamily:
    """Base strategy; subclasses name the family."""

    name: ClassVar[str]

    @property
    def off_schedule_rate_code(self) -> str:
        return vendor_code(self.name, OFF_SCHEDULE_RATE)

    @property
    def fabricated_from_schedule_code(self) -> str:
        return vendor_code(self.name, FABRICATED_FROM_SCHEDULE)

    def prepare_segment(self, segment: Basal, settings: PumpSettings | None) -> Basal:
        """Complete a delivery segment before it is opened. No-op by default."""
        return segment

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class InsuletFamily(DeviceFamily):
    """Insulet Omnipod.

    Temp basals report the scheduled rate they suppress but not the
    schedule it comes from; the active schedule fills it in.
    """

    name = "insulet"

    def prepare_segment(self, segment: Basal, settings: PumpSettings | None) -> Basal:
        suppressed = segment.suppressed
        if (
            segment.delivery_type != DeliveryType.temp
            or suppressed is None
            or suppressed.schedule_name is not None
            or settings is None
        ):
            return segment
        suppressed = EventDraft(suppressed).set("schedule_name", settings.active_schedule).done()
        return EventDraft(segment).set("suppressed", suppressed).done()


class TandemFamily(DeviceFamily):
    """Tandem t:slim."""

    name = "tandem"


DEVICE_FAMILIES: dict[str, type[DeviceFamily]] = {
    InsuletFamily.name: InsuletFamily,
    TandemFamily.name: TandemFamily,
}


def get_device_family(name: str) -> DeviceFamily:
    """Look up a device family by name.

    Raises:
        ValueError: If no family has that name.
    """
    try:
        return DEVICE_FAMILIES[name.lower()]()
    except KeyError:
        msg = f"Unknown device family: {name}"
        raise ValueError(msg) from None
