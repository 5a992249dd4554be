"""Pump record models.

Pure data models for the records a decoding layer hands over and the
canonical events reconciliation emits. Every record is a frozen model;
fields that are settled during reconciliation (a basal duration, a
bolus amendment) are staged on an ``EventDraft`` and become part of a new
immutable value when the draft is finalized.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Annotated, Any, Generic, Literal, Self, TypeVar, Union

from pydantic import (
    AwareDatetime,
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    NaiveDatetime,
    Tag,
    TypeAdapter,
    field_validator,
    model_validator,
)

from pumphistory.core.reconciliation.annotations import Annotation, add_annotation
from pumphistory.core.reconciliation.constants import MS_PER_DAY
from pumphistory.core.reconciliation.enums import (
    BolusSubType,
    DeliveryType,
    DosePhase,
    StatusKind,
)


class PumpRecord(BaseModel):
    """Fields carried by every pump record.

    ``time`` is absolute UTC; ``device_time`` is the pump's local clock.
    ``index`` is the pump's own log sequence number, absent for devices
    without reliable indexing.
    """

    model_config = ConfigDict(frozen=True)

    time: AwareDatetime
    device_time: NaiveDatetime
    timezone_offset: int = 0
    conversion_offset: int = 0
    device_id: str | None = None
    index: int | None = Field(default=None, ge=0)
    annotations: tuple[Annotation, ...] = ()


def _single_level(value: Any) -> Any:
    """Clear the back-reference of a back-reference."""
    if value is not None and getattr(value, "previous", None) is not None:
        return value.model_copy(update={"previous": None})
    return value


class Smbg(PumpRecord):
    """Blood glucose meter reading."""

    type: Literal["smbg"] = "smbg"
    value: float
    units: str = "mg/dL"


class Bolus(PumpRecord):
    """A bolus dose, possibly amended by later termination notices."""

    type: Literal["bolus"] = "bolus"
    sub_type: BolusSubType
    normal: float | None = None
    extended: float | None = None
    duration: int | None = None
    expected_normal: float | None = None
    expected_extended: float | None = None
    expected_duration: int | None = None

    @model_validator(mode="after")
    def check_shape(self) -> Self:
        """Require the volumes each delivery shape is made of."""
        if self.sub_type != BolusSubType.square and self.normal is None:
            msg = f"{self.sub_type} bolus requires a normal volume"
            raise ValueError(msg)
        if self.sub_type != BolusSubType.normal and (
            self.extended is None or self.duration is None
        ):
            msg = f"{self.sub_type} bolus requires an extended volume and duration"
            raise ValueError(msg)
        return self

    @property
    def phases(self) -> tuple[DosePhase, ...]:
        """Delivery phases in the order the pump delivers them."""
        if self.sub_type == BolusSubType.normal:
            return (DosePhase.immediate,)
        if self.sub_type == BolusSubType.square:
            return (DosePhase.extended,)
        return (DosePhase.immediate, DosePhase.extended)


class BolusTermination(PumpRecord):
    """Notice that the most recent bolus was interrupted."""

    type: Literal["termination"] = "termination"
    sub_type: Literal["bolus"] = "bolus"
    missed_insulin: float
    duration_left: int = 0


class WizardRecommendation(BaseModel):
    """Bolus calculator recommendation."""

    model_config = ConfigDict(frozen=True)

    carb: float | None = None
    correction: float | None = None
    net: float | None = None


class BgTarget(BaseModel):
    """Blood glucose target used by the bolus calculator."""

    model_config = ConfigDict(frozen=True)

    target: float | None = None
    low: float | None = None
    high: float | None = None
    range: float | None = None


class Wizard(PumpRecord):
    """Bolus calculator record with the bolus it programmed."""

    type: Literal["wizard"] = "wizard"
    bolus: Bolus | None = None
    recommended: WizardRecommendation | None = None
    bg_input: float | None = None
    carb_input: float | None = None
    insulin_on_board: float | None = None
    insulin_carb_ratio: float | None = None
    insulin_sensitivity: float | None = None
    bg_target: BgTarget | None = None
    units: str = "mg/dL"


class DeviceStatus(PumpRecord):
    """Delivery suspended or resumed."""

    type: Literal["deviceEvent"] = "deviceEvent"
    sub_type: Literal["status"] = "status"
    status: StatusKind
    reason: dict[str, str] | None = None
    duration: int | None = None
    previous: "DeviceStatus | None" = None

    @field_validator("previous")
    @classmethod
    def single_level_previous(cls, v: "DeviceStatus | None") -> "DeviceStatus | None":
        return _single_level(v)


class AlarmPayload(BaseModel):
    """Vendor payload of an alarm; only ``stops_delivery`` is interpreted."""

    model_config = ConfigDict(frozen=True, extra="allow")

    stops_delivery: bool = False


class Alarm(PumpRecord):
    """Pump alarm, with the status it caused when it stopped delivery."""

    type: Literal["deviceEvent"] = "deviceEvent"
    sub_type: Literal["alarm"] = "alarm"
    alarm_type: str
    payload: AlarmPayload | None = None
    status: DeviceStatus | None = None

    @property
    def stops_delivery(self) -> bool:
        return self.payload is not None and self.payload.stops_delivery


class ReservoirChange(PumpRecord):
    """Reservoir (or pod) change. Must embed the suspend it caused."""

    type: Literal["deviceEvent"] = "deviceEvent"
    sub_type: Literal["reservoirChange"] = "reservoirChange"
    status: DeviceStatus | None = None


class PodActivation(PumpRecord):
    """A new pod started delivering, which implies a resume."""

    type: Literal["deviceEvent"] = "deviceEvent"
    sub_type: Literal["podActivation"] = "podActivation"
    status: DeviceStatus

    @field_validator("status")
    @classmethod
    def status_is_resume(cls, v: DeviceStatus) -> DeviceStatus:
        if v.status != StatusKind.resumed:
            msg = "pod activation must embed a resumed status"
            raise ValueError(msg)
        return v


class ClockChange(BaseModel):
    """Local clock reading before and after a pump clock edit."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    from_: NaiveDatetime = Field(alias="from")
    to: NaiveDatetime
    agent: str = "manual"


class TimeChange(PumpRecord):
    """Pump clock edit."""

    type: Literal["deviceEvent"] = "deviceEvent"
    sub_type: Literal["timeChange"] = "timeChange"
    change: ClockChange


class ScheduleEntry(BaseModel):
    """One step of a basal schedule."""

    model_config = ConfigDict(frozen=True)

    start: int = Field(ge=0, lt=MS_PER_DAY, description="ms from local midnight")
    rate: float = Field(ge=0)


class PumpSettings(PumpRecord):
    """Pump settings snapshot with the basal schedules."""

    type: Literal["pumpSettings"] = "pumpSettings"
    active_schedule: str
    basal_schedules: dict[str, tuple[ScheduleEntry, ...]] = Field(default_factory=dict)
    units: dict[str, str] | None = None

    @field_validator("basal_schedules")
    @classmethod
    def sort_schedules(
        cls, v: dict[str, tuple[ScheduleEntry, ...]]
    ) -> dict[str, tuple[ScheduleEntry, ...]]:
        return {name: tuple(sorted(entries, key=lambda e: e.start)) for name, entries in v.items()}

    def schedule(self, name: str | None = None) -> tuple[ScheduleEntry, ...]:
        """Entries of ``name`` (the active schedule by default), ascending."""
        return self.basal_schedules.get(name or self.active_schedule, ())


class Basal(PumpRecord):
    """A basal delivery segment.

    ``duration`` is usually unknown when the segment is reported and is
    settled when the next segment arrives or the stream ends.
    """

    type: Literal["basal"] = "basal"
    delivery_type: DeliveryType
    rate: float | None = None
    duration: int | None = None
    percent: float | None = None
    schedule_name: str | None = None
    suppressed: "Basal | None" = None
    previous: "Basal | None" = None

    @field_validator("previous", "suppressed")
    @classmethod
    def single_level_reference(cls, v: "Basal | None") -> "Basal | None":
        return _single_level(v)


def _record_tag(value: Any) -> str | None:
    if isinstance(value, dict):
        record_type, sub_type = value.get("type"), value.get("sub_type")
    else:
        record_type = getattr(value, "type", None)
        sub_type = getattr(value, "sub_type", None)
    if record_type == "deviceEvent":
        return f"deviceEvent/{sub_type}"
    return record_type


RawRecord = Annotated[
    Union[
        Annotated[Smbg, Tag("smbg")],
        Annotated[Bolus, Tag("bolus")],
        Annotated[BolusTermination, Tag("termination")],
        Annotated[Wizard, Tag("wizard")],
        Annotated[Basal, Tag("basal")],
        Annotated[PumpSettings, Tag("pumpSettings")],
        Annotated[Alarm, Tag("deviceEvent/alarm")],
        Annotated[ReservoirChange, Tag("deviceEvent/reservoirChange")],
        Annotated[DeviceStatus, Tag("deviceEvent/status")],
        Annotated[TimeChange, Tag("deviceEvent/timeChange")],
        Annotated[PodActivation, Tag("deviceEvent/podActivation")],
    ],
    Discriminator(_record_tag),
]

# Everything reconciliation can emit; terminations and pod activations are
# folded into other events.
CanonicalEvent = (
    Smbg
    | Bolus
    | Wizard
    | Basal
    | PumpSettings
    | Alarm
    | ReservoirChange
    | DeviceStatus
    | TimeChange
)

_record_adapter: TypeAdapter[RawRecord] = TypeAdapter(RawRecord)


def parse_record(data: dict[str, Any]) -> RawRecord:
    """Validate a decoded record dict into its model.

    Raises:
        pydantic.ValidationError: If the dict matches no record family.
    """
    return _record_adapter.validate_python(data)


def parse_records(payload: list[dict[str, Any]]) -> list[RawRecord]:
    return [parse_record(item) for item in payload]


R = TypeVar("R", bound=PumpRecord)


class EventDraft(Generic[R]):
    """Mutable staging area for a record that is not final yet.

    Field changes are collected on the draft; ``done()`` validates them into
    a new immutable record. A draft can only be finalized once.
    """

    def __init__(self, record: R):
        self._record = record
        self._updates: dict[str, Any] = {}
        self._finalized = False

    @property
    def record(self) -> R:
        """The record the draft was opened from, without staged changes."""
        return self._record

    def get(self, name: str) -> Any:
        if name in self._updates:
            return self._updates[name]
        return getattr(self._record, name)

    def is_assigned(self, name: str) -> bool:
        return self.get(name) is not None

    def set(self, name: str, value: Any) -> "EventDraft[R]":
        if self._finalized:
            msg = "draft already finalized"
            raise RuntimeError(msg)
        if name not in type(self._record).model_fields:
            msg = f"{type(self._record).__name__} has no field {name!r}"
            raise AttributeError(msg)
        self._updates[name] = value
        return self

    def annotate(self, code: str) -> "EventDraft[R]":
        return self.set("annotations", add_annotation(self.get("annotations"), code))

    def done(self) -> R:
        if self._finalized:
            msg = "draft already finalized"
            raise RuntimeError(msg)
        self._finalized = True
        model = type(self._record)
        fields = {name: getattr(self._record, name) for name in model.model_fields}
        fields.update(self._updates)
        return model.model_validate(fields)


@dataclass
class OutputSlot:
    """Position of an emitted event in a session's output.

    ``sequence`` is the ingestion order of the record, used to break ties
    between events with the same time.
    """

    sequence: int
    event: CanonicalEvent
