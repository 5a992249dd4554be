"""Tests for pump record models, drafts and annotations."""

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from pumphistory.core.reconciliation import (
    FABRICATED_FROM_SCHEDULE,
    OFF_SCHEDULE_RATE,
    UNKNOWN_DURATION,
    Alarm,
    Annotation,
    Basal,
    Bolus,
    BolusSubType,
    DeliveryType,
    DeviceStatus,
    DosePhase,
    EventDraft,
    InsuletFamily,
    PodActivation,
    PumpSettings,
    ReservoirChange,
    ScheduleEntry,
    Smbg,
    StatusKind,
    TandemFamily,
    TimeChange,
    Wizard,
    annotate_event,
    get_device_family,
    parse_record,
    parse_records,
    vendor_code,
)

TIME = datetime(2014, 9, 25, 1, 0, tzinfo=UTC)
DEVICE_TIME = datetime(2014, 9, 25, 1, 0)


def _base(**overrides) -> dict:
    data = {"time": TIME, "device_time": DEVICE_TIME, "device_id": "InsOmn1234"}
    data.update(overrides)
    return data


def _status(kind: StatusKind = StatusKind.suspended, **overrides) -> DeviceStatus:
    return DeviceStatus(status=kind, **_base(**overrides))


class TestParseRecord:
    """Decoded dicts are routed to their record family."""

    @pytest.mark.parametrize(
        ("data", "model"),
        [
            ({"type": "smbg", "value": 100}, Smbg),
            ({"type": "bolus", "sub_type": "normal", "normal": 1.3}, Bolus),
            ({"type": "wizard", "carb_input": 15}, Wizard),
            ({"type": "basal", "delivery_type": "scheduled", "rate": 0.75}, Basal),
            ({"type": "pumpSettings", "active_schedule": "billy"}, PumpSettings),
            ({"type": "deviceEvent", "sub_type": "status", "status": "resumed"}, DeviceStatus),
            ({"type": "deviceEvent", "sub_type": "alarm", "alarm_type": "occlusion"}, Alarm),
            ({"type": "deviceEvent", "sub_type": "reservoirChange"}, ReservoirChange),
        ],
    )
    def test_routes_by_type(self, data, model):
        record = parse_record(_base(**data))
        assert isinstance(record, model)

    def test_time_change_with_from_alias(self):
        record = parse_record(
            _base(
                type="deviceEvent",
                sub_type="timeChange",
                index=4,
                change={"from": "2014-09-25T01:00:00", "to": "2014-09-25T04:00:00"},
            )
        )
        assert isinstance(record, TimeChange)
        assert record.change.from_ == datetime(2014, 9, 25, 1)
        assert record.change.agent == "manual"

    def test_pod_activation(self):
        record = parse_record(
            _base(
                type="deviceEvent",
                sub_type="podActivation",
                status=_base(type="deviceEvent", sub_type="status", status="resumed"),
            )
        )
        assert isinstance(record, PodActivation)
        assert record.status.status == StatusKind.resumed

    def test_unknown_type(self):
        with pytest.raises(ValidationError):
            parse_record(_base(type="cbg", value=100))

    def test_missing_required_field(self):
        with pytest.raises(ValidationError):
            parse_record(_base(type="smbg"))

    def test_naive_time_rejected(self):
        with pytest.raises(ValidationError):
            parse_record({"type": "smbg", "value": 100, "time": DEVICE_TIME, "device_time": DEVICE_TIME})

    def test_negative_index_rejected(self):
        with pytest.raises(ValidationError):
            parse_record(_base(type="smbg", value=100, index=-1))

    def test_parse_records_keeps_order(self):
        records = parse_records(
            [
                _base(type="smbg", value=100),
                _base(type="bolus", sub_type="normal", normal=1.3),
            ]
        )
        assert [r.type for r in records] == ["smbg", "bolus"]


class TestBolus:
    def test_normal_requires_normal(self):
        with pytest.raises(ValidationError):
            Bolus(sub_type=BolusSubType.normal, **_base())

    def test_square_requires_extended_and_duration(self):
        with pytest.raises(ValidationError):
            Bolus(sub_type=BolusSubType.square, extended=1.4, **_base())

    def test_dual_requires_both(self):
        with pytest.raises(ValidationError):
            Bolus(sub_type=BolusSubType.dual_square, normal=1.3, **_base())

    def test_phases(self):
        normal = Bolus(sub_type=BolusSubType.normal, normal=1.3, **_base())
        square = Bolus(sub_type=BolusSubType.square, extended=1.4, duration=0, **_base())
        dual = Bolus(
            sub_type=BolusSubType.dual_square, normal=1.3, extended=1.4, duration=0, **_base()
        )
        assert normal.phases == (DosePhase.immediate,)
        assert square.phases == (DosePhase.extended,)
        assert dual.phases == (DosePhase.immediate, DosePhase.extended)

    def test_sub_type_wire_value(self):
        assert BolusSubType("dual/square") == BolusSubType.dual_square


class TestFrozenRecords:
    def test_records_are_immutable(self):
        smbg = Smbg(value=100, **_base())
        with pytest.raises(ValidationError):
            smbg.value = 120

    def test_previous_is_single_level(self):
        older = _status()
        middle = _status(previous=older)
        newest = _status(StatusKind.resumed, previous=middle)
        assert newest.previous.previous is None
        assert middle.previous == older

    def test_basal_references_are_single_level(self):
        first = Basal(delivery_type=DeliveryType.scheduled, rate=0.75, **_base())
        second = Basal(delivery_type=DeliveryType.scheduled, rate=0.85, previous=first, **_base())
        third = Basal(delivery_type=DeliveryType.temp, rate=0.5, previous=second, **_base())
        assert third.previous.rate == 0.85
        assert third.previous.previous is None

    def test_pod_activation_requires_resume(self):
        with pytest.raises(ValidationError):
            PodActivation(status=_status(StatusKind.suspended), **_base())

    def test_alarm_stops_delivery(self):
        assert not Alarm(alarm_type="low", **_base()).stops_delivery
        alarm = parse_record(
            _base(
                type="deviceEvent",
                sub_type="alarm",
                alarm_type="occlusion",
                payload={"stops_delivery": True, "code": 7},
            )
        )
        assert alarm.stops_delivery


class TestPumpSettings:
    def test_schedules_sorted_by_start(self):
        settings = PumpSettings(
            active_schedule="billy",
            basal_schedules={
                "billy": [ScheduleEntry(start=21_600_000, rate=1.1), ScheduleEntry(start=0, rate=1.0)]
            },
            **_base(),
        )
        assert [e.start for e in settings.schedule()] == [0, 21_600_000]

    def test_schedule_lookup(self, pump_settings):
        assert len(pump_settings.schedule()) == 4
        assert pump_settings.schedule("bob")[0].rate == 0.0
        assert pump_settings.schedule("missing") == ()

    def test_entry_start_within_day(self):
        with pytest.raises(ValidationError):
            ScheduleEntry(start=86_400_000, rate=1.0)


class TestEventDraft:
    """Drafts stage changes and validate them into a new record once."""

    def test_done_applies_updates(self):
        basal = Basal(delivery_type=DeliveryType.scheduled, rate=0.75, **_base())
        draft = EventDraft(basal).set("duration", 3_600_000)
        assert draft.is_assigned("duration")
        assert draft.record.duration is None

        final = draft.done()
        assert final.duration == 3_600_000
        assert basal.duration is None

    def test_get_falls_back_to_record(self):
        draft = EventDraft(Basal(delivery_type=DeliveryType.temp, rate=0.5, **_base()))
        assert draft.get("rate") == 0.5
        assert not draft.is_assigned("duration")

    def test_unknown_field(self):
        draft = EventDraft(Smbg(value=100, **_base()))
        with pytest.raises(AttributeError):
            draft.set("duration", 10)

    def test_done_only_once(self):
        draft = EventDraft(Smbg(value=100, **_base()))
        draft.done()
        with pytest.raises(RuntimeError):
            draft.done()
        with pytest.raises(RuntimeError):
            draft.set("value", 110)

    def test_done_validates(self):
        draft = EventDraft(Smbg(value=100, **_base())).set("value", "high")
        with pytest.raises(ValidationError):
            draft.done()

    def test_annotate(self):
        final = EventDraft(Smbg(value=100, **_base())).annotate(UNKNOWN_DURATION).done()
        assert final.annotations == (Annotation(code=UNKNOWN_DURATION),)


class TestAnnotations:
    def test_vendor_code(self):
        assert vendor_code("insulet", OFF_SCHEDULE_RATE) == "insulet/basal/off-schedule-rate"
        assert vendor_code("tandem", FABRICATED_FROM_SCHEDULE) == (
            "tandem/basal/fabricated-from-schedule"
        )

    def test_vendor_code_unknown_suffix(self):
        with pytest.raises(ValueError):
            vendor_code("insulet", UNKNOWN_DURATION)

    def test_annotate_event_keeps_order_without_duplicates(self):
        smbg = Smbg(value=100, **_base())
        annotated = annotate_event(annotate_event(smbg, "b"), "a")
        annotated = annotate_event(annotated, "b")
        assert [a.code for a in annotated.annotations] == ["b", "a"]
        assert smbg.annotations == ()

    def test_empty_code_rejected(self):
        with pytest.raises(ValidationError):
            Annotation(code="")


class TestDeviceFamilies:
    def test_lookup(self):
        assert isinstance(get_device_family("insulet"), InsuletFamily)
        assert isinstance(get_device_family("Tandem"), TandemFamily)

    def test_unknown_family(self):
        with pytest.raises(ValueError, match="Unknown device family"):
            get_device_family("medtronic")

    def test_codes(self):
        family = TandemFamily()
        assert family.off_schedule_rate_code == "tandem/basal/off-schedule-rate"
        assert family.fabricated_from_schedule_code == "tandem/basal/fabricated-from-schedule"

    def test_insulet_fills_suppressed_schedule(self, pump_settings):
        suppressed = Basal(delivery_type=DeliveryType.scheduled, rate=1.3, **_base())
        temp = Basal(delivery_type=DeliveryType.temp, rate=0.65, suppressed=suppressed, **_base())

        prepared = InsuletFamily().prepare_segment(temp, pump_settings)
        assert prepared.suppressed.schedule_name == "billy"
        assert InsuletFamily().prepare_segment(temp, None) is temp

    def test_insulet_keeps_named_suppressed_schedule(self, pump_settings):
        suppressed = Basal(
            delivery_type=DeliveryType.scheduled, rate=0.0, schedule_name="bob", **_base()
        )
        temp = Basal(delivery_type=DeliveryType.temp, rate=0.65, suppressed=suppressed, **_base())
        assert InsuletFamily().prepare_segment(temp, pump_settings) is temp
