from datetime import datetime, timezone

from ocppcharge.meter_value import MeterValue, MeterValueBuilder
from ocppcharge.sampled_value import ReadingContext, SampledValueProperties, SampledValueSampler
from ocppcharge.smart_charging_model import format_timestamp

TS = datetime(2022, 2, 1, 20, 53, 32, tzinfo=timezone.utc)
ENERGY = "Energy.Active.Import.Register"
POWER = "Power.Active.Import"


def sampler(measurand, value, unit=""):
    return SampledValueSampler(
        SampledValueProperties(measurand=measurand, unit=unit), lambda ctx: value
    )


def test_take_sample_selects_only_named_measurands():
    samplers = [sampler(ENERGY, 42, "Wh"), sampler(POWER, 7, "W")]
    builder = MeterValueBuilder(samplers, lambda: ENERGY)
    mv = builder.take_sample(TS, ReadingContext.SAMPLE_PERIODIC)
    payload = mv.to_json()
    assert payload["timestamp"] == format_timestamp(TS)
    assert payload["sampledValue"] == [
        {"value": "42", "context": "Sample.Periodic", "measurand": ENERGY, "unit": "Wh"}
    ]


def test_nothing_selected_gives_none():
    builder = MeterValueBuilder([sampler(ENERGY, 1)], lambda: "")
    assert builder.take_sample(TS, ReadingContext.TRIGGER) is None


def test_selection_change_is_picked_up():
    selection = {"value": ENERGY}
    samplers = [sampler(ENERGY, 1), sampler(POWER, 2)]
    builder = MeterValueBuilder(samplers, lambda: selection["value"])
    assert len(builder.take_sample(TS, ReadingContext.OTHER).sampled_values) == 1
    selection["value"] = f"{ENERGY},{POWER}"
    assert len(builder.take_sample(TS, ReadingContext.OTHER).sampled_values) == 2


def test_added_sampler_is_picked_up():
    samplers = [sampler(ENERGY, 1)]
    builder = MeterValueBuilder(samplers, lambda: POWER)
    assert builder.take_sample(TS, ReadingContext.OTHER) is None
    samplers.append(sampler(POWER, 5))
    mv = builder.take_sample(TS, ReadingContext.OTHER)
    assert [v.to_integer() for v in mv.sampled_values] == [5]


def test_round_trip_through_json():
    samplers = [sampler(ENERGY, 1234, "Wh"), sampler(POWER, 11, "W")]
    builder = MeterValueBuilder(samplers, lambda: f"{ENERGY},{POWER}")
    original = builder.take_sample(TS, ReadingContext.TRANSACTION_END).to_json()
    restored = builder.deserialize_sample(original)
    assert restored.timestamp == TS
    assert restored.to_json() == original


def test_deserialize_skips_unknown_measurand():
    builder = MeterValueBuilder([sampler(ENERGY, 0)], lambda: ENERGY)
    mv = builder.deserialize_sample(
        {
            "timestamp": format_timestamp(TS),
            "sampledValue": [{"value": "3", "measurand": "Voltage"}, {"value": "9", "measurand": ENERGY}],
        }
    )
    assert [v.to_integer() for v in mv.sampled_values] == [9]


def test_deserialize_invalid_timestamp():
    builder = MeterValueBuilder([sampler(ENERGY, 0)], lambda: ENERGY)
    assert builder.deserialize_sample({"timestamp": "yesterday", "sampledValue": []}) is None


def test_empty_meter_value_json():
    mv = MeterValue(TS)
    assert mv.to_json() == {"timestamp": format_timestamp(TS), "sampledValue": []}