from datetime import timedelta

import pytest

from ocppcharge.smart_charging_model import (
    MAX_TIME,
    MIN_TIME,
    ChargingProfile,
    ChargingProfileKindType,
    ChargingProfilePurposeType,
    ChargingRateUnitType,
    ChargingSchedule,
    ChargingSchedulePeriod,
    RecurrencyKindType,
    format_timestamp,
    parse_timestamp,
)

START = "2022-01-01T00:00:00.000Z"


def absolute_schedule(**extra):
    json = {
        "startSchedule": START,
        "chargingRateUnit": "W",
        "chargingSchedulePeriod": [
            {"startPeriod": 3600, "limit": 32.0},
            {"startPeriod": 0, "limit": 16.0},
        ],
    }
    json.update(extra)
    return ChargingSchedule.from_json(
        json, ChargingProfileKindType.ABSOLUTE, RecurrencyKindType.NOT_SET
    )


def test_timestamp_round_trip():
    text = "2022-02-01T20:53:32.000Z"
    assert format_timestamp(parse_timestamp(text)) == text


def test_timestamp_fraction_dropped():
    assert parse_timestamp("2022-02-01T20:53:32.486Z") == parse_timestamp(
        "2022-02-01T20:53:32Z"
    )


@pytest.mark.parametrize("text", ["Invalid", "2022-13-01T00:00:00Z", "", 5])
def test_parse_invalid_raises(text):
    with pytest.raises(ValueError):
        parse_timestamp(text)


def test_period_from_json_defaults_and_to_json():
    period = ChargingSchedulePeriod.from_json({"startPeriod": 60, "limit": 11.0})
    assert period.number_phases == -1
    assert period.to_json() == {"startPeriod": 60, "limit": 11.0}
    with_phases = ChargingSchedulePeriod.from_json(
        {"startPeriod": 0, "limit": 6.0, "numberPhases": 3}
    )
    assert with_phases.to_json()["numberPhases"] == 3


def test_period_add_clamps_at_zero():
    period = ChargingSchedulePeriod(0, 5.0)
    period.add(-10.0)
    assert period.limit == 0.0


def test_period_scale_stays_positive():
    period = ChargingSchedulePeriod(0, 8.0)
    period.scale(-2.0)
    assert period.limit == pytest.approx(16.0)


def test_schedule_sorts_periods():
    schedule = absolute_schedule()
    assert [p.start_period for p in schedule.periods] == [0, 3600]


@pytest.mark.parametrize(
    "unit, expected",
    [("A", ChargingRateUnitType.AMP), ("amp", ChargingRateUnitType.AMP),
     ("W", ChargingRateUnitType.WATT), (None, ChargingRateUnitType.WATT)],
)
def test_schedule_unit(unit, expected):
    json = {} if unit is None else {"chargingRateUnit": unit}
    schedule = ChargingSchedule.from_json(
        json, ChargingProfileKindType.ABSOLUTE, RecurrencyKindType.NOT_SET
    )
    assert schedule.charging_rate_unit is expected


def test_absolute_inference_first_and_second_period():
    schedule = absolute_schedule()
    start = parse_timestamp(START)
    limit, next_change = schedule.inference_limit(start + timedelta(seconds=1800), MAX_TIME)
    assert limit == 16.0
    assert next_change == start + timedelta(seconds=3600)
    limit, next_change = schedule.inference_limit(start + timedelta(seconds=7200), MAX_TIME)
    assert limit == 32.0
    assert next_change == MAX_TIME


def test_absolute_inference_with_duration():
    schedule = absolute_schedule(duration=5400)
    start = parse_timestamp(START)
    limit, next_change = schedule.inference_limit(start + timedelta(seconds=3700), MAX_TIME)
    assert limit == 32.0
    assert next_change == start + timedelta(seconds=5400)
    limit, _ = schedule.inference_limit(start + timedelta(seconds=6000), MAX_TIME)
    assert limit is None


def test_absolute_not_yet_valid():
    schedule = absolute_schedule()
    start = parse_timestamp(START)
    limit, next_change = schedule.inference_limit(start - timedelta(seconds=10), MAX_TIME)
    assert limit is None
    assert next_change == start


def test_absolute_without_any_basis():
    schedule = ChargingSchedule.from_json(
        {"chargingSchedulePeriod": [{"startPeriod": 0, "limit": 10.0}]},
        ChargingProfileKindType.ABSOLUTE,
        RecurrencyKindType.NOT_SET,
    )
    assert schedule.inference_limit(parse_timestamp(START), MAX_TIME) == (None, MAX_TIME)


def test_absolute_uses_start_of_charging():
    schedule = ChargingSchedule.from_json(
        {"chargingSchedulePeriod": [{"startPeriod": 0, "limit": 10.0}]},
        ChargingProfileKindType.ABSOLUTE,
        RecurrencyKindType.NOT_SET,
    )
    charging = parse_timestamp(START)
    limit, _ = schedule.inference_limit(charging + timedelta(seconds=5), charging)
    assert limit == 10.0


def test_min_charging_rate_applied():
    schedule = absolute_schedule(minChargingRate=20.0)
    limit, _ = schedule.inference_limit(parse_timestamp(START) + timedelta(seconds=1), MAX_TIME)
    assert limit == 20.0


@pytest.mark.parametrize(
    "recurrency, cycle_days",
    [(RecurrencyKindType.DAILY, 1), (RecurrencyKindType.WEEKLY, 7)],
)
def test_recurring_inference(recurrency, cycle_days):
    schedule = ChargingSchedule.from_json(
        {
            "startSchedule": START,
            "chargingSchedulePeriod": [
                {"startPeriod": 0, "limit": 10.0},
                {"startPeriod": 3600, "limit": 20.0},
            ],
        },
        ChargingProfileKindType.RECURRING,
        recurrency,
    )
    cycle_start = parse_timestamp(START) + timedelta(days=2 * cycle_days)
    limit, next_change = schedule.inference_limit(cycle_start + timedelta(seconds=1800), MAX_TIME)
    assert limit == 10.0
    assert next_change == cycle_start + timedelta(seconds=3600)
    limit, next_change = schedule.inference_limit(cycle_start + timedelta(seconds=7200), MAX_TIME)
    assert limit == 20.0
    assert next_change == cycle_start + timedelta(days=cycle_days)


def test_relative_inference():
    schedule = ChargingSchedule.from_json(
        {"chargingSchedulePeriod": [{"startPeriod": 0, "limit": 7.0}]},
        ChargingProfileKindType.RELATIVE,
        RecurrencyKindType.NOT_SET,
    )
    t = parse_timestamp(START)
    assert schedule.inference_limit(t, MAX_TIME) == (None, MAX_TIME)
    limit, _ = schedule.inference_limit(t, t - timedelta(seconds=100))
    assert limit == 7.0


def test_add_charging_schedule_period_respects_duration():
    schedule = ChargingSchedule(start_schedule=parse_timestamp(START), duration=100)
    assert schedule.add_charging_schedule_period(ChargingSchedulePeriod(0, 1.0)) is True
    assert schedule.add_charging_schedule_period(ChargingSchedulePeriod(100, 1.0)) is False
    assert len(schedule.periods) == 1


def test_translate_and_scale_schedule():
    schedule = absolute_schedule()
    schedule.translate(-100.0)
    assert all(p.limit == 0.0 for p in schedule.periods)


def test_schedule_to_json_round_trip():
    schedule = absolute_schedule(duration=7200, chargingRateUnit="A")
    json = schedule.to_json()
    assert json["chargingRateUnit"] == "A"
    assert json["startSchedule"] == START
    assert "minChargeRate" not in json
    again = ChargingSchedule.from_json(
        json, ChargingProfileKindType.ABSOLUTE, RecurrencyKindType.NOT_SET
    )
    assert again.periods == schedule.periods
    assert again.duration == schedule.duration


def test_profile_from_json():
    profile = ChargingProfile.from_json(
        {
            "chargingProfileId": 3,
            "transactionId": 9,
            "stackLevel": 2,
            "chargingProfilePurpose": "TxDefaultProfile",
            "chargingProfileKind": "Recurring",
            "recurrencyKind": "Weekly",
            "chargingSchedule": {"startSchedule": START},
        }
    )
    assert profile.charging_profile_id == 3
    assert profile.stack_level == 2
    assert profile.purpose is ChargingProfilePurposeType.TX_DEFAULT_PROFILE
    assert profile.schedule.kind is ChargingProfileKindType.RECURRING
    assert profile.schedule.recurrency is RecurrencyKindType.WEEKLY


def test_profile_defaults_from_empty_json():
    profile = ChargingProfile.from_json({})
    assert profile.purpose is ChargingProfilePurposeType.TX_PROFILE
    assert profile.kind is ChargingProfileKindType.RELATIVE
    assert profile.valid_from == MIN_TIME
    assert profile.valid_to == MIN_TIME


def test_profile_validity_window():
    base = {
        "chargingProfileKind": "Absolute",
        "chargingSchedule": {
            "startSchedule": START,
            "chargingSchedulePeriod": [{"startPeriod": 0, "limit": 12.0}],
        },
    }
    later = "2022-06-01T00:00:00.000Z"
    expired = ChargingProfile.from_json({**base, "validTo": "2022-02-01T00:00:00Z"})
    assert expired.inference_limit(parse_timestamp(later)) == (None, MAX_TIME)
    pending = ChargingProfile.from_json({**base, "validFrom": later})
    assert pending.inference_limit(parse_timestamp(START)) == (None, parse_timestamp(later))
    open_ended = ChargingProfile.from_json(base)
    limit, _ = open_ended.inference_limit(parse_timestamp(later))
    assert limit == 12.0


@pytest.mark.parametrize(
    "tx_id, profile_id, expected",
    [(-1, -1, True), (0, 5, True), (0, 6, False), (9, -1, True)],
)
def test_check_transaction_assignment_by_profile_id(tx_id, profile_id, expected):
    profile = ChargingProfile(charging_profile_id=5, transaction_id=-1)
    assert profile.check_transaction_assignment(tx_id, profile_id) is expected


def test_check_transaction_assignment_by_tx_id():
    profile = ChargingProfile(charging_profile_id=-1, transaction_id=4)
    assert profile.check_transaction_assignment(4, -1) is True
    assert profile.check_transaction_assignment(5, -1) is False


def test_check_transaction_assignment_other_purpose():
    profile = ChargingProfile(
        purpose=ChargingProfilePurposeType.CHARGE_POINT_MAX_PROFILE,
        charging_profile_id=1,
    )
    assert profile.check_transaction_assignment(1, 2) is True