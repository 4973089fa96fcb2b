"""Charging profiles, schedules and schedule periods with limit inference."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Mapping

logger = logging.getLogger(__name__)

MIN_TIME = datetime(2010, 1, 1, tzinfo=timezone.utc)
MAX_TIME = datetime(2037, 12, 31, 23, 59, 59, tzinfo=timezone.utc)

_DAY = 24 * 3600
_WEEK = 7 * _DAY

_TIMESTAMP_RE = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.\d+)?"
    r"(Z|[+-]\d{2}:\d{2})?$"
)


def parse_timestamp(text: str) -> datetime:
    """Parse an OCPP JSON date such as ``2022-02-01T20:53:32.486Z``.

    Fractions of a second are dropped. Raises ValueError on malformed input.
    """
    if not isinstance(text, str):
        raise ValueError(f"timestamp must be a string, not {type(text).__name__}")
    match = _TIMESTAMP_RE.match(text)
    if not match:
        raise ValueError(f"invalid timestamp: {text!r}")
    year, month, day, hour, minute, second = (int(g) for g in match.groups()[:6])
    offset = match.group(7)
    tz = timezone.utc
    if offset and offset != "Z":
        sign = 1 if offset[0] == "+" else -1
        tz = timezone(sign * timedelta(hours=int(offset[1:3]), minutes=int(offset[4:6])))
    value = datetime(year, month, day, hour, minute, second, tzinfo=tz)
    return value.astimezone(timezone.utc)


def format_timestamp(timestamp: datetime) -> str:
    """Render a timestamp in the OCPP JSON date format (UTC, milliseconds)."""
    utc = timestamp.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def _seconds_between(later: datetime, earlier: datetime) -> int:
    return int((later - earlier).total_seconds())


def _truncated_mod(value: int, modulus: int) -> int:
    """Remainder with the sign of the dividend, like integer ``%`` in C."""
    remainder = abs(value) % modulus
    return -remainder if value < 0 else remainder


def _timestamp_or(value: Any, default: datetime) -> datetime:
    try:
        return parse_timestamp(value)
    except ValueError:
        return default


def _int_or(json: Mapping[str, Any], key: str, default: int) -> int:
    value = json.get(key)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return default


def _float_or(json: Mapping[str, Any], key: str, default: float) -> float:
    value = json.get(key)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return default


def _str_or(json: Mapping[str, Any], key: str, default: str) -> str:
    value = json.get(key)
    return value if isinstance(value, str) else default


class ChargingProfilePurposeType(Enum):
    CHARGE_POINT_MAX_PROFILE = "ChargePointMaxProfile"
    TX_DEFAULT_PROFILE = "TxDefaultProfile"
    TX_PROFILE = "TxProfile"


class ChargingProfileKindType(Enum):
    ABSOLUTE = "Absolute"
    RECURRING = "Recurring"
    RELATIVE = "Relative"


class RecurrencyKindType(Enum):
    NOT_SET = "NOT_SET"
    DAILY = "Daily"
    WEEKLY = "Weekly"


class ChargingRateUnitType(Enum):
    WATT = "W"
    AMP = "A"


@dataclass
class ChargingSchedulePeriod:
    """One step of a charging schedule, starting at an offset in seconds."""

    start_period: int
    limit: float
    number_phases: int = -1

    @classmethod
    def from_json(cls, json: Mapping[str, Any]) -> "ChargingSchedulePeriod":
        return cls(
            start_period=_int_or(json, "startPeriod", 0),
            limit=_float_or(json, "limit", 0.0),
            number_phases=_int_or(json, "numberPhases", -1),
        )

    def scale(self, factor: float) -> None:
        self.limit = abs(self.limit * factor)

    def add(self, value: float) -> None:
        self.limit = max(self.limit + value, 0.0)

    def to_json(self) -> dict[str, Any]:
        entry: dict[str, Any] = {"startPeriod": self.start_period, "limit": self.limit}
        if self.number_phases >= 0:
            entry["numberPhases"] = self.number_phases
        return entry


@dataclass
class ChargingSchedule:
    """A list of periods with the kind of time basis they are relative to."""

    start_schedule: datetime = MIN_TIME
    duration: int = -1
    charging_rate_unit: ChargingRateUnitType = ChargingRateUnitType.WATT
    periods: list[ChargingSchedulePeriod] = field(default_factory=list)
    min_charging_rate: float = -1.0
    kind: ChargingProfileKindType = ChargingProfileKindType.ABSOLUTE
    recurrency: RecurrencyKindType = RecurrencyKindType.NOT_SET

    @classmethod
    def from_json(
        cls,
        json: Mapping[str, Any],
        kind: ChargingProfileKindType,
        recurrency: RecurrencyKindType,
    ) -> "ChargingSchedule":
        unit_text = _str_or(json, "chargingRateUnit", "__Invalid")
        unit = (
            ChargingRateUnitType.AMP
            if unit_text[:1] in ("a", "A")
            else ChargingRateUnitType.WATT
        )
        raw_periods = json.get("chargingSchedulePeriod")
        periods = [
            ChargingSchedulePeriod.from_json(p)
            for p in (raw_periods if isinstance(raw_periods, list) else [])
            if isinstance(p, Mapping)
        ]
        periods.sort(key=lambda p: p.start_period)
        return cls(
            start_schedule=_timestamp_or(json.get("startSchedule"), MIN_TIME),
            duration=_int_or(json, "duration", -1),
            charging_rate_unit=unit,
            periods=periods,
            min_charging_rate=_float_or(json, "minChargingRate", -1.0),
            kind=kind,
            recurrency=recurrency,
        )

    def inference_limit(
        self, t: datetime, start_of_charging: datetime
    ) -> tuple[float | None, datetime]:
        """Return the limit at time ``t`` (None if undefined) and the next change."""
        next_change = MAX_TIME

        if self.kind is ChargingProfileKindType.ABSOLUTE:
            if self.start_schedule > t:
                return None, self.start_schedule
            if self.start_schedule > MIN_TIME:
                basis = self.start_schedule
            elif MIN_TIME < start_of_charging < t:
                basis = start_of_charging
            else:
                logger.error(
                    "Absolute profile without startSchedule or start of charging"
                )
                return None, next_change
        elif self.kind is ChargingProfileKindType.RECURRING:
            if self.recurrency is RecurrencyKindType.WEEKLY:
                cycle = _WEEK
            else:
                if self.recurrency is not RecurrencyKindType.DAILY:
                    logger.error("Recurring profile without recurrency kind, assume Daily")
                cycle = _DAY
            offset = _truncated_mod(_seconds_between(t, self.start_schedule), cycle)
            basis = t - timedelta(seconds=offset)
            next_change = basis + timedelta(seconds=cycle)
        else:
            if start_of_charging > t:
                return None, next_change
            basis = start_of_charging

        if t < basis:
            logger.error("time basis lies after t")
            return None, next_change

        t_to_basis = _seconds_between(t, basis)

        if self.duration > 0:
            if t_to_basis >= self.duration:
                return None, next_change
            if _seconds_between(next_change, basis) > self.duration:
                next_change = basis + timedelta(seconds=self.duration)

        limit = -1.0
        for period in self.periods:
            if period.start_period > t_to_basis:
                next_change = basis + timedelta(seconds=period.start_period)
                break
            limit = period.limit

        if limit >= 0.0:
            return max(limit, self.min_charging_rate), next_change
        return None, next_change

    def add_charging_schedule_period(self, period: ChargingSchedulePeriod) -> bool:
        """Append a period unless it starts at or after the schedule's duration."""
        if period is None or period.start_period >= self.duration:
            return False
        self.periods.append(period)
        return True

    def scale(self, factor: float) -> None:
        for period in self.periods:
            period.scale(factor)

    def translate(self, offset: float) -> None:
        for period in self.periods:
            period.add(offset)

    def to_json(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if self.duration >= 0:
            payload["duration"] = self.duration
        payload["startSchedule"] = format_timestamp(self.start_schedule)
        payload["chargingRateUnit"] = self.charging_rate_unit.value
        payload["chargingSchedulePeriod"] = [p.to_json() for p in self.periods]
        if self.min_charging_rate >= 0:
            payload["minChargeRate"] = self.min_charging_rate
        return payload


def _relative_schedule() -> ChargingSchedule:
    return ChargingSchedule(kind=ChargingProfileKindType.RELATIVE)


@dataclass
class ChargingProfile:
    """A charging profile as installed by the central system."""

    charging_profile_id: int = -1
    transaction_id: int = -1
    stack_level: int = 0
    purpose: ChargingProfilePurposeType = ChargingProfilePurposeType.TX_PROFILE
    kind: ChargingProfileKindType = ChargingProfileKindType.RELATIVE
    recurrency: RecurrencyKindType = RecurrencyKindType.NOT_SET
    valid_from: datetime = MIN_TIME
    valid_to: datetime = MIN_TIME
    schedule: ChargingSchedule = field(default_factory=_relative_schedule)

    @classmethod
    def from_json(cls, json: Mapping[str, Any]) -> "ChargingProfile":
        purpose_text = _str_or(json, "chargingProfilePurpose", "Invalid")
        if purpose_text == "ChargePointMaxProfile":
            purpose = ChargingProfilePurposeType.CHARGE_POINT_MAX_PROFILE
        elif purpose_text == "TxDefaultProfile":
            purpose = ChargingProfilePurposeType.TX_DEFAULT_PROFILE
        else:
            purpose = ChargingProfilePurposeType.TX_PROFILE

        kind_text = _str_or(json, "chargingProfileKind", "Invalid")
        if kind_text == "Absolute":
            kind = ChargingProfileKindType.ABSOLUTE
        elif kind_text == "Recurring":
            kind = ChargingProfileKindType.RECURRING
        else:
            kind = ChargingProfileKindType.RELATIVE

        recurrency_text = _str_or(json, "recurrencyKind", "Invalid")
        if recurrency_text == "Daily":
            recurrency = RecurrencyKindType.DAILY
        elif recurrency_text == "Weekly":
            recurrency = RecurrencyKindType.WEEKLY
        else:
            recurrency = RecurrencyKindType.NOT_SET

        schedule_json = json.get("chargingSchedule")
        if not isinstance(schedule_json, Mapping):
            schedule_json = {}

        return cls(
            charging_profile_id=_int_or(json, "chargingProfileId", -1),
            transaction_id=_int_or(json, "transactionId", -1),
            stack_level=_int_or(json, "stackLevel", 0),
            purpose=purpose,
            kind=kind,
            recurrency=recurrency,
            valid_from=_timestamp_or(json.get("validFrom"), MIN_TIME),
            valid_to=_timestamp_or(json.get("validTo"), MIN_TIME),
            schedule=ChargingSchedule.from_json(schedule_json, kind, recurrency),
        )

    def inference_limit(
        self, t: datetime, start_of_charging: datetime = MAX_TIME
    ) -> tuple[float | None, datetime]:
        """Return the limit at time ``t`` (None if undefined) and the next change."""
        if t > self.valid_to and self.valid_to > MIN_TIME:
            return None, MAX_TIME
        if t < self.valid_from:
            return None, self.valid_from
        return self.schedule.inference_limit(t, start_of_charging)

    def check_transaction_assignment(self, tx_id: int, profile_id: int) -> bool:
        """Whether this profile applies to the given transaction or remote profile id."""
        if self.purpose is not ChargingProfilePurposeType.TX_PROFILE:
            logger.error("assignment only exists for TxProfiles")
            return True
        if tx_id <= 0 and profile_id < 0:
            return True
        if self.charging_profile_id >= 0 and profile_id >= 0:
            return self.charging_profile_id == profile_id
        if self.transaction_id > 0 and tx_id > 0:
            return self.transaction_id == tx_id
        return True