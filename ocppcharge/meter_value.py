"""Meter values: timestamped groups of sampled values, and a builder selecting samplers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Mapping, Sequence

from ocppcharge.sampled_value import ReadingContext, SampledValue, SampledValueSampler
from ocppcharge.smart_charging_model import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)


@dataclass
class MeterValue:
    """A set of sampled values taken at one point in time."""

    timestamp: datetime
    sampled_values: list[SampledValue] = field(default_factory=list)

    def add_sampled_value(self, sample: SampledValue) -> None:
        self.sampled_values.append(sample)

    def to_json(self) -> dict[str, Any] | None:
        """Render as an OCPP meterValue object, or None if a value is not ready."""
        entries = []
        for sample in self.sampled_values:
            entry = sample.to_json()
            if entry is None:
                return None
            entries.append(entry)
        return {"timestamp": format_timestamp(self.timestamp), "sampledValue": entries}


def _selected_measurands(select: str) -> set[str]:
    return {token for token in select.split(",") if token}


class MeterValueBuilder:
    """Samples the samplers whose measurands a comma-separated selection names.

    ``samplers`` is shared with its owner and may grow; ``select`` returns the
    current selection string and is consulted on every sample.
    """

    def __init__(
        self,
        samplers: Sequence[SampledValueSampler],
        select: Callable[[], str | None],
    ) -> None:
        self._samplers = samplers
        self._select = select
        self._observed_select: str | None = None
        self._observed_count = -1
        self._mask: list[bool] = []
        self._update_observed_samplers()

    def _update_observed_samplers(self) -> None:
        select = self._select() or ""
        wanted = _selected_measurands(select)
        self._mask = [s.properties.measurand in wanted for s in self._samplers]
        self._observed_select = select
        self._observed_count = len(self._samplers)

    def take_sample(self, timestamp: datetime, context: ReadingContext) -> MeterValue | None:
        """Read all selected samplers; None if nothing is selected."""
        if (self._select() or "") != self._observed_select or len(
            self._samplers
        ) != self._observed_count:
            logger.debug("Updating observed samplers due to config change or samplers added")
            self._update_observed_samplers()

        if not any(self._mask):
            return None

        sample = MeterValue(timestamp)
        for sampler, selected in zip(self._samplers, self._mask):
            if selected:
                sample.add_sampled_value(sampler.take_value(context))
        return sample

    def deserialize_sample(self, mv_json: Mapping[str, Any]) -> MeterValue | None:
        """Restore a meter value; None if its timestamp is invalid."""
        try:
            timestamp = parse_timestamp(mv_json.get("timestamp", "Invalid"))
        except ValueError:
            logger.error("invalid timestamp")
            return None

        sample = MeterValue(timestamp)
        raw = mv_json.get("sampledValue")
        for sv_json in raw if isinstance(raw, list) else []:
            if not isinstance(sv_json, Mapping):
                continue
            for sampler in self._samplers:
                props = sampler.properties
                if (
                    props.measurand == _text(sv_json, "measurand")
                    and props.format == _text(sv_json, "format")
                    and props.phase == _text(sv_json, "phase")
                    and props.location == _text(sv_json, "location")
                    and props.unit == _text(sv_json, "unit")
                ):
                    sample.add_sampled_value(sampler.deserialize_value(sv_json))
                    break
        return sample


def _text(json: Mapping[str, Any], key: str) -> str:
    value = json.get(key)
    return value if isinstance(value, str) else ""