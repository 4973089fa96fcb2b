"""Sampled meter readings, their properties and the samplers producing them."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Generic, Mapping, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ReadingContext(Enum):
    INTERRUPTION_BEGIN = "Interruption.Begin"
    INTERRUPTION_END = "Interruption.End"
    OTHER = "Other"
    SAMPLE_CLOCK = "Sample.Clock"
    SAMPLE_PERIODIC = "Sample.Periodic"
    TRANSACTION_BEGIN = "Transaction.Begin"
    TRANSACTION_END = "Transaction.End"
    TRIGGER = "Trigger"
    NOT_SET = "NOT_SET"


def serialize_reading_context(context: ReadingContext) -> str | None:
    """Return the OCPP name of a reading context, or None if it is not set."""
    if context is ReadingContext.NOT_SET:
        return None
    return context.value


def deserialize_reading_context(text: str | None) -> ReadingContext:
    """Map an OCPP reading context name back; unknown names give NOT_SET."""
    if text is None:
        logger.error("Invalid argument")
        return ReadingContext.NOT_SET
    try:
        return ReadingContext(text)
    except ValueError:
        logger.error("ReadingContext not specified %.10s", text)
        return ReadingContext.NOT_SET


_INT32_MIN = -(2**31)
_INT_PREFIX = re.compile(r"\s*([+-]?\d+)")


def _to_int32(value: int) -> int:
    return (value - _INT32_MIN) % 2**32 + _INT32_MIN


@dataclass(frozen=True)
class _Codec(Generic[T]):
    deserialize: Callable[[str], T]
    ready: Callable[[T], bool]
    serialize: Callable[[T], str]
    to_integer: Callable[[T], int]


def _parse_int(text: str) -> int:
    match = _INT_PREFIX.match(text)
    return _to_int32(int(match.group(1))) if match else 0


_INTEGER_CODEC: _Codec[int] = _Codec(
    deserialize=_parse_int,
    ready=lambda value: True,
    serialize=lambda value: str(_to_int32(int(value))),
    to_integer=lambda value: _to_int32(int(value)),
)


@dataclass(frozen=True)
class SampledValueProperties:
    """Describes what a sampler measures; empty strings mean unset."""

    format: str = ""
    measurand: str = ""
    phase: str = ""
    location: str = ""
    unit: str = ""


@dataclass
class SampledValue(Generic[T]):
    """A single reading taken in a given context."""

    properties: SampledValueProperties
    context: ReadingContext
    value: T
    codec: _Codec[T] = _INTEGER_CODEC  # type: ignore[assignment]

    def __bool__(self) -> bool:
        return self.codec.ready(self.value)

    def serialize_value(self) -> str:
        return self.codec.serialize(self.value)

    def to_integer(self) -> int:
        return self.codec.to_integer(self.value)

    def to_json(self) -> dict[str, Any] | None:
        """Render as an OCPP sampledValue object, or None if there is no value."""
        value = self.serialize_value()
        if not value:
            return None
        payload: dict[str, Any] = {"value": value}
        context = serialize_reading_context(self.context)
        if context:
            payload["context"] = context
        props = self.properties
        for key, text in (
            ("format", props.format),
            ("measurand", props.measurand),
            ("phase", props.phase),
            ("location", props.location),
            ("unit", props.unit),
        ):
            if text:
                payload[key] = text
        return payload


class SampledValueSampler(Generic[T]):
    """Takes readings from a callable and restores them from JSON."""

    def __init__(
        self,
        properties: SampledValueProperties,
        sampler: Callable[[ReadingContext], T],
        codec: _Codec[T] = _INTEGER_CODEC,  # type: ignore[assignment]
    ) -> None:
        self.properties = properties
        self._sampler = sampler
        self._codec = codec

    def take_value(self, context: ReadingContext) -> SampledValue[T]:
        return SampledValue(self.properties, context, self._sampler(context), self._codec)

    def deserialize_value(self, sv_json: Mapping[str, Any]) -> SampledValue[T]:
        context_text = sv_json.get("context")
        if not isinstance(context_text, str):
            context_text = "NOT_SET"
        value_text = sv_json.get("value")
        if not isinstance(value_text, str):
            value_text = ""
        return SampledValue(
            self.properties,
            deserialize_reading_context(context_text),
            self._codec.deserialize(value_text),
            self._codec,
        )