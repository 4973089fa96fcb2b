"""Periodic, clock-aligned and transaction meter values of one connector."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

from ocppcharge.meter_store import MeterStore
from ocppcharge.meter_value import MeterValue, MeterValueBuilder
from ocppcharge.sampled_value import ReadingContext, SampledValue, SampledValueSampler
from ocppcharge.transaction import Transaction
from ocppcharge.transaction_meter_data import MeterDataError, TransactionMeterData

logger = logging.getLogger(__name__)

ENERGY_MEASURAND = "Energy.Active.Import.Register"
DEFAULT_MEASURANDS = "Energy.Active.Import.Register,Power.Active.Import"
SELECT_MAX_LENGTH = 8

_DAY = 24 * 3600
_ALIGNMENT_TOLERANCE = 60

TransactionSource = Callable[[], "Transaction | None"]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _tick_ms() -> int:
    return int(time.monotonic() * 1000)


@dataclass
class MeteringConfig:
    """Configuration keys that govern which meter values are taken and when."""

    meter_values_sampled_data: str = DEFAULT_MEASURANDS
    meter_value_cache_size: int = 1
    meter_value_sample_interval: int = 60
    stop_txn_sampled_data: str = ""
    meter_values_aligned_data: str = DEFAULT_MEASURANDS
    clock_aligned_data_interval: int = 0
    stop_txn_aligned_data: str = ""
    meter_values_in_tx_only: bool = True
    stop_txn_data_capture_periodic: bool = False


@dataclass
class MeterValuesReport:
    """Meter values of one connector that are ready to be sent."""

    connector_id: int
    meter_values: list[MeterValue] = field(default_factory=list)
    transaction: Transaction | None = None


class ConnectorMeterValuesRecorder:
    """Samples the meters of one connector and collects values for reports.

    ``transaction_source`` returns the connector's current transaction; when it
    is not given, the connector's transaction state is not taken into account.
    """

    def __init__(
        self,
        connector_id: int,
        meter_store: MeterStore,
        config: MeteringConfig | None = None,
        *,
        transaction_source: TransactionSource | None = None,
        clock: Callable[[], datetime] = _utc_now,
        tick_ms: Callable[[], int] = _tick_ms,
    ) -> None:
        self.connector_id = connector_id
        self.config = config if config is not None else MeteringConfig()
        self._meter_store = meter_store
        self._transaction_source = transaction_source
        self._clock = clock
        self._tick_ms = tick_ms

        self._samplers: list[SampledValueSampler] = []
        self._energy_sampler_index = -1

        self._meter_data: list[MeterValue] = []
        self._stop_txn_data: TransactionMeterData | None = None
        self._transaction: Transaction | None = None
        self._track_tx_running = False
        self._last_sample_time = 0
        self._next_aligned_time: datetime | None = None

        self._sampled_builder = MeterValueBuilder(
            self._samplers, lambda: self.config.meter_values_sampled_data
        )
        self._aligned_builder = MeterValueBuilder(
            self._samplers, lambda: self.config.meter_values_aligned_data
        )
        self._stop_sampled_builder = MeterValueBuilder(
            self._samplers, lambda: self.config.stop_txn_sampled_data
        )
        self._stop_aligned_builder = MeterValueBuilder(
            self._samplers, lambda: self.config.stop_txn_aligned_data
        )

    # -- samplers -----------------------------------------------------------

    def add_meter_value_sampler(self, sampler: SampledValueSampler) -> None:
        if sampler.properties.measurand == ENERGY_MEASURAND:
            self._energy_sampler_index = len(self._samplers)
        self._samplers.append(sampler)

    def validate_select_string(self, csl: str) -> bool:
        """Whether every entry of a comma-separated measurand list has a sampler."""
        known = {s.properties.measurand for s in self._samplers}
        for entry in csl.split(","):
            if entry and entry not in known:
                logger.warning("could not find metering device for %s", entry)
                return False
        return True

    def read_tx_energy_meter(self, context: ReadingContext) -> SampledValue | None:
        """Read the energy register; None if there is no energy sampler."""
        if 0 <= self._energy_sampler_index < len(self._samplers):
            return self._samplers[self._energy_sampler_index].take_value(context)
        logger.debug("Called read_tx_energy_meter(), but no energy sampler set")
        return None

    # -- main loop ----------------------------------------------------------

    def _current_transaction(self) -> Transaction | None:
        assert self._transaction_source is not None
        return self._transaction_source()

    def _add_stop_sample(self, builder: MeterValueBuilder, context: ReadingContext) -> None:
        if self._stop_txn_data is None:
            return
        sample = builder.take_sample(self._clock(), context)
        if sample is None:
            return
        try:
            self._stop_txn_data.add_tx_data(sample)
        except (MeterDataError, OSError) as exc:
            logger.error("could not record stop transaction data: %s", exc)

    def loop(self) -> MeterValuesReport | None:
        """Take due samples; return a report when collected values are to be sent."""
        config = self.config

        tx_break = False
        if self._transaction_source is not None:
            current = self._current_transaction()
            running = current is not None and current.is_running
            tx_break = running != self._track_tx_running
            self._track_tx_running = running

        if tx_break:
            self._last_sample_time = self._tick_ms()

        if self._meter_data and (
            tx_break or len(self._meter_data) >= config.meter_value_cache_size
        ):
            report = MeterValuesReport(self.connector_id, self._meter_data, self._transaction)
            self._meter_data = []
            return report

        if self._transaction_source is not None:
            current = self._current_transaction()
            if current is not self._transaction:
                self._transaction = current
            tx = self._transaction
            if tx is not None and tx.is_running and not tx.silent:
                if self._stop_txn_data is None or self._stop_txn_data.tx_nr != tx.tx_nr:
                    logger.warning("reload stopTxnData")
                    self._stop_txn_data = self._meter_store.get_tx_meter_data(
                        self._stop_sampled_builder, tx
                    )
            elif config.meter_values_in_tx_only:
                self._meter_data.clear()
                return None

        aligned_interval = config.clock_aligned_data_interval
        if aligned_interval >= 1:
            self._clock_aligned_step(aligned_interval)

        sample_interval = config.meter_value_sample_interval
        if sample_interval >= 1:
            if self._tick_ms() - self._last_sample_time >= sample_interval * 1000:
                sample = self._sampled_builder.take_sample(
                    self._clock(), ReadingContext.SAMPLE_PERIODIC
                )
                if sample is not None:
                    self._meter_data.append(sample)
                if config.stop_txn_data_capture_periodic:
                    self._add_stop_sample(
                        self._stop_sampled_builder, ReadingContext.SAMPLE_PERIODIC
                    )
                self._last_sample_time = self._tick_ms()

        if aligned_interval < 1 and sample_interval < 1:
            self._meter_data.clear()

        return None

    def _clock_aligned_step(self, interval: int) -> None:
        now = self._clock()
        if self._next_aligned_time is None:
            dt: int | None = None  # first run
        else:
            dt = int((self._next_aligned_time - now).total_seconds())
        if dt is not None and 0 < dt <= interval:
            return

        in_time = dt is not None and abs(dt) <= _ALIGNMENT_TOLERANCE
        logger.debug(
            "Clock aligned measurement %ss: %s",
            dt,
            "in time (tolerance <= 60s)" if in_time else "off, e.g. because of first run. Ignore",
        )
        if in_time:
            sample = self._aligned_builder.take_sample(self._clock(), ReadingContext.SAMPLE_CLOCK)
            if sample is not None:
                self._meter_data.append(sample)
            self._add_stop_sample(self._stop_aligned_builder, ReadingContext.SAMPLE_CLOCK)

        base = datetime(2010, 1, 1, tzinfo=now.tzinfo)
        seconds_of_day = int((now - base).total_seconds()) % _DAY
        midnight = now - timedelta(seconds=seconds_of_day)
        if seconds_of_day + interval >= _DAY:
            self._next_aligned_time = midnight + timedelta(seconds=_DAY)
        else:
            steps = (seconds_of_day + interval) // interval
            self._next_aligned_time = midnight + timedelta(seconds=steps * interval)

    def take_triggered_meter_values(self) -> MeterValuesReport | None:
        """Sample the selected meters now; None if nothing is selected."""
        sample = self._sampled_builder.take_sample(self._clock(), ReadingContext.TRIGGER)
        if sample is None:
            return None
        transaction = (
            self._current_transaction() if self._transaction_source is not None else None
        )
        return MeterValuesReport(self.connector_id, [sample], transaction)

    # -- stop transaction data ----------------------------------------------

    def _ensure_stop_txn_data(self, transaction: Transaction) -> None:
        if self._stop_txn_data is None or self._stop_txn_data.tx_nr != transaction.tx_nr:
            self._stop_txn_data = self._meter_store.get_tx_meter_data(
                self._stop_sampled_builder, transaction
            )

    def begin_tx_meter_data(self, transaction: Transaction) -> None:
        """Record the transaction-begin sample of the stop transaction data."""
        self._ensure_stop_txn_data(transaction)
        self._add_stop_sample(self._stop_sampled_builder, ReadingContext.TRANSACTION_BEGIN)

    def end_tx_meter_data(self, transaction: Transaction) -> TransactionMeterData | None:
        """Record the transaction-end sample and hand over the stop transaction data."""
        self._ensure_stop_txn_data(transaction)
        self._add_stop_sample(self._stop_sampled_builder, ReadingContext.TRANSACTION_END)
        data, self._stop_txn_data = self._stop_txn_data, None
        return data

    def get_stop_tx_meter_data(self, transaction: Transaction) -> TransactionMeterData | None:
        data = self._meter_store.get_tx_meter_data(self._stop_sampled_builder, transaction)
        if data is None:
            logger.error("could not create TxData")
        return data