"""Metering of all connectors of a charge point."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from ocppcharge.meter_recorder import (
    ConnectorMeterValuesRecorder,
    MeteringConfig,
    MeterValuesReport,
)
from ocppcharge.meter_store import MeterStore
from ocppcharge.sampled_value import ReadingContext, SampledValue, SampledValueSampler
from ocppcharge.transaction import Transaction
from ocppcharge.transaction_meter_data import TransactionMeterData

logger = logging.getLogger(__name__)

METER_VALUES_TIMEOUT_MS = 120000


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _tick_ms() -> int:
    return int(time.monotonic() * 1000)


class MeteringService:
    """Runs one meter value recorder per connector and sends their reports.

    ``transaction_source`` maps a connector id to its current transaction.
    The configuration is shared by all connectors.
    """

    def __init__(
        self,
        num_connectors: int,
        directory: str | Path | None = None,
        *,
        send: Callable[[MeterValuesReport], None] | None = None,
        config: MeteringConfig | None = None,
        transaction_source: Callable[[int], Transaction | None] | None = None,
        clock: Callable[[], datetime] = _utc_now,
        tick_ms: Callable[[], int] = _tick_ms,
    ) -> None:
        self.config = config if config is not None else MeteringConfig()
        self._send = send
        self._meter_store = MeterStore(directory)
        self._connectors = [
            ConnectorMeterValuesRecorder(
                i,
                self._meter_store,
                self.config,
                transaction_source=(
                    self._source_for(transaction_source, i)
                    if transaction_source is not None
                    else None
                ),
                clock=clock,
                tick_ms=tick_ms,
            )
            for i in range(num_connectors)
        ]

    @staticmethod
    def _source_for(
        source: Callable[[int], Transaction | None], connector_id: int
    ) -> Callable[[], Transaction | None]:
        return lambda: source(connector_id)

    @property
    def num_connectors(self) -> int:
        return len(self._connectors)

    def _connector(self, connector_id: int) -> ConnectorMeterValuesRecorder:
        if not 0 <= connector_id < len(self._connectors):
            raise ValueError(f"connectorId {connector_id} is out of bounds")
        return self._connectors[connector_id]

    def _connector_of(self, transaction: Transaction | None) -> ConnectorMeterValuesRecorder:
        if transaction is None:
            raise ValueError("transaction must not be None")
        return self._connector(transaction.connector_id)

    def loop(self) -> list[MeterValuesReport]:
        """Run all recorders; send and return the reports they produced."""
        reports = []
        for connector in self._connectors:
            report = connector.loop()
            if report is not None:
                if self._send is not None:
                    self._send(report)
                reports.append(report)
        return reports

    def add_meter_value_sampler(self, connector_id: int, sampler: SampledValueSampler) -> None:
        self._connector(connector_id).add_meter_value_sampler(sampler)

    def read_tx_energy_meter(
        self, connector_id: int, context: ReadingContext
    ) -> SampledValue | None:
        return self._connector(connector_id).read_tx_energy_meter(context)

    def take_triggered_meter_values(self, connector_id: int) -> MeterValuesReport | None:
        """Snapshot of all selected meters of a connector now."""
        report = self._connector(connector_id).take_triggered_meter_values()
        if report is None:
            logger.debug("Did not take any samples for connectorId %d", connector_id)
        return report

    def begin_tx_meter_data(self, transaction: Transaction) -> None:
        self._connector_of(transaction).begin_tx_meter_data(transaction)

    def end_tx_meter_data(self, transaction: Transaction) -> TransactionMeterData | None:
        return self._connector_of(transaction).end_tx_meter_data(transaction)

    def get_stop_tx_meter_data(self, transaction: Transaction) -> TransactionMeterData | None:
        return self._connector_of(transaction).get_stop_tx_meter_data(transaction)

    def remove_tx_meter_data(self, connector_id: int, tx_nr: int) -> bool:
        return self._meter_store.remove(connector_id, tx_nr)