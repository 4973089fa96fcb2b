"""Cache and storage of the stop-transaction meter data of all transactions."""

from __future__ import annotations

import logging
import weakref
from pathlib import Path

from ocppcharge.meter_value import MeterValueBuilder
from ocppcharge.transaction import Transaction
from ocppcharge.transaction_meter_data import (
    MISSES_LIMIT,
    MeterDataError,
    TransactionMeterData,
    meter_data_file_name,
)

logger = logging.getLogger(__name__)


class MeterStore:
    """Hands out one ``TransactionMeterData`` per transaction while it is in use."""

    def __init__(self, directory: str | Path | None = None) -> None:
        self._dir = Path(directory) if directory is not None else None
        self._cache: list[weakref.ref[TransactionMeterData]] = []
        if self._dir is None:
            logger.debug("volatile mode")

    def _find(self, connector_id: int, tx_nr: int) -> TransactionMeterData | None:
        for ref in self._cache:
            data = ref()
            if data is not None and data.connector_id == connector_id and data.tx_nr == tx_nr:
                return data
        return None

    def _clean(self) -> None:
        self._cache = [ref for ref in self._cache if ref() is not None]

    def _path(self, connector_id: int, tx_nr: int, index: int) -> Path:
        assert self._dir is not None
        return self._dir / meter_data_file_name(connector_id, tx_nr, index)

    def get_tx_meter_data(
        self, builder: MeterValueBuilder, transaction: Transaction | None
    ) -> TransactionMeterData | None:
        """Return the meter data of a transaction, restoring it from storage if present.

        Silent transactions and a missing transaction have no meter data.
        """
        if transaction is None or transaction.silent:
            return None
        connector_id = transaction.connector_id
        tx_nr = transaction.tx_nr

        cached = self._find(connector_id, tx_nr)
        if cached is not None:
            return cached

        self._clean()

        data = TransactionMeterData(connector_id, tx_nr, self._dir)
        if self._dir is not None and self._path(connector_id, tx_nr, 0).exists():
            try:
                data.restore(builder)
            except MeterDataError as exc:
                logger.error("removing corrupted tx entries: %s", exc)
                self.remove(connector_id, tx_nr)

        self._cache.append(weakref.ref(data))
        logger.debug("Added txNr %d, now holding %d txs", tx_nr, len(self._cache))
        return data

    def remove(self, connector_id: int, tx_nr: int) -> bool:
        """Delete the stored meter data of a transaction; False if a file could not be removed."""
        mv_count = 0
        cached = self._find(connector_id, tx_nr)
        if cached is not None:
            mv_count = cached.paths_count
            cached.finalize()

        success = True
        if self._dir is not None:
            if mv_count == 0:
                misses = 0
                index = 0
                while misses < MISSES_LIMIT:
                    if not self._path(connector_id, tx_nr, index).exists():
                        misses += 1
                        index += 1
                        continue
                    index += 1
                    mv_count = index
                    misses = 0

            logger.debug("remove %d mvs for txNr %d", mv_count, tx_nr)
            for index in reversed(range(mv_count)):
                try:
                    self._path(connector_id, tx_nr, index).unlink(missing_ok=True)
                except OSError as exc:
                    logger.error("could not remove meter value file: %s", exc)
                    success = False

        self._clean()

        if success:
            logger.debug("Removed meter values for cId %d, txNr %d", connector_id, tx_nr)
        else:
            logger.debug("corrupted fs")
        return success