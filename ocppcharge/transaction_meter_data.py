"""Meter values recorded for the StopTransaction message of one transaction."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from ocppcharge.meter_value import MeterValue, MeterValueBuilder

logger = logging.getLogger(__name__)

MAX_STOP_TX_DATA_LEN = 4
MISSES_LIMIT = 3


class MeterDataError(Exception):
    """Transaction meter data cannot be changed or read as requested."""


def meter_data_file_name(connector_id: int, tx_nr: int, index: int) -> str:
    """File name of one stored meter value of a transaction."""
    return f"sd-{connector_id}-{tx_nr}-{index}.jsn"


def load_json_file(path: Path) -> dict[str, Any] | None:
    """Read a JSON object from a file; None if it is missing or unreadable."""
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.error("could not load %s: %s", path, exc)
        return None
    return data if isinstance(data, dict) else None


class TransactionMeterData:
    """The stop-transaction meter values of one transaction.

    With a directory every value is also written to its own file; at most
    ``MAX_STOP_TX_DATA_LEN`` values are kept there, a further value replacing
    the last one. Once finalized the data is read-only.
    """

    def __init__(self, connector_id: int, tx_nr: int, directory: str | Path | None = None) -> None:
        self.connector_id = connector_id
        self.tx_nr = tx_nr
        self._dir = Path(directory) if directory is not None else None
        self._mv_count = 0
        self._finalized = False
        self._tx_data: list[MeterValue] = []
        if self._dir is None:
            logger.debug("volatile mode")

    @property
    def paths_count(self) -> int:
        """Number of file indexes spanned by the stored values."""
        return self._mv_count

    @property
    def is_finalized(self) -> bool:
        return self._finalized

    def finalize(self) -> None:
        self._finalized = True

    def _path(self, index: int) -> Path:
        assert self._dir is not None
        return self._dir / meter_data_file_name(self.connector_id, self.tx_nr, index)

    def add_tx_data(self, mv: MeterValue) -> None:
        """Record a meter value, storing it if there is a directory."""
        if self._finalized:
            raise MeterDataError("transaction meter data is immutable")
        if mv is None:
            raise ValueError("meter value must not be None")

        replace_last = self._mv_count >= MAX_STOP_TX_DATA_LEN

        if self._dir is not None:
            index = self._mv_count - 1 if replace_last else self._mv_count
            document = mv.to_json()
            if document is None:
                raise MeterDataError("meter value not ready yet")
            self._dir.mkdir(parents=True, exist_ok=True)
            self._path(index).write_text(json.dumps(document), encoding="utf-8")
            if not replace_last:
                self._mv_count += 1

        if replace_last:
            self._tx_data[-1] = mv
            logger.debug("updated latest sd")
        else:
            self._tx_data.append(mv)
            logger.debug("added sd")

    def retrieve_stop_tx_data(self) -> list[MeterValue]:
        """Hand out the recorded values and finalize; possible only once."""
        if self._finalized:
            raise MeterDataError("stop transaction data can only be retrieved once")
        self.finalize()
        data, self._tx_data = self._tx_data, []
        return data

    def restore(self, builder: MeterValueBuilder) -> int:
        """Load stored values; return how many were restored.

        Searching stops after ``MISSES_LIMIT`` missing or unreadable files in a row.
        """
        if self._dir is None:
            logger.debug("No FS - nothing to restore")
            return 0

        restored = 0
        misses = 0
        while misses < MISSES_LIMIT:
            document = load_json_file(self._path(self._mv_count))
            mv = builder.deserialize_sample(document) if document is not None else None
            if mv is None:
                if document is not None:
                    logger.error("Deserialization error")
                misses += 1
                self._mv_count += 1
                continue
            if len(self._tx_data) >= MAX_STOP_TX_DATA_LEN:
                raise MeterDataError("corrupted memory: too many stored meter values")
            self._tx_data.append(mv)
            restored += 1
            self._mv_count += 1
            misses = 0

        logger.debug("Restored %d meter values", len(self._tx_data))
        return restored