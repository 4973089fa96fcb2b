import json
from datetime import datetime, timezone

from ocppcharge.meter_store import MeterStore
from ocppcharge.meter_value import MeterValue, MeterValueBuilder
from ocppcharge.sampled_value import (
    ReadingContext,
    SampledValue,
    SampledValueProperties,
    SampledValueSampler,
)
from ocppcharge.transaction import Transaction
from ocppcharge.transaction_meter_data import MAX_STOP_TX_DATA_LEN, meter_data_file_name

PROPS = SampledValueProperties(measurand="Energy.Active.Import.Register", unit="Wh")
TS = datetime(2023, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


class _Context:
    def commit(self, transaction):
        pass


def make_tx(connector_id=1, tx_nr=3, silent=False):
    return Transaction(_Context(), connector_id, tx_nr, silent)


def make_mv(value):
    return MeterValue(TS, [SampledValue(PROPS, ReadingContext.SAMPLE_PERIODIC, value)])


def make_builder():
    samplers = [SampledValueSampler(PROPS, lambda ctx: 0)]
    return MeterValueBuilder(samplers, lambda: "Energy.Active.Import.Register")


def test_no_transaction_gives_none():
    store = MeterStore()
    assert store.get_tx_meter_data(make_builder(), None) is None


def test_silent_transaction_gives_none():
    store = MeterStore()
    assert store.get_tx_meter_data(make_builder(), make_tx(silent=True)) is None


def test_same_transaction_returns_cached_object():
    store = MeterStore()
    builder = make_builder()
    tx = make_tx()
    first = store.get_tx_meter_data(builder, tx)
    second = store.get_tx_meter_data(builder, tx)
    assert first is second
    assert (first.connector_id, first.tx_nr) == (1, 3)


def test_different_transactions_get_different_objects():
    store = MeterStore()
    builder = make_builder()
    first = store.get_tx_meter_data(builder, make_tx(tx_nr=3))
    second = store.get_tx_meter_data(builder, make_tx(tx_nr=4))
    assert first is not second
    assert second.tx_nr == 4


def test_data_restored_by_new_store(tmp_path):
    builder = make_builder()
    data = MeterStore(tmp_path).get_tx_meter_data(builder, make_tx())
    data.add_tx_data(make_mv(11))
    data.add_tx_data(make_mv(12))
    del data

    restored = MeterStore(tmp_path).get_tx_meter_data(builder, make_tx())
    result = restored.retrieve_stop_tx_data()
    assert [mv.sampled_values[0].to_integer() for mv in result] == [11, 12]


def test_remove_deletes_files_and_finalizes(tmp_path):
    store = MeterStore(tmp_path)
    data = store.get_tx_meter_data(make_builder(), make_tx())
    data.add_tx_data(make_mv(1))
    data.add_tx_data(make_mv(2))
    assert store.remove(1, 3) is True
    assert data.is_finalized is True
    assert list(tmp_path.iterdir()) == []


def test_remove_scans_uncached_files(tmp_path):
    for index in (0, 1, 3):
        (tmp_path / meter_data_file_name(1, 3, index)).write_text(json.dumps(make_mv(index).to_json()))
    other = tmp_path / meter_data_file_name(1, 4, 0)
    other.write_text(json.dumps(make_mv(9).to_json()))
    store = MeterStore(tmp_path)
    assert store.remove(1, 3) is True
    assert sorted(p.name for p in tmp_path.iterdir()) == [other.name]


def test_corrupted_record_is_removed(tmp_path):
    for index in range(MAX_STOP_TX_DATA_LEN + 1):
        (tmp_path / meter_data_file_name(1, 3, index)).write_text(json.dumps(make_mv(index).to_json()))
    data = MeterStore(tmp_path).get_tx_meter_data(make_builder(), make_tx())
    assert data.tx_nr == 3
    assert list(tmp_path.iterdir()) == []


def test_remove_without_directory_succeeds():
    store = MeterStore()
    data = store.get_tx_meter_data(make_builder(), make_tx())
    assert store.remove(1, 3) is True
    assert data.is_finalized is True