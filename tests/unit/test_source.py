"""
Unit tests for reconciliation source and record modules.
"""

import pytest
from datetime import datetime, timedelta, timezone

from src.reconciliation.records import END_OF_STREAM, TimedRecord, TimeField, ensure_utc, is_end
from src.reconciliation.source import OrderedRecordSource
from src.utils.errors import ProtocolViolationError, StreamOrderError
from tests.conftest import FakeStore, at, store_rows


class TestTimedRecord:
    """Test the record type."""

    def test_naive_times_are_utc(self):
        record = TimedRecord(timestamp=datetime(2024, 3, 1, 12, 0))

        assert record.timestamp.tzinfo is timezone.utc

    def test_aware_times_are_converted(self):
        cet = timezone(timedelta(hours=1))
        record = TimedRecord(timestamp=datetime(2024, 3, 1, 13, 0, tzinfo=cet))

        assert record.timestamp == at(0)
        assert record.timestamp.utcoffset() == timedelta(0)

    def test_time_of_missing_inserted_at(self):
        record = TimedRecord(timestamp=at(0), sequence_id=7)

        with pytest.raises(ProtocolViolationError, match="inserted_at"):
            record.time_of(TimeField.INSERTED_AT)

    def test_as_row(self):
        record = TimedRecord(timestamp=at(0), inserted_at=at(1), sequence_id=3, payload={"total": 1.5})

        assert record.as_row() == {"total": 1.5, "time": at(0)}

    def test_str(self):
        record = TimedRecord(timestamp=at(0), sequence_id=3)

        assert str(record) == "[3:2024-03-01T12:00:00/-]"

    def test_end_marker(self):
        assert is_end(END_OF_STREAM)
        assert not END_OF_STREAM
        assert not is_end(None)

    def test_ensure_utc(self):
        assert ensure_utc(datetime(2024, 1, 1)).tzinfo is timezone.utc


class TestOrderedRecordSource:
    """Test record sources over a store."""

    def test_requires_table_or_query(self):
        with pytest.raises(ValueError):
            OrderedRecordSource(FakeStore())

    def test_structured_query_orders_by_time_column(self):
        store = FakeStore(rows=store_rows(5, 0, 2))
        records = list(OrderedRecordSource(store, "power"))

        assert [r.timestamp for r in records] == [at(0), at(2), at(5)]
        assert store.queries == [("power", "time")]
        assert records[0].payload == {"total": 1.0}
        assert records[0].sequence_id == 2

    def test_inserted_at_orders_by_insert_column(self):
        store = FakeStore(rows=store_rows(0, 1))
        list(OrderedRecordSource(store, "power", order_field=TimeField.INSERTED_AT))

        assert store.queries == [("power", "inserted_on")]

    def test_cannot_restart(self):
        source = OrderedRecordSource(FakeStore(rows=store_rows(0)), "power")
        list(source)

        with pytest.raises(RuntimeError):
            iter(source)

    def test_raw_query_maps_positions(self):
        store = FakeStore(raw_rows=[(at(1), at(0), 11), (None, at(2), 12)])
        records = list(OrderedRecordSource(store, raw_query="SELECT inserted_on, time, id FROM power"))

        assert [r.sequence_id for r in records] == [11, 12]
        assert records[0].inserted_at == at(1)
        assert records[1].inserted_at is None
        assert store.queries == ["SELECT inserted_on, time, id FROM power"]

    def test_raw_query_wrong_column_count(self):
        store = FakeStore(raw_rows=[(at(0), 1)])

        with pytest.raises(ProtocolViolationError, match="3 columns"):
            list(OrderedRecordSource(store, raw_query="SELECT time, id FROM power"))

    def test_row_without_time_column(self):
        with pytest.raises(ProtocolViolationError):
            OrderedRecordSource.row_from_columns({"id": 1})

    def test_order_validation(self):
        store = FakeStore(raw_rows=[(None, at(5), 1), (None, at(1), 2)])
        source = OrderedRecordSource(store, raw_query="SELECT 1", validate_order=True)

        with pytest.raises(StreamOrderError):
            list(source)

    def test_unordered_rows_pass_without_validation(self):
        store = FakeStore(raw_rows=[(None, at(5), 1), (None, at(1), 2)])

        assert len(list(OrderedRecordSource(store, raw_query="SELECT 1"))) == 2
