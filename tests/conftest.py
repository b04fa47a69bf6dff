"""
Pytest configuration and shared fixtures.

Provides in-memory stores and pre-filled channels so the reconciliation
and ingestion paths can be exercised without a database or message bus.
"""

import pytest
from datetime import datetime, timedelta, timezone

from src.reconciliation.producer import RecordChannel
from src.reconciliation.records import END_OF_STREAM, TimedRecord

BASE_TIME = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def at(minutes: float) -> datetime:
    """BASE_TIME shifted by a number of minutes."""
    return BASE_TIME + timedelta(minutes=minutes)


def make_records(*minutes, payload=None):
    """Records at BASE_TIME + minutes, with ascending ids."""
    return [
        TimedRecord(
            timestamp=at(m),
            inserted_at=at(m) + timedelta(seconds=5),
            sequence_id=i + 1,
            payload=dict(payload or {"total": float(i)})
        )
        for i, m in enumerate(minutes)
    ]


def filled_channel(records, name="channel", end=True):
    """A channel holding records (and the end marker) that is already closed."""
    channel = RecordChannel(maxsize=0, name=name, poll_interval=0.01)
    for record in records:
        channel.put(record)
    if end:
        channel.put(END_OF_STREAM)
    channel.close()
    return channel


class FakeStore:
    """
    In-memory stand-in for PostgresStore.

    Rows are column dictionaries as returned by query_ordered; raw_rows
    back query_raw.
    """

    def __init__(self, rows=None, raw_rows=None, fail_on_insert=None, name="store", **kwargs):
        self.rows = list(rows or [])
        self.raw_rows = list(raw_rows or [])
        self.fail_on_insert = fail_on_insert
        self.name = name
        self.options = kwargs
        self.inserted = []
        self.connected = False
        self.closed = False
        self.queries = []

    def connect(self):
        self.connected = True
        return self

    def close(self):
        self.closed = True

    def ping(self):
        return self.connected

    def query_ordered(self, table, order_by, fields=None):
        self.queries.append((table, order_by))
        for row in sorted(self.rows, key=lambda r: r[order_by]):
            yield dict(row)

    def query_raw(self, query_text):
        self.queries.append(query_text)
        for row in self.raw_rows:
            yield tuple(row)

    def insert_or_update(self, table, key_fields, record):
        if self.fail_on_insert is not None:
            raise self.fail_on_insert
        self.inserted.append((table, list(key_fields), dict(record)))


def store_rows(*minutes):
    """Telemetry table rows at BASE_TIME + minutes."""
    return [
        {"time": at(m), "inserted_on": at(m) + timedelta(seconds=5), "id": i + 1, "total": float(i)}
        for i, m in enumerate(minutes)
    ]


@pytest.fixture
def records():
    return make_records


@pytest.fixture
def channel():
    return filled_channel


@pytest.fixture
def fake_store():
    return FakeStore
