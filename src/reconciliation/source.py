"""
Ordered Record Source for Time-Series Reconciliation

Wraps one query against a backing store that returns rows ascending by a
time column and exposes them as a lazy, non-restartable sequence of
TimedRecord.
"""

import logging
from typing import Any, Dict, Iterator, Optional, Sequence

from src.reconciliation.records import TimedRecord, TimeField
from src.utils.errors import ProtocolViolationError, StreamOrderError

logger = logging.getLogger(__name__)

# Column names of the telemetry table
TIME_COLUMN = "time"
INSERTED_COLUMN = "inserted_on"
ID_COLUMN = "id"

ORDER_COLUMNS = {
    TimeField.EVENT_TIME: TIME_COLUMN,
    TimeField.INSERTED_AT: INSERTED_COLUMN,
}


class OrderedRecordSource:
    """
    Lazy, finite sequence of records read from one store.

    Two query modes are supported:
    - structured: the store orders rows of ``table`` by the column backing
      ``order_field`` (``query_ordered``)
    - raw: ``raw_query`` is passed verbatim (``query_raw``) and every row is
      mapped by position as (inserted_at, time, id)

    Store failures propagate unchanged; they are fatal for the run.
    """

    def __init__(
        self,
        store,
        table: Optional[str] = None,
        order_field: TimeField = TimeField.EVENT_TIME,
        raw_query: Optional[str] = None,
        validate_order: bool = False,
        name: str = "source"
    ):
        """
        Initialize the record source.

        Args:
            store: Storage driver exposing query_ordered/query_raw
            table: Table to read in structured mode
            order_field: Time field the rows are ordered by
            raw_query: SQL text for raw mode (takes precedence over table)
            validate_order: Fail fast when rows arrive out of order
            name: Label used in log messages

        Raises:
            ValueError: If neither table nor raw_query is given
        """
        if not table and not raw_query:
            raise ValueError("Either a table name or a raw query is required")

        self.store = store
        self.table = table
        self.order_field = order_field
        self.raw_query = raw_query
        self.validate_order = validate_order
        self.name = name
        self._consumed = False

    def __iter__(self) -> Iterator[TimedRecord]:
        if self._consumed:
            raise RuntimeError(f"Record source '{self.name}' cannot be restarted")
        self._consumed = True
        return self._read()

    def _read(self) -> Iterator[TimedRecord]:
        if self.raw_query:
            logger.debug(f"[{self.name}] Executing raw query: {self.raw_query}")
            rows = (self.row_from_position(row) for row in self.store.query_raw(self.raw_query))
        else:
            order_by = ORDER_COLUMNS[self.order_field]
            logger.debug(f"[{self.name}] Reading {self.table} ordered by {order_by}")
            rows = (
                self.row_from_columns(row)
                for row in self.store.query_ordered(self.table, order_by)
            )

        previous = None
        count = 0
        for record in rows:
            if self.validate_order and previous is not None:
                if record.time_of(self.order_field) < previous.time_of(self.order_field):
                    raise StreamOrderError(
                        f"[{self.name}] record {record} precedes {previous}"
                    )
            previous = record
            count += 1
            yield record

        logger.info(f"[{self.name}] Query ended after {count} records")

    @staticmethod
    def row_from_columns(row: Dict[str, Any]) -> TimedRecord:
        """Map a column dictionary into a TimedRecord."""
        if TIME_COLUMN not in row:
            raise ProtocolViolationError(
                f"Row has no '{TIME_COLUMN}' column. Available columns: {list(row.keys())}"
            )
        payload = {
            k: v for k, v in row.items()
            if k not in (TIME_COLUMN, INSERTED_COLUMN, ID_COLUMN)
        }
        return TimedRecord(
            timestamp=row[TIME_COLUMN],
            inserted_at=row.get(INSERTED_COLUMN),
            sequence_id=row.get(ID_COLUMN),
            payload=payload
        )

    @staticmethod
    def row_from_position(row: Sequence[Any]) -> TimedRecord:
        """Map a positional (inserted_at, time, id) row into a TimedRecord."""
        if len(row) != 3:
            raise ProtocolViolationError(
                f"Raw query rows must have 3 columns (inserted_at, time, id), got {len(row)}: {row!r}"
            )
        inserted_at, timestamp, sequence_id = row
        if timestamp is None:
            raise ProtocolViolationError(f"Raw query row has no time value: {row!r}")
        return TimedRecord(
            timestamp=timestamp,
            inserted_at=inserted_at,
            sequence_id=sequence_id
        )
