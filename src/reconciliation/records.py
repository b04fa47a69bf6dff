"""
Record Types for Time-Series Reconciliation

Defines the immutable record exchanged between record sources, producers
and the reconciliation differ, plus the explicit end-of-stream marker.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from src.utils.errors import ProtocolViolationError

LAYOUT = "%Y-%m-%dT%H:%M:%S"


class TimeField(Enum):
    """Record attribute that drives the comparison."""

    EVENT_TIME = "timestamp"
    INSERTED_AT = "inserted_at"


def ensure_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to UTC.

    Naive datetimes are assumed to already be in UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class TimedRecord:
    """
    One row of a time-series table.

    Attributes:
        timestamp: Event time (UTC)
        inserted_at: Wall-clock time the row was persisted (UTC), if known
        sequence_id: Store-assigned identifier, used for reporting only
        payload: Store-specific fields, carried through untouched
    """

    timestamp: datetime
    inserted_at: Optional[datetime] = None
    sequence_id: Optional[int] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))
        if self.inserted_at is not None:
            object.__setattr__(self, "inserted_at", ensure_utc(self.inserted_at))

    def time_of(self, time_field: TimeField) -> datetime:
        """
        Return the time value used for comparison.

        Raises:
            ProtocolViolationError: If the row carries no such time, e.g. a row
                stored before the inserted_on column existed
        """
        value = getattr(self, time_field.value)
        if value is None:
            raise ProtocolViolationError(
                f"Record {self.sequence_id} has no '{time_field.value}' value"
            )
        return value

    def as_row(self) -> Dict[str, Any]:
        """Flatten into a column dictionary for writing back to a store."""
        row = dict(self.payload)
        row["time"] = self.timestamp
        return row

    def __str__(self) -> str:
        inserted = self.inserted_at.strftime(LAYOUT) if self.inserted_at else "-"
        return f"[{self.sequence_id}:{self.timestamp.strftime(LAYOUT)}/{inserted}]"


class _EndOfStream:
    """Marker pushed exactly once after the last record of a stream."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "END_OF_STREAM"

    def __bool__(self) -> bool:
        return False


END_OF_STREAM = _EndOfStream()


def is_end(item: Any) -> bool:
    return item is END_OF_STREAM
